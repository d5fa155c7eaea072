# arbwatch/detector.py
import time
from decimal import Decimal, ROUND_HALF_UP
from itertools import count, permutations
from typing import Callable, List, Mapping, Optional, Tuple

from .config import ArbitrageConfig
from .errors import StaleDataError
from .logger import get_logger
from .market_state import MarketStateStore
from .models import ArbitrageOpportunity, Quote
from .skew import ClockSkewEstimator
from .stats import StatisticsAggregator

logger = get_logger("detector")

MARGIN_QUANTUM = Decimal("0.000001")
HUNDRED = Decimal("100")


def margin_percent(buy_price: Decimal, sell_price: Decimal) -> Decimal:
    """
    (sell - buy) / buy, rounded half-up to 6 decimal places, then scaled to percent.
    """
    ratio = ((sell_price - buy_price) / buy_price).quantize(MARGIN_QUANTUM, rounding=ROUND_HALF_UP)
    return ratio * HUNDRED


class ArbitrageDetector:
    """
    Event-driven detector, called inline after every store update.
    For every ordered venue pair (X, Y) it considers buying at X's ask and selling at Y's bid.

    A pair is only compared when both quotes are younger than the absolute expiry
    and their ingest times are closer than the current dynamic skew bound.
    """
    def __init__(self, config: ArbitrageConfig, store: MarketStateStore,
                 estimator: ClockSkewEstimator, stats: StatisticsAggregator,
                 emit: Optional[Callable[[ArbitrageOpportunity], None]] = None):
        self.cfg = config
        self.store = store
        self.estimator = estimator
        self.stats = stats
        self.emit = emit
        self.threshold = Decimal(str(config.margin_threshold_percent))
        # ids stay unique within one millisecond
        self._sequence = count(1)

    def check(self) -> List[ArbitrageOpportunity]:
        snapshot = self.store.snapshot()
        if len(snapshot) < 2:
            return []

        self.stats.record_check()
        found, stale = self.evaluate(snapshot, self.estimator.bound_ms, self.store.clock())
        if stale:
            self.stats.record_skipped()

        for opp in found:
            self.stats.record_opportunity()
            logger.info(
                f"🚨 OPPORTUNITY {opp.instrument}: buy {opp.buy_venue} @ {opp.buy_price} -> "
                f"sell {opp.sell_venue} @ {opp.sell_price} | margin {opp.margin_percent:.4f}%"
            )
            if self.emit is not None:
                self.emit(opp)
        return found

    def evaluate(self, snapshot: Mapping[str, Quote], bound_ms: float,
                 now: float) -> Tuple[List[ArbitrageOpportunity], bool]:
        """
        Pure pass over one snapshot. Returns the qualifying opportunities and whether
        any pair had to be skipped as stale.
        """
        found: List[ArbitrageOpportunity] = []
        stale = False

        for buy_venue, sell_venue in permutations(sorted(snapshot), 2):
            buy_q = snapshot[buy_venue]
            sell_q = snapshot[sell_venue]
            try:
                self._ensure_comparable(buy_q, sell_q, bound_ms, now)
            except StaleDataError as e:
                stale = True
                logger.debug(f"Skipped {buy_venue}->{sell_venue}: {e}")
                continue

            margin = margin_percent(buy_q.ask, sell_q.bid)
            # Strict: a margin equal to the threshold does not qualify
            if margin > self.threshold:
                found.append(self._build(buy_q, sell_q, margin))

        return found, stale

    def _ensure_comparable(self, a: Quote, b: Quote, bound_ms: float, now: float):
        expiry = self.cfg.price_expiry_ms
        for q in (a, b):
            if not self.store.is_fresh(q, expiry, now):
                raise StaleDataError(f"{q.venue} quote is {q.age(now):.0f}ms old (expiry {expiry}ms)")
        gap = abs(a.ingest_time - b.ingest_time)
        if gap >= bound_ms:
            raise StaleDataError(f"{a.venue}/{b.venue} gap {gap:.0f}ms exceeds skew bound {bound_ms:.0f}ms")

    def _build(self, buy_q: Quote, sell_q: Quote, margin: Decimal) -> ArbitrageOpportunity:
        return ArbitrageOpportunity(
            id=f"{self.cfg.instrument}-{buy_q.venue}-{sell_q.venue}-{int(time.time() * 1000)}-{next(self._sequence)}",
            instrument=self.cfg.instrument,
            buy_venue=buy_q.venue,
            sell_venue=sell_q.venue,
            buy_price=buy_q.ask,
            sell_price=sell_q.bid,
            margin_percent=margin,
        )
