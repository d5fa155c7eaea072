# arbwatch/market_state.py
import threading
from typing import Callable, Dict, List, Optional

from .models import Quote, now_ms
from .skew import ClockSkewEstimator


class MarketStateStore:
    """
    Latest quote per venue, shared by every connector thread.
    Each put replaces a whole immutable Quote, so readers never see a half-written record.
    Ordering is not checked: a venue's own stream is assumed in order.
    """
    def __init__(self, estimator: Optional[ClockSkewEstimator] = None, clock: Callable[[], float] = now_ms):
        self.estimator = estimator
        self.clock = clock
        self._quotes: Dict[str, Quote] = {}
        self._lock = threading.Lock()

    def put(self, quote: Quote):
        with self._lock:
            self._quotes[quote.venue] = quote
            view = dict(self._quotes)
        if self.estimator is not None:
            self.estimator.observe(view)

    def snapshot(self) -> Dict[str, Quote]:
        with self._lock:
            return dict(self._quotes)

    def get(self, venue: str) -> Optional[Quote]:
        with self._lock:
            return self._quotes.get(venue)

    def venues(self) -> List[str]:
        with self._lock:
            return list(self._quotes)

    def is_fresh(self, quote: Quote, bound_ms: float, now: Optional[float] = None) -> bool:
        if now is None:
            now = self.clock()
        return now - quote.ingest_time < bound_ms
