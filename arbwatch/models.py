# arbwatch/models.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional
import time


def now_ms() -> float:
    """Local monotonic clock in milliseconds. Used for ingest times and freshness checks."""
    return time.monotonic() * 1000.0


class ConnectionState(Enum):
    """
    Lifecycle states of a single venue connection.
    """
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    SUBSCRIBED = "SUBSCRIBED"
    CLOSING = "CLOSING"
    RECONNECTING = "RECONNECTING"


@dataclass(slots=True, frozen=True)
class Quote:
    """
    Immutable best bid/ask observation from one venue.
    Replaced as a whole in the market store, never mutated.
    A crossed book (bid > ask) is accepted as-is.
    """
    venue: str
    instrument: str
    bid: Decimal
    ask: Decimal
    ingest_time: float
    source_ts: Optional[int] = None

    def __post_init__(self):
        if self.bid <= 0 or self.ask <= 0:
            raise ValueError(f"non-positive price from {self.venue}: bid={self.bid} ask={self.ask}")

    def age(self, now: float) -> float:
        """Age in ms relative to `now` (same clock as ingest_time)."""
        return now - self.ingest_time


@dataclass(slots=True, frozen=True)
class Ping:
    """Keepalive request pushed by a venue. `value` must be echoed back verbatim."""
    value: Any


@dataclass(slots=True, frozen=True)
class ArbitrageOpportunity:
    """
    Qualified cross-venue discrepancy: buy at `buy_venue`'s ask, sell at `sell_venue`'s bid.
    `margin_percent` is already scaled by 100 (0.08 means 0.08%).
    """
    id: str
    instrument: str
    buy_venue: str
    sell_venue: str
    buy_price: Decimal
    sell_price: Decimal
    margin_percent: Decimal
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def spread(self) -> Decimal:
        """Per-unit gross profit."""
        return self.sell_price - self.buy_price

    def as_row(self) -> List[str]:
        return [
            self.detected_at.isoformat(),
            self.id,
            self.instrument,
            self.buy_venue,
            self.sell_venue,
            str(self.buy_price),
            str(self.sell_price),
            str(self.spread),
            str(self.margin_percent),
        ]


AUDIT_HEADER = [
    "detected_at", "id", "instrument", "buy_venue", "sell_venue",
    "buy_price", "sell_price", "spread", "margin_percent",
]


@dataclass(slots=True, frozen=True)
class SkewStats:
    samples: int
    mean_ms: float
    stddev_ms: float
    multiplier: float
    bound_ms: float


@dataclass(slots=True, frozen=True)
class StatsSnapshot:
    checks: int
    skipped: int
    opportunities: int
    reconnects: int
    decode_errors: int
    dropped: int
    last_emitted_at: Optional[float]
