# arbwatch/stats.py
import asyncio
import threading
import time
from typing import Optional

from .logger import get_logger
from .models import StatsSnapshot

logger = get_logger("stats")


class StatisticsAggregator:
    """
    Process-lifetime counters, incremented from every connector thread.
    Emitting a summary only moves `last_emitted_at`; totals are never reset.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._checks = 0
        self._skipped = 0
        self._opportunities = 0
        self._reconnects = 0
        self._decode_errors = 0
        self._dropped = 0
        self.last_emitted_at: Optional[float] = None

    def record_check(self):
        with self._lock:
            self._checks += 1

    def record_skipped(self):
        with self._lock:
            self._skipped += 1

    def record_opportunity(self):
        with self._lock:
            self._opportunities += 1

    def record_reconnect(self):
        with self._lock:
            self._reconnects += 1

    def record_decode_error(self):
        with self._lock:
            self._decode_errors += 1

    def record_dropped(self):
        with self._lock:
            self._dropped += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                checks=self._checks,
                skipped=self._skipped,
                opportunities=self._opportunities,
                reconnects=self._reconnects,
                decode_errors=self._decode_errors,
                dropped=self._dropped,
                last_emitted_at=self.last_emitted_at,
            )

    def emit(self, final: bool = False) -> StatsSnapshot:
        snap = self.snapshot()
        title = "FINAL STATS" if final else "STATS"
        logger.info(
            f"📊 {title} ({time.strftime('%H:%M:%S')}) | checks={snap.checks} | skipped(stale)={snap.skipped} "
            f"| opportunities={snap.opportunities} | reconnects={snap.reconnects} "
            f"| decode_errors={snap.decode_errors} | dropped={snap.dropped}"
        )
        with self._lock:
            self.last_emitted_at = time.time()
        return snap

    async def run(self, interval_ms: int):
        """Periodic summary; cancel the task to stop it."""
        while True:
            await asyncio.sleep(interval_ms / 1000.0)
            self.emit()
