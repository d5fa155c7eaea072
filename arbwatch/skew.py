# arbwatch/skew.py
import math
import threading
from collections import deque
from typing import Deque, Mapping, Optional

from .config import SkewConfig
from .models import Quote, SkewStats


class ClockSkewEstimator:
    """
    Adaptive bound on how far apart (in local ingest time) two venues' quotes may be
    and still be compared.

    Every sample is the gap between the freshest and the stalest quote in the store.
    Over the last K samples:
        multiplier = min(cap, base * (1 + stddev / (mean + 1)))
        bound      = max(floor, mean * multiplier)
    A steady feed converges to mean * base; jittery feeds widen the bound up to the cap.
    """
    def __init__(self, config: Optional[SkewConfig] = None):
        self.cfg = config or SkewConfig()
        self._samples: Deque[float] = deque(maxlen=self.cfg.window_size)
        self._lock = threading.Lock()
        self._stats = SkewStats(
            samples=0, mean_ms=0.0, stddev_ms=0.0,
            multiplier=self.cfg.base_multiplier, bound_ms=self.cfg.initial_floor_ms,
        )

    @property
    def bound_ms(self) -> float:
        return self._stats.bound_ms

    def stats(self) -> SkewStats:
        return self._stats

    def observe(self, snapshot: Mapping[str, Quote]) -> Optional[float]:
        """Takes one sample from a store snapshot. Needs at least two venues."""
        if len(snapshot) < 2:
            return None
        times = [q.ingest_time for q in snapshot.values()]
        gap = max(times) - min(times)
        if gap < 0:
            return None
        return self.add_sample(gap)

    def add_sample(self, gap_ms: float) -> float:
        with self._lock:
            # deque(maxlen=K) evicts the oldest sample
            self._samples.append(float(gap_ms))
            self._stats = self._recompute()
            return self._stats.bound_ms

    def _recompute(self) -> SkewStats:
        n = len(self._samples)
        mean = sum(self._samples) / n
        variance = sum((x - mean) ** 2 for x in self._samples) / n
        stddev = math.sqrt(variance)

        multiplier = min(self.cfg.multiplier_cap, self.cfg.base_multiplier * (1 + stddev / (mean + 1)))
        bound = max(self.cfg.initial_floor_ms, mean * multiplier)
        return SkewStats(samples=n, mean_ms=mean, stddev_ms=stddev, multiplier=multiplier, bound_ms=bound)
