# arbwatch/websocket_engine.py
import asyncio
import threading
from typing import Callable, Dict, List, Optional

import aiohttp

from .config import ArbitrageConfig
from .connector import ExchangeConnector
from .detector import ArbitrageDetector
from .dispatch import OpportunityDispatcher, OpportunitySink
from .logger import get_logger
from .market_state import MarketStateStore
from .models import ConnectionState, Quote, now_ms
from .sinks import LogSink
from .skew import ClockSkewEstimator
from .stats import StatisticsAggregator
from .venues import build_adapters

logger = get_logger("engine")


class ConnectorThread(threading.Thread):
    """One OS thread and one event loop per venue, so a slow venue never stalls another."""
    def __init__(self, connector: ExchangeConnector):
        super().__init__(name=f"ws-{connector.venue}", daemon=True)
        self.connector = connector

    def run(self):
        try:
            asyncio.run(self.connector.run())
        except Exception as e:
            logger.error(f"[{self.connector.venue}] connector thread crashed: {e!r}")


class WebSocketEngine:
    """
    Wires connectors -> market store (+ skew estimator) -> detector -> dispatcher -> sinks.

    Built eagerly so that configuration problems surface before anything connects.
    Quote handling runs on the connector threads; sinks, periodic stats and shutdown run
    on the loop that called `start()`.
    """
    def __init__(self, config: ArbitrageConfig, sinks: Optional[List[OpportunitySink]] = None,
                 session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
                 clock: Callable[[], float] = now_ms):
        self.cfg = config
        self.sinks = list(sinks) if sinks is not None else [LogSink()]

        self.stats = StatisticsAggregator()
        self.estimator = ClockSkewEstimator(config.skew)
        self.store = MarketStateStore(self.estimator, clock=clock)
        self.dispatcher = OpportunityDispatcher(self.sinks, self.stats, maxsize=config.dispatch_queue_size)
        self.detector = ArbitrageDetector(config, self.store, self.estimator, self.stats,
                                          emit=self.dispatcher.publish)

        adapters = build_adapters(config, stats=self.stats, clock=clock)
        self.connectors = [
            ExchangeConnector(a, config.connection, self, stats=self.stats, session_factory=session_factory)
            for a in adapters
        ]
        self.threads: List[ConnectorThread] = []
        self._stats_task = None
        self.running = False

    def on_quote(self, quote: Quote) -> None:
        self.store.put(quote)
        self.detector.check()

    async def start(self):
        self.running = True
        for sink in self.sinks:
            starter = getattr(sink, "start", None)
            if starter is not None:
                await starter()
        await self.dispatcher.start()
        self._stats_task = asyncio.create_task(self.stats.run(self.cfg.stats_interval_ms))

        logger.info(f"⚡ CONNECTING {len(self.connectors)} STREAMS FOR {self.cfg.instrument.upper()}...")
        self.threads = [ConnectorThread(c) for c in self.connectors]
        for t in self.threads:
            t.start()

    async def shutdown(self, timeout: float = 10.0):
        if not self.running:
            return
        self.running = False
        logger.info("Shutting down connectors...")

        for c in self.connectors:
            c.request_stop()
        for t in self.threads:
            await asyncio.to_thread(t.join, timeout)
            if t.is_alive():
                logger.warning(f"{t.name} did not stop within {timeout:.0f}s")

        if self._stats_task is not None:
            self._stats_task.cancel()
            try:
                await self._stats_task
            except asyncio.CancelledError:
                pass
            self._stats_task = None

        await self.dispatcher.stop()
        for sink in self.sinks:
            stopper = getattr(sink, "stop", None)
            if stopper is not None:
                await stopper()
        self.stats.emit(final=True)

    def get_snapshot(self) -> Dict[str, Quote]:
        return self.store.snapshot()

    def connection_states(self) -> Dict[str, ConnectionState]:
        return {c.venue: c.state for c in self.connectors}
