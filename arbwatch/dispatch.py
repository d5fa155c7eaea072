# arbwatch/dispatch.py
import asyncio
from typing import List, Optional, Protocol

from .logger import get_logger
from .models import ArbitrageOpportunity
from .stats import StatisticsAggregator

logger = get_logger("dispatch")


class OpportunitySink(Protocol):
    async def handle(self, opportunity: ArbitrageOpportunity) -> None:
        ...


class OpportunityDispatcher:
    """
    Decouples the detection path from the sinks.
    `publish` may be called from any connector thread and never blocks: the opportunity is
    posted onto a bounded queue owned by the dispatcher's loop, and dropped (and counted)
    when the queue is full. A single worker feeds every sink in order.
    """
    def __init__(self, sinks: List[OpportunitySink], stats: Optional[StatisticsAggregator] = None,
                 maxsize: int = 1000):
        self.sinks = list(sinks)
        self.stats = stats
        self.maxsize = maxsize
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker_task = None

    async def start(self):
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._worker_task = asyncio.create_task(self._worker())

    def publish(self, opportunity: ArbitrageOpportunity):
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(f"Dispatcher not running, dropped {opportunity.id}")
            self._count_drop()
            return
        loop.call_soon_threadsafe(self._offer, opportunity)

    def _offer(self, opportunity: ArbitrageOpportunity):
        try:
            self._queue.put_nowait(opportunity)
        except asyncio.QueueFull:
            logger.warning(f"Sink queue full ({self.maxsize}), dropped {opportunity.id}")
            self._count_drop()

    def _count_drop(self):
        if self.stats is not None:
            self.stats.record_dropped()

    async def _worker(self):
        while True:
            opp = await self._queue.get()
            try:
                for sink in self.sinks:
                    try:
                        await sink.handle(opp)
                    except Exception as e:
                        logger.error(f"Sink {type(sink).__name__} failed on {opp.id}: {e}")
            finally:
                self._queue.task_done()

    async def stop(self, timeout: float = 5.0):
        """Drains what is already queued (bounded by `timeout`), then stops the worker."""
        if self._worker_task is None:
            return
        # let offers already posted from other threads land first
        await asyncio.sleep(0)
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Sink drain timed out with {self._queue.qsize()} pending")
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None
        self._loop = None
