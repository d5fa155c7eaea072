# arbwatch/connector.py
import asyncio
import time
from typing import Callable, Optional, Protocol

import aiohttp

from .config import ConnectionConfig
from .errors import HeartbeatTimeout, VenueConnectionError
from .logger import get_logger
from .models import ConnectionState, Ping, Quote
from .venues import VenueAdapter

logger = get_logger("connector")

CLOSED_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)


class QuoteListener(Protocol):
    def on_quote(self, quote: Quote) -> None:
        ...


class ExchangeConnector:
    """
    Owns one venue's websocket for the whole process lifetime.

    DISCONNECTED -> CONNECTING -> OPEN [-> SUBSCRIBED] -> (drop) -> RECONNECTING -> CONNECTING ...
    Any drop, socket error or idle timeout schedules exactly one reconnect after a fixed
    delay; failed attempts reschedule forever. Only `stop()` ends the cycle.

    Everything here runs on the connector's own event loop. Decoded quotes are handed to
    `listener.on_quote` synchronously on that loop.
    """
    def __init__(self, adapter: VenueAdapter, config: ConnectionConfig, listener: QuoteListener,
                 stats=None, session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession):
        self.adapter = adapter
        self.venue = adapter.name
        self.cfg = config
        self.listener = listener
        self.stats = stats
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

        self.state = ConnectionState.DISCONNECTED
        self.last_inbound: Optional[float] = None
        self.reconnect_attempts = 0

        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._stop_requested = False
        self._stop_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # --- lifecycle ---

    async def run(self):
        """Connects, keeps the connection alive until `request_stop()`, then cleans up."""
        self._stop_event = asyncio.Event()
        self._loop = asyncio.get_running_loop()
        if self._stop_requested:
            return
        try:
            if not await self.connect():
                self.schedule_reconnect()
            await self._stop_event.wait()
        finally:
            await self.stop()

    def request_stop(self):
        """Thread-safe stop signal; `run()` performs the actual shutdown on its own loop."""
        self._stop_requested = True
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._stop_event.set)
        except RuntimeError:
            # loop already closed, run() has returned
            pass

    async def connect(self) -> bool:
        if self._stopping:
            return False
        self._set_state(ConnectionState.CONNECTING)
        if self._session is None or self._session.closed:
            self._session = self._session_factory()

        heartbeat = self.cfg.ping_interval_ms / 1000.0 if self.cfg.ping_interval_ms else None
        try:
            ws = await asyncio.wait_for(
                self._session.ws_connect(self.adapter.url, heartbeat=heartbeat, autoping=True),
                timeout=self.cfg.connect_timeout_ms / 1000.0,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"[{self.venue}] ❌ connect to {self.adapter.url} failed: {e!r}")
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        if self._stopping:
            await ws.close()
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        self._ws = ws
        self.last_inbound = time.monotonic()
        self._set_state(ConnectionState.OPEN)
        logger.info(f"[{self.venue}] ✅ connected: {self.adapter.url}")

        request = self.adapter.decoder.subscribe_frame()
        if request is not None:
            try:
                await ws.send_json(request)
            except (aiohttp.ClientError, OSError, RuntimeError) as e:
                logger.warning(f"[{self.venue}] subscribe failed: {e!r}")
                self._ws = None
                await ws.close()
                self._set_state(ConnectionState.DISCONNECTED)
                return False
            self._set_state(ConnectionState.SUBSCRIBED)
            logger.info(f"[{self.venue}] subscription sent: {request}")

        self._reader_task = asyncio.create_task(self._read_loop(ws), name=f"{self.venue}-reader")
        return True

    async def stop(self):
        """Cancels pending reconnect and reader, closes the socket. No reconnect follows."""
        self._stopping = True
        await _cancel(self._reconnect_task)
        self._reconnect_task = None
        await _cancel(self._reader_task)
        self._reader_task = None

        ws = self._ws
        if ws is not None:
            self._set_state(ConnectionState.CLOSING)
            self._ws = None
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.debug(f"[{self.venue}] error while closing: {e!r}")
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info(f"[{self.venue}] stopped")

    # --- reconnect policy ---

    def on_close(self, reason: str = ""):
        """Close/error handler. Safe to call repeatedly: at most one reconnect is ever pending."""
        if self._stopping:
            self._set_state(ConnectionState.DISCONNECTED)
            return
        if reason:
            logger.warning(f"[{self.venue}] ⚠️ connection lost: {reason}")
        self.schedule_reconnect()

    def schedule_reconnect(self) -> bool:
        if self._stopping:
            return False
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return False
        self._set_state(ConnectionState.RECONNECTING)
        delay = self.cfg.reconnect_delay_ms / 1000.0
        logger.info(f"[{self.venue}] 🔄 reconnecting in {delay:.1f}s")
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay), name=f"{self.venue}-reconnect"
        )
        return True

    async def _reconnect_after(self, delay: float):
        await asyncio.sleep(delay)
        self.reconnect_attempts += 1
        if self.stats is not None:
            self.stats.record_reconnect()
        logger.info(f"[{self.venue}] reconnect attempt #{self.reconnect_attempts}")

        ok = await self.connect()
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        if not ok:
            self.schedule_reconnect()

    # --- inbound ---

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse):
        idle_s = self.cfg.idle_timeout_ms / 1000.0
        reason = ""
        try:
            while True:
                try:
                    msg = await ws.receive(timeout=idle_s)
                except asyncio.TimeoutError:
                    raise HeartbeatTimeout(self.venue, f"no inbound traffic for {idle_s:.0f}s")

                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self.last_inbound = time.monotonic()
                    await self._on_frame(ws, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise VenueConnectionError(self.venue, f"socket error: {ws.exception()!r}")
                elif msg.type in CLOSED_TYPES:
                    raise VenueConnectionError(self.venue, f"closed by remote (code={ws.close_code})")
        except (VenueConnectionError, aiohttp.ClientError, OSError) as e:
            reason = str(e)
        except Exception as e:
            logger.exception(f"[{self.venue}] reader failed: {e!r}")
            reason = f"reader failed: {e!r}"

        if self._ws is ws:
            self._ws = None
        self._set_state(ConnectionState.CLOSING)
        if not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError):
                pass
        if self._reader_task is asyncio.current_task():
            self._reader_task = None
        self._set_state(ConnectionState.DISCONNECTED)
        self.on_close(reason)

    async def _on_frame(self, ws: aiohttp.ClientWebSocketResponse, data):
        result = self.adapter.decoder.decode(data)
        if result is None:
            return
        if isinstance(result, Ping):
            # Echo the venue's own value or it drops the socket
            await ws.send_json(self.adapter.decoder.pong(result))
            return
        try:
            self.listener.on_quote(result)
        except Exception as e:
            logger.exception(f"[{self.venue}] quote listener failed: {e}")

    def _set_state(self, state: ConnectionState):
        if state is not self.state:
            logger.debug(f"[{self.venue}] {self.state.value} -> {state.value}")
            self.state = state


async def _cancel(task: Optional[asyncio.Task]):
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
