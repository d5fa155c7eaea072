"""
arbwatch test configuration
===========================
Shared fixtures: a controllable clock, a two-venue config, quote factories.
"""

import asyncio
import gzip
import json
from types import SimpleNamespace
from decimal import Decimal

import aiohttp
import pytest

from arbwatch.config import ArbitrageConfig
from arbwatch.models import Quote


class FakeClock:
    """Millisecond clock the test moves by hand."""
    def __init__(self, start: float = 10_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


RAW_CONFIG = {
    "instrument": "ETHUSDT",
    "detection": {"margin_threshold_percent": 0.03, "price_expiry_ms": 5000},
    "connection": {"reconnect_delay_ms": 5000, "idle_timeout_ms": 60000},
    "skew": {"window_size": 50, "base_multiplier": 1.5, "multiplier_cap": 3.0, "initial_floor_ms": 300},
    "stats": {"interval_ms": 60000},
    "venues": {
        "binance": {"kind": "binance", "url": "wss://stream.binance.com:9443/ws/{symbol}@bookTicker"},
        "huobi": {"kind": "huobi", "url": "wss://api.huobi.pro/ws"},
    },
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def raw_config():
    return json.loads(json.dumps(RAW_CONFIG))


@pytest.fixture
def config(raw_config):
    return ArbitrageConfig.from_dict(raw_config)


@pytest.fixture
def make_quote(clock):
    def _make(venue: str, bid: str, ask: str, at: float = None) -> Quote:
        return Quote(
            venue=venue,
            instrument="ethusdt",
            bid=Decimal(bid),
            ask=Decimal(ask),
            ingest_time=clock.now if at is None else at,
        )
    return _make


def gz(payload) -> bytes:
    return gzip.compress(json.dumps(payload).encode("utf-8"))


class FakeWebSocket:
    """Scripted stand-in for aiohttp.ClientWebSocketResponse."""
    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.close_code = None

    def feed(self, data):
        kind = aiohttp.WSMsgType.TEXT if isinstance(data, str) else aiohttp.WSMsgType.BINARY
        self.inbox.put_nowait(SimpleNamespace(type=kind, data=data))

    def feed_close(self, code: int = 1006):
        self.close_code = code
        self.inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None))

    async def receive(self, timeout=None):
        return await asyncio.wait_for(self.inbox.get(), timeout)

    async def send_json(self, data):
        # serialized like the real socket, so non-JSON values fail here too
        self.sent.append(json.loads(json.dumps(data)))

    async def close(self):
        self.closed = True
        return True

    def exception(self):
        return None


class FakeSession:
    """Hands out scripted sockets (or raises scripted errors) in order; refuses once exhausted."""
    def __init__(self, outcomes=()):
        self.outcomes = list(outcomes)
        self.calls = []
        self.closed = False

    async def ws_connect(self, url, **kwargs):
        self.calls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else aiohttp.ClientConnectionError("connection refused")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


async def eventually(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
