# arbwatch/decoders.py
import gzip
import json
import time
import zlib
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Union

from .errors import ProtocolDecodeError
from .logger import get_logger
from .models import Ping, Quote, now_ms

logger = get_logger("decoders")

Frame = Union[str, bytes, bytearray]
Decoded = Optional[Union[Quote, Ping]]


class QuoteDecoder:
    """
    Turns one raw websocket frame into a normalized Quote, a Ping that needs an answer,
    or None for control frames that carry nothing useful.

    `decode` is the connector-facing entry point and never raises. Subclasses implement
    `unwrap` (transport framing) and `interpret` (venue schema) and may raise
    ProtocolDecodeError from either.
    """
    def __init__(self, venue: str, instrument: str, clock: Callable[[], float] = now_ms, stats=None):
        self.venue = venue
        self.instrument = instrument.lower()
        self.clock = clock
        self.stats = stats
        self.errors = 0

    def decode(self, frame: Frame) -> Decoded:
        try:
            return self.parse(frame)
        except ProtocolDecodeError as e:
            self._drop(e)
        except Exception as e:
            self._drop(ProtocolDecodeError(self.venue, f"unexpected {type(e).__name__}: {e}", raw=frame))
        return None

    def _drop(self, error: ProtocolDecodeError):
        self.errors += 1
        if self.stats is not None:
            self.stats.record_decode_error()
        logger.warning(f"Dropped frame: {error}")

    def parse(self, frame: Frame) -> Decoded:
        text = self.unwrap(frame)
        if not text:
            return None
        try:
            payload = json.loads(text, parse_float=Decimal)
        except ValueError as e:
            raise ProtocolDecodeError(self.venue, f"invalid JSON: {e}", raw=text) from e
        if not isinstance(payload, dict):
            raise ProtocolDecodeError(self.venue, "payload is not an object", raw=text)
        return self.interpret(payload)

    def unwrap(self, frame: Frame) -> str:
        raise NotImplementedError

    def interpret(self, payload: Dict[str, Any]) -> Decoded:
        raise NotImplementedError

    def subscribe_frame(self) -> Optional[Dict[str, Any]]:
        """Request sent right after the socket opens, or None when the URL path subscribes."""
        return None

    def pong(self, ping: Ping) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.venue} does not push pings")

    # --- helpers shared by venue schemas ---

    def _price(self, value: Any, field_name: str) -> Decimal:
        if value is None:
            raise ProtocolDecodeError(self.venue, f"missing field '{field_name}'")
        try:
            price = value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation as e:
            raise ProtocolDecodeError(self.venue, f"bad number in '{field_name}': {value!r}") from e
        if not price.is_finite():
            raise ProtocolDecodeError(self.venue, f"non-finite '{field_name}': {value!r}")
        return price

    def _timestamp(self, value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError, InvalidOperation) as e:
            raise ProtocolDecodeError(self.venue, f"bad timestamp: {value!r}") from e

    def _quote(self, symbol: Optional[str], bid: Decimal, ask: Decimal, source_ts: Optional[int]) -> Quote:
        if symbol is not None and str(symbol).lower() != self.instrument:
            raise ProtocolDecodeError(self.venue, f"unexpected symbol '{symbol}', expected '{self.instrument}'")
        try:
            return Quote(
                venue=self.venue,
                instrument=self.instrument,
                bid=bid,
                ask=ask,
                ingest_time=self.clock(),
                source_ts=source_ts,
            )
        except ValueError as e:
            raise ProtocolDecodeError(self.venue, str(e)) from e


class BinanceDecoder(QuoteDecoder):
    """
    Plain UTF-8 text frames with a flat book ticker:
    {"u": 400900217, "s": "ETHUSDT", "b": "1801.50", "B": "3.1", "a": "1801.80", "A": "2.0"}
    The 24h @ticker stream uses the same "b"/"a" keys plus an event time "E".
    """
    def __init__(self, venue: str, instrument: str, explicit_subscribe: bool = False, **kw):
        super().__init__(venue, instrument, **kw)
        self.explicit_subscribe = explicit_subscribe
        self._request_id = 0

    def unwrap(self, frame: Frame) -> str:
        if isinstance(frame, (bytes, bytearray)):
            try:
                return bytes(frame).decode("utf-8")
            except UnicodeDecodeError as e:
                raise ProtocolDecodeError(self.venue, "binary frame is not UTF-8") from e
        return frame

    def interpret(self, payload: Dict[str, Any]) -> Decoded:
        # Subscribe ack: {"result": null, "id": 1}
        if "result" in payload and "id" in payload:
            logger.debug(f"[{self.venue}] subscription ack id={payload['id']}")
            return None
        if "code" in payload and "msg" in payload:
            logger.warning(f"[{self.venue}] venue error {payload['code']}: {payload['msg']}")
            return None
        # Combined stream envelope: {"stream": "...", "data": {...}}
        if "data" in payload and isinstance(payload["data"], dict):
            payload = payload["data"]

        if "b" not in payload or "a" not in payload:
            raise ProtocolDecodeError(self.venue, f"not a book ticker: keys={sorted(payload)}")

        ts = payload.get("E") or payload.get("T")
        return self._quote(
            payload.get("s"),
            self._price(payload["b"], "b"),
            self._price(payload["a"], "a"),
            self._timestamp(ts),
        )

    def subscribe_frame(self) -> Optional[Dict[str, Any]]:
        if not self.explicit_subscribe:
            return None
        self._request_id += 1
        return {
            "method": "SUBSCRIBE",
            "params": [f"{self.instrument}@bookTicker"],
            "id": self._request_id,
        }


class HuobiDecoder(QuoteDecoder):
    """
    Gzip-compressed binary frames. Market data arrives in a channel + tick envelope:
    {"ch": "market.ethusdt.bbo", "ts": 1630000000000, "tick": {"bid": 1799.8, "ask": 1800.0, ...}}
    The server pushes {"ping": <ms>} and closes the socket unless {"pong": <ms>} comes back.
    """
    channel_suffix = "bbo"

    def unwrap(self, frame: Frame) -> str:
        if isinstance(frame, str):
            return frame
        try:
            return gzip.decompress(bytes(frame)).decode("utf-8")
        except (OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
            raise ProtocolDecodeError(self.venue, f"cannot gunzip frame: {e}") from e

    def interpret(self, payload: Dict[str, Any]) -> Decoded:
        if "ping" in payload:
            return Ping(_json_native(payload["ping"]))
        if "pong" in payload:
            return None
        status = payload.get("status")
        if status == "error" or "err-msg" in payload:
            logger.warning(f"[{self.venue}] venue error {payload.get('err-code')}: {payload.get('err-msg')}")
            return None
        if "subbed" in payload or "unsubbed" in payload:
            logger.info(f"[{self.venue}] subscribed to {payload.get('subbed') or payload.get('unsubbed')}")
            return None

        channel = payload.get("ch")
        tick = payload.get("tick")
        if not isinstance(channel, str) or not isinstance(tick, dict):
            raise ProtocolDecodeError(self.venue, f"not a channel tick: keys={sorted(payload)}")

        parts = channel.split(".")
        if len(parts) != 3 or parts[0] != "market" or parts[2] != self.channel_suffix:
            raise ProtocolDecodeError(self.venue, f"unexpected channel '{channel}'")

        ts = payload.get("ts")
        return self._quote(
            parts[1],
            self._price(tick.get("bid"), "tick.bid"),
            self._price(tick.get("ask"), "tick.ask"),
            self._timestamp(ts),
        )

    def subscribe_frame(self) -> Optional[Dict[str, Any]]:
        return {"sub": f"market.{self.instrument}.{self.channel_suffix}", "id": str(int(time.time() * 1000))}

    def pong(self, ping: Ping) -> Dict[str, Any]:
        return {"pong": ping.value}


def _json_native(value: Any) -> Any:
    """Undo parse_float=Decimal so the value can be echoed through json.dumps."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value
