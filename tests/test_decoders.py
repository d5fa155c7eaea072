"""Wire decoding for both venue styles: framing, schema, control frames, bad input."""

import json
from decimal import Decimal

import pytest

from arbwatch.decoders import BinanceDecoder, HuobiDecoder
from arbwatch.errors import ProtocolDecodeError
from arbwatch.models import Ping, Quote
from arbwatch.stats import StatisticsAggregator
from conftest import gz


BOOK_TICKER = {"u": 400900217, "s": "ETHUSDT", "b": "1801.50", "B": "3.1", "a": "1801.80", "A": "2.0"}
HUOBI_TICK = {
    "ch": "market.ethusdt.bbo",
    "ts": 1630000000123,
    "tick": {"symbol": "ethusdt", "quoteTime": 1630000000120, "bid": 1799.8, "bidSize": 1.2,
             "ask": 1800.0, "askSize": 0.7},
}


class TestBinanceDecoder:

    @pytest.fixture
    def decoder(self, clock):
        return BinanceDecoder("binance", "ethusdt", clock=clock)

    def test_book_ticker_text_frame(self, decoder, clock):
        quote = decoder.decode(json.dumps(BOOK_TICKER))

        assert isinstance(quote, Quote)
        assert quote.venue == "binance"
        assert quote.instrument == "ethusdt"
        assert quote.bid == Decimal("1801.50")
        assert quote.ask == Decimal("1801.80")
        assert quote.ingest_time == clock.now
        assert quote.source_ts is None

    def test_bytes_frame_and_event_time(self, decoder):
        payload = dict(BOOK_TICKER, E=1630000000999)
        quote = decoder.decode(json.dumps(payload).encode("utf-8"))

        assert quote.source_ts == 1630000000999

    def test_combined_stream_envelope(self, decoder):
        quote = decoder.decode(json.dumps({"stream": "ethusdt@bookTicker", "data": BOOK_TICKER}))
        assert quote.ask == Decimal("1801.80")

    def test_subscribe_ack_is_ignored(self, decoder):
        assert decoder.decode('{"result": null, "id": 1}') is None
        assert decoder.errors == 0

    def test_error_frame_is_ignored(self, decoder):
        assert decoder.decode('{"code": 2, "msg": "Invalid request"}') is None
        assert decoder.errors == 0

    def test_missing_fields_are_dropped_not_raised(self, decoder):
        assert decoder.decode('{"s": "ETHUSDT", "b": "1.0"}') is None
        assert decoder.errors == 1

    def test_invalid_json(self, decoder):
        assert decoder.decode("{not json") is None
        with pytest.raises(ProtocolDecodeError):
            decoder.parse("{not json")

    def test_non_object_payload(self, decoder):
        with pytest.raises(ProtocolDecodeError):
            decoder.parse("[1, 2, 3]")

    def test_other_symbol_rejected(self, decoder):
        with pytest.raises(ProtocolDecodeError, match="unexpected symbol"):
            decoder.parse(json.dumps(dict(BOOK_TICKER, s="BTCUSDT")))

    def test_non_positive_price_rejected(self, decoder):
        with pytest.raises(ProtocolDecodeError):
            decoder.parse(json.dumps(dict(BOOK_TICKER, b="0")))

    def test_bad_number_rejected(self, decoder):
        with pytest.raises(ProtocolDecodeError, match="bad number"):
            decoder.parse(json.dumps(dict(BOOK_TICKER, a="abc")))

    def test_crossed_book_is_accepted(self, decoder):
        quote = decoder.decode(json.dumps(dict(BOOK_TICKER, b="1802.00", a="1801.00")))
        assert quote.bid > quote.ask

    def test_path_subscription_sends_nothing(self, decoder):
        assert decoder.subscribe_frame() is None

    def test_explicit_subscribe_frame(self, clock):
        decoder = BinanceDecoder("binance", "ETHUSDT", explicit_subscribe=True, clock=clock)

        first = decoder.subscribe_frame()
        second = decoder.subscribe_frame()

        assert first == {"method": "SUBSCRIBE", "params": ["ethusdt@bookTicker"], "id": 1}
        assert second["id"] == 2

    def test_infinite_event_time_is_dropped(self, decoder):
        frame = '{"s": "ETHUSDT", "b": "1", "a": "2", "E": Infinity}'

        assert decoder.decode(frame) is None
        assert decoder.errors == 1
        with pytest.raises(ProtocolDecodeError, match="bad timestamp"):
            decoder.parse(frame)

    def test_unexpected_error_is_dropped_and_counted(self, decoder):
        decoder.interpret = lambda payload: 1 / 0

        assert decoder.decode(json.dumps(BOOK_TICKER)) is None
        assert decoder.errors == 1

    def test_decode_errors_reach_stats(self, clock):
        stats = StatisticsAggregator()
        decoder = BinanceDecoder("binance", "ethusdt", clock=clock, stats=stats)

        decoder.decode("garbage")
        decoder.decode("{}")

        assert stats.snapshot().decode_errors == 2


class TestHuobiDecoder:

    @pytest.fixture
    def decoder(self, clock):
        return HuobiDecoder("huobi", "ethusdt", clock=clock)

    def test_gzip_tick(self, decoder, clock):
        quote = decoder.decode(gz(HUOBI_TICK))

        assert isinstance(quote, Quote)
        assert quote.venue == "huobi"
        assert quote.bid == Decimal("1799.8")
        assert quote.ask == Decimal("1800.0")
        assert quote.source_ts == 1630000000123
        assert quote.ingest_time == clock.now

    def test_ping_keeps_server_value(self, decoder):
        ping = decoder.decode(gz({"ping": 1492420473027}))

        assert ping == Ping(1492420473027)
        assert decoder.pong(ping) == {"pong": 1492420473027}

    def test_subscribe_ack_is_ignored(self, decoder):
        ack = {"id": "1", "status": "ok", "subbed": "market.ethusdt.bbo", "ts": 1}
        assert decoder.decode(gz(ack)) is None
        assert decoder.errors == 0

    def test_error_frame_is_ignored(self, decoder):
        err = {"status": "error", "err-code": "bad-request", "err-msg": "invalid topic", "ts": 1}
        assert decoder.decode(gz(err)) is None
        assert decoder.errors == 0

    def test_pong_echo_is_ignored(self, decoder):
        assert decoder.decode(gz({"pong": 5})) is None

    def test_text_frame_is_accepted(self, decoder):
        quote = decoder.decode(json.dumps(HUOBI_TICK))
        assert quote.ask == Decimal("1800.0")

    def test_corrupt_binary_dropped(self, decoder):
        assert decoder.decode(b"\x00\x01not-gzip") is None
        assert decoder.errors == 1

    def test_unexpected_channel(self, decoder):
        with pytest.raises(ProtocolDecodeError, match="unexpected channel"):
            decoder.parse(gz(dict(HUOBI_TICK, ch="market.ethusdt.depth.step0")))

    def test_other_symbol_rejected(self, decoder):
        with pytest.raises(ProtocolDecodeError, match="unexpected symbol"):
            decoder.parse(gz(dict(HUOBI_TICK, ch="market.btcusdt.bbo")))

    def test_missing_tick_price(self, decoder):
        with pytest.raises(ProtocolDecodeError, match="missing field"):
            decoder.parse(gz(dict(HUOBI_TICK, tick={"bid": 1.0})))

    def test_subscribe_frame(self, decoder):
        frame = decoder.subscribe_frame()

        assert frame["sub"] == "market.ethusdt.bbo"
        assert frame["id"].isdigit()

    def test_fractional_ping_echoes_as_json_number(self, decoder):
        ping = decoder.decode(gz({"ping": 1.5}))

        assert ping == Ping(1.5)
        assert json.loads(json.dumps(decoder.pong(ping))) == {"pong": 1.5}
