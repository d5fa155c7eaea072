"""Latest-quote store shared across connector threads."""

import threading
from decimal import Decimal

from arbwatch.config import SkewConfig
from arbwatch.market_state import MarketStateStore
from arbwatch.skew import ClockSkewEstimator


def test_put_overwrites_per_venue(clock, make_quote):
    store = MarketStateStore(clock=clock)

    store.put(make_quote("binance", "1800.00", "1800.10"))
    store.put(make_quote("binance", "1801.00", "1801.10"))

    assert store.venues() == ["binance"]
    assert store.get("binance").bid == Decimal("1801.00")
    assert store.get("huobi") is None


def test_snapshot_is_a_copy(clock, make_quote):
    store = MarketStateStore(clock=clock)
    store.put(make_quote("binance", "1800.00", "1800.10"))

    snap = store.snapshot()
    store.put(make_quote("huobi", "1799.00", "1799.50"))

    assert list(snap) == ["binance"]
    assert len(store.snapshot()) == 2


def test_is_fresh_is_strict(clock, make_quote):
    store = MarketStateStore(clock=clock)
    quote = make_quote("binance", "1800.00", "1800.10")

    clock.advance(299)
    assert store.is_fresh(quote, 300)
    clock.advance(1)
    assert not store.is_fresh(quote, 300)
    assert store.is_fresh(quote, 300, now=quote.ingest_time)


def test_put_feeds_the_estimator(clock, make_quote):
    estimator = ClockSkewEstimator(SkewConfig())
    store = MarketStateStore(estimator=estimator, clock=clock)

    store.put(make_quote("binance", "1800.00", "1800.10", at=1000))
    assert estimator.stats().samples == 0

    store.put(make_quote("huobi", "1799.00", "1799.50", at=1400))
    stats = estimator.stats()
    assert stats.samples == 1
    assert stats.mean_ms == 400.0


def test_concurrent_writers(clock, make_quote):
    store = MarketStateStore(clock=clock)
    venues = [f"venue{i}" for i in range(4)]

    def writer(venue):
        for i in range(1, 501):
            store.put(make_quote(venue, str(i), str(i + 1)))

    threads = [threading.Thread(target=writer, args=(v,)) for v in venues]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snap = store.snapshot()
    assert sorted(snap) == venues
    for quote in snap.values():
        assert quote.bid == Decimal(500)
        assert quote.ask == Decimal(501)
