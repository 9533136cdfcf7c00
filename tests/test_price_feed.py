import pytest

from radar.price_feed import PriceError, PriceFeed


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Fetcher:
    def __init__(self, prices):
        self.prices = list(prices)
        self.calls = 0

    async def __call__(self, ticker):
        self.calls += 1
        value = self.prices.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


def test_price_is_cached_within_ttl(run):
    clock = Clock()
    fetcher = Fetcher([2000.0, 2100.0])
    feed = PriceFeed(fetcher, ttl=60, clock=clock)

    assert run(feed.get_price("ethereum")) == 2000.0
    clock.now = 59
    assert run(feed.get_price("ethereum")) == 2000.0
    assert fetcher.calls == 1

    clock.now = 61
    assert run(feed.get_price("ethereum")) == 2100.0
    assert fetcher.calls == 2


def test_failure_reuses_last_cached_price(run):
    clock = Clock()
    feed = PriceFeed(Fetcher([600.0, PriceError("429")]), ttl=60, clock=clock)

    run(feed.get_price("binancecoin"))
    clock.now = 120
    assert run(feed.get_price("binancecoin")) == 600.0


@pytest.mark.parametrize("failure", [PriceError("down"), 0.0])
def test_failure_without_cache_uses_fallback(run, failure):
    feed = PriceFeed(Fetcher([failure]), fallback={"matic-network": 0.4})
    assert run(feed.get_price("matic-network")) == 0.4


def test_unknown_ticker_without_fallback_is_zero(run):
    feed = PriceFeed(Fetcher([PriceError("down")]), fallback={})
    assert run(feed.get_price("nothing")) == 0.0
