"""Cached USD prices for native assets."""
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

import aiohttp

from radar.config import FALLBACK_PRICES, PRICE_API_URL, PRICE_TTL

logger = logging.getLogger(__name__)

PriceFetcher = Callable[[str], Awaitable[float]]


class PriceError(Exception):
    pass


async def fetch_coingecko_price(ticker: str) -> float:
    """
    Fetch the USD price of ``ticker`` (a CoinGecko asset id).

    Raises:
        PriceError: on a non-200 response or a missing price
    """
    params = {"ids": ticker, "vs_currencies": "usd"}
    async with aiohttp.ClientSession() as session:
        async with session.get(
            PRICE_API_URL,
            params=params,
            timeout=aiohttp.ClientTimeout(total=10),
        ) as response:
            if response.status != 200:
                raise PriceError(f"Price API returned {response.status} for {ticker}")
            data = await response.json()

    price = (data.get(ticker) or {}).get("usd")
    if price is None:
        raise PriceError(f"No USD price for {ticker}")
    return float(price)


class PriceFeed:
    """Per-ticker price cache with a fixed time-to-live."""

    def __init__(
        self,
        fetcher: PriceFetcher = fetch_coingecko_price,
        ttl: float = PRICE_TTL,
        fallback: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetcher
        self.ttl = ttl
        self.fallback = FALLBACK_PRICES if fallback is None else fallback
        self._clock = clock
        self._cache: Dict[str, Tuple[float, float]] = {}

    async def get_price(self, ticker: str) -> float:
        """
        USD price of ``ticker``, refreshed at most once per TTL.

        On fetch failure the last cached price is reused, then the static
        fallback, then 0.
        """
        now = self._clock()
        cached = self._cache.get(ticker)
        if cached and now - cached[1] < self.ttl:
            return cached[0]

        try:
            price = await self._fetch(ticker)
            if price <= 0:
                raise PriceError(f"Non-positive price for {ticker}: {price}")
        except Exception as e:
            logger.warning(f"[PRICE] Fetch failed for {ticker}, using fallback: {e}")
            if cached:
                return cached[0]
            return float(self.fallback.get(ticker, 0.0))

        self._cache[ticker] = (float(price), now)
        return float(price)
