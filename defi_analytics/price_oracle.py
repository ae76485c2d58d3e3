#!/usr/bin/env python3
"""
Price Oracle Adapter — CoinGecko with Static Fallback
======================================================
Based on the public endpoint: https://docs.coingecko.com/reference/simple-price

Maps token symbols to USD prices. One batched HTTP request per call;
any failure degrades to the built-in static table. Nothing raised by
the feed ever escapes this module.
"""

import asyncio
import logging
import math
import time
from typing import Dict, Iterable, Mapping, Optional, Tuple

import httpx

from defi_analytics.central_config import STATIC_PRICES, config
from defi_analytics.errors import UnparseableResponse, UpstreamUnavailable
from defi_analytics.stablecoins import normalize_symbol

logger = logging.getLogger(__name__)


class PriceOracleAdapter:
    """USD price lookup by token symbol."""

    def __init__(
        self,
        cache_ttl_seconds: float = 0,
        static_prices: Optional[Mapping[str, float]] = None,
        symbol_to_id: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        self.timeout = timeout if timeout is not None else config.prices.TIMEOUT_SECONDS
        self._static = dict(static_prices if static_prices is not None else STATIC_PRICES)
        self._ids = dict(
            symbol_to_id if symbol_to_id is not None else config.prices.SYMBOL_TO_ID
        )
        # symbol -> (price, fetched_at); disabled when ttl is 0
        self._cache_ttl_seconds = cache_ttl_seconds
        self._cache: Dict[str, Tuple[float, float]] = {}

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Resolve USD prices for ``symbols`` (case-insensitive).

        Resolution order per symbol: fresh cache entry → live feed →
        static table → 0.0. A failed feed request counts as a total
        failure: every uncached symbol is then served from the static table.
        """
        wanted = {normalize_symbol(s) for s in symbols if s and s.strip()}
        if not wanted:
            return {}

        prices: Dict[str, float] = {}
        misses = set()
        now = time.monotonic()
        for symbol in wanted:
            cached = self._cache.get(symbol)
            if cached is not None and now - cached[1] < self._cache_ttl_seconds:
                logger.debug("Price cache hit for %s", symbol)
                prices[symbol] = cached[0]
            else:
                misses.add(symbol)

        if not misses:
            return prices

        try:
            live = await self._fetch_live(misses)
        except (UpstreamUnavailable, UnparseableResponse) as e:
            logger.warning("Live price feed failed (%s); using static table", e)
            live = {}

        fetched_at = time.monotonic()
        for symbol in misses:
            if symbol in live:
                prices[symbol] = live[symbol]
                if self._cache_ttl_seconds > 0:
                    self._cache[symbol] = (live[symbol], fetched_at)
            else:
                prices[symbol] = self._static.get(symbol, 0.0)

        return prices

    async def get_price(self, symbol: str) -> float:
        """Single-symbol convenience wrapper around :meth:`get_prices`."""
        prices = await self.get_prices([symbol])
        return prices.get(normalize_symbol(symbol), 0.0)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _fetch_live(self, symbols: Iterable[str]) -> Dict[str, float]:
        """One batched /simple/price request. Raises on any failure."""
        ids = {s: self._ids[s] for s in symbols if s in self._ids}
        if not ids:
            return {}

        url = config.prices.get_simple_price_url(ids.values())
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"price feed unreachable: {type(e).__name__}") from e

        if response.status_code != 200:
            raise UpstreamUnavailable(f"price feed HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise UnparseableResponse("price feed returned non-JSON body") from e

        if not isinstance(data, dict):
            raise UnparseableResponse("price feed body is not an object")

        return self._extract_prices(data, ids)

    @staticmethod
    def _extract_prices(data: Dict, ids: Dict[str, str]) -> Dict[str, float]:
        """Map {coin_id: {"usd": n}} back onto symbols."""
        out: Dict[str, float] = {}
        for symbol, coin_id in ids.items():
            entry = data.get(coin_id)
            if entry is None:
                continue  # omitted coin → static table
            usd = entry.get("usd") if isinstance(entry, dict) else None
            if isinstance(usd, bool) or not isinstance(usd, (int, float)):
                raise UnparseableResponse(f"malformed price entry for {coin_id}")
            try:
                price = float(usd)
            except OverflowError as e:
                raise UnparseableResponse(f"price out of range for {coin_id}") from e
            if not math.isfinite(price) or price < 0:
                raise UnparseableResponse(f"malformed price entry for {coin_id}")
            out[symbol] = price
        return out


# Global adapter (no cache → stateless)
price_oracle = PriceOracleAdapter()


if __name__ == "__main__":
    # Usage: python -m defi_analytics.price_oracle ETH USDC ...
    import sys as _sys

    _symbols = _sys.argv[1:] or ["ETH", "BTC", "USDC"]
    for _sym, _price in sorted(asyncio.run(price_oracle.get_prices(_symbols)).items()):
        print(f"  {_sym:<8} ${_price:,.4f}")
