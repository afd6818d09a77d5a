"""CoinGecko API client for token USD prices.

Cache-first price oracle used to value vault positions. Spot prices are
cached briefly; historical prices never change and are cached for a day.
There is no retry here: failures surface immediately as ProviderError or
PriceUnavailable and the caller decides what to do.

API docs: https://docs.coingecko.com/reference/simple-price
"""

import time
from datetime import date
from typing import Any, Dict, Iterable, Optional

import httpx
import structlog

from shards.core.config import Settings
from shards.core.redis import Cache
from shards.services.errors import PriceUnavailable, ProviderError

logger = structlog.get_logger()

PRICE_CACHE_PREFIX = "price-data"

SYMBOL_TO_COIN_ID = {
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "WETH": "weth",
    "WBTC": "wrapped-bitcoin",
    "ILV": "illuvium",
    "IMX": "immutable-x",
    "MATIC": "matic-network",
    "ARB": "arbitrum",
    "OP": "optimism",
}


def price_cache_key(symbol: str, on_date: Optional[date] = None) -> str:
    key = f"{PRICE_CACHE_PREFIX}:{symbol.lower()}"
    if on_date is not None:
        key = f"{key}:{on_date.isoformat()}"
    return key


class CoinGeckoClient:
    """Async CoinGecko client with a cache-first read policy."""

    def __init__(
        self,
        settings: Settings,
        cache: Cache,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = settings.coingecko_base_url.rstrip("/")
        self.api_key = settings.coingecko_api_key
        self.price_ttl = settings.price_cache_ttl_seconds
        self.historical_ttl = settings.historical_cache_ttl_seconds
        self.timeout = httpx.Timeout(settings.provider_timeout_seconds)
        self.cache = cache
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-pro-api-key"] = self.api_key
        return headers

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        """GET a CoinGecko endpoint and return the decoded JSON body."""
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.warning("CoinGecko request failed", path=path, error=str(e))
            raise ProviderError(f"CoinGecko request failed: {e}") from e

        latency_ms = (time.monotonic() - start) * 1000
        if response.status_code != 200:
            logger.warning(
                "CoinGecko API error",
                path=path,
                status=response.status_code,
                body=response.text[:200],
                latency_ms=round(latency_ms, 1),
            )
            raise ProviderError(
                f"CoinGecko API error {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"CoinGecko returned malformed JSON: {e}") from e

    def map_symbol_to_coin_id(self, symbol: str) -> str:
        coin_id = SYMBOL_TO_COIN_ID.get(symbol.upper())
        if coin_id is None:
            logger.warning("No CoinGecko mapping for symbol, using lowercase", symbol=symbol)
            return symbol.lower()
        return coin_id

    async def get_token_price(self, symbol: str) -> float:
        """Spot USD price for one token.

        Raises:
            PriceUnavailable: CoinGecko has no price for the token
            ProviderError: CoinGecko unreachable or returned an error
        """
        cache_key = price_cache_key(symbol)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return float(cached)

        coin_id = self.map_symbol_to_coin_id(symbol)
        data = await self._get("/simple/price", {"ids": coin_id, "vs_currencies": "usd"})

        price = (data.get(coin_id) or {}).get("usd") if isinstance(data, dict) else None
        if price is None:
            logger.error("CoinGecko returned no price", symbol=symbol, coin_id=coin_id)
            raise PriceUnavailable(symbol)

        price = float(price)
        await self.cache.set(cache_key, price, self.price_ttl)
        return price

    async def get_multiple_token_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """Spot USD prices for several tokens in one upstream call.

        Symbols CoinGecko does not price are omitted from the result; callers
        treat absence as an unknown price.
        """
        prices: Dict[str, float] = {}
        uncached = []

        for symbol in dict.fromkeys(symbols):
            cached = await self.cache.get(price_cache_key(symbol))
            if cached is not None:
                prices[symbol] = float(cached)
            else:
                uncached.append(symbol)

        if not uncached:
            return prices

        coin_ids = {symbol: self.map_symbol_to_coin_id(symbol) for symbol in uncached}
        data = await self._get(
            "/simple/price",
            {"ids": ",".join(dict.fromkeys(coin_ids.values())), "vs_currencies": "usd"},
        )
        if not isinstance(data, dict):
            raise ProviderError("CoinGecko returned malformed price payload")

        for symbol, coin_id in coin_ids.items():
            price = (data.get(coin_id) or {}).get("usd")
            if price is None:
                logger.warning("Price missing from batch response", symbol=symbol, coin_id=coin_id)
                continue
            prices[symbol] = float(price)
            await self.cache.set(price_cache_key(symbol), prices[symbol], self.price_ttl)

        return prices

    async def get_historical_price(self, symbol: str, on_date: date) -> float:
        """USD price of a token on a calendar date (UTC)."""
        cache_key = price_cache_key(symbol, on_date)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return float(cached)

        coin_id = self.map_symbol_to_coin_id(symbol)
        data = await self._get(
            f"/coins/{coin_id}/history",
            {"date": on_date.strftime("%d-%m-%Y"), "localization": "false"},
        )

        price = None
        if isinstance(data, dict):
            price = ((data.get("market_data") or {}).get("current_price") or {}).get("usd")
        if price is None:
            logger.error("No historical price", symbol=symbol, date=on_date.isoformat())
            raise PriceUnavailable(symbol, on_date)

        price = float(price)
        await self.cache.set(cache_key, price, self.historical_ttl)
        return price
