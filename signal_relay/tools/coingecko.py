"""
Async CoinGecko client used as the pricing oracle.

Identifiers are CoinGecko coin IDs (``"solana"``); bare tickers (``"SOL"``)
are mapped through a small override table and otherwise resolved via the
``/search`` endpoint.  ``None`` means "no price this tick" and the lifecycle
monitor simply skips the signal.
"""

import logging
import os
from typing import Dict, Iterable, List, Optional

import httpx

from signal_relay.exceptions import PriceFetchError, RetryExhaustedError
from signal_relay.utils import with_retry

logger = logging.getLogger(__name__)

# Common ticker -> CoinGecko ID overrides (search is fuzzy for the big ones)
TICKER_ID_MAP: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "ARB": "arbitrum",
    "OP": "optimism",
    "SUI": "sui",
    "PEPE": "pepe",
    "WIF": "dogwifcoin",
    "BONK": "bonk",
    "JUP": "jupiter-exchange-solana",
    "FRAX": "frax",
}


class CoinGeckoClient:
    """Async CoinGecko price client.

    Args:
        api_key: Optional demo/pro API key.  Falls back to the
            ``COINGECKO_API_KEY`` environment variable.
        transport: Optional ``httpx`` transport (tests).
    """

    BASE_URL: str = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key: str = api_key or os.environ.get("COINGECKO_API_KEY", "")
        self._transport = transport
        self._resolved: Dict[str, Optional[str]] = {}

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=self._headers(),
            timeout=15.0,
            transport=self._transport,
        )

    # ------------------------------------------------------------------
    # Identifier resolution
    # ------------------------------------------------------------------

    async def resolve_id(self, identifier: str) -> Optional[str]:
        """Map a ticker or coin ID to a CoinGecko coin ID.

        Identifiers that already look like coin IDs (lowercase, may contain
        dashes) are returned unchanged.
        """
        if not identifier:
            return None
        if identifier in self._resolved:
            return self._resolved[identifier]

        ticker = identifier.strip().lstrip("$")
        if ticker.upper() in TICKER_ID_MAP:
            coin_id: Optional[str] = TICKER_ID_MAP[ticker.upper()]
        elif ticker == ticker.lower():
            coin_id = ticker
        else:
            coin_id = await self._search(ticker)

        self._resolved[identifier] = coin_id
        return coin_id

    @with_retry(max_attempts=3, base_delay=1.0, retryable_exceptions=(httpx.HTTPError,))
    async def _search(self, ticker: str) -> Optional[str]:
        async with self._client() as client:
            response = await client.get("/search", params={"query": ticker})
            response.raise_for_status()
            coins = response.json().get("coins", [])

        for coin in coins:
            if str(coin.get("symbol", "")).upper() == ticker.upper():
                return coin.get("id")
        logger.warning("CoinGecko search found no coin for %s", ticker)
        return None

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    @with_retry(max_attempts=3, base_delay=1.0, retryable_exceptions=(httpx.HTTPError,))
    async def _simple_price(self, coin_ids: List[str]) -> Dict[str, float]:
        async with self._client() as client:
            response = await client.get(
                "/simple/price",
                params={"ids": ",".join(coin_ids), "vs_currencies": "usd"},
            )
            response.raise_for_status()
            data = response.json()

        prices: Dict[str, float] = {}
        for coin_id in coin_ids:
            usd = (data.get(coin_id) or {}).get("usd")
            if usd is not None:
                prices[coin_id] = float(usd)
        return prices

    async def get_prices(self, identifiers: Iterable[str]) -> Dict[str, float]:
        """Batch-fetch USD prices keyed by the identifiers passed in.

        Identifiers that cannot be resolved or priced are omitted.

        Raises:
            PriceFetchError: If CoinGecko keeps failing after retries.
        """
        try:
            by_coin: Dict[str, List[str]] = {}
            for identifier in identifiers:
                coin_id = await self.resolve_id(identifier)
                if coin_id:
                    by_coin.setdefault(coin_id, []).append(identifier)

            if not by_coin:
                return {}

            coin_prices = await self._simple_price(sorted(by_coin))
        except (RetryExhaustedError, httpx.HTTPError) as exc:
            raise PriceFetchError(f"CoinGecko price lookup failed: {exc}") from exc

        logger.debug(
            "CoinGecko batch: requested=%d priced=%d", len(by_coin), len(coin_prices)
        )

        prices: Dict[str, float] = {}
        for coin_id, price in coin_prices.items():
            for identifier in by_coin[coin_id]:
                prices[identifier] = price
        return prices

    async def get_price(self, identifier: str) -> Optional[float]:
        """USD price for one identifier, or ``None`` if unavailable.

        Raises:
            PriceFetchError: If CoinGecko keeps failing after retries.
        """
        prices = await self.get_prices([identifier])
        return prices.get(identifier)


__all__ = [
    "CoinGeckoClient",
    "TICKER_ID_MAP",
]
