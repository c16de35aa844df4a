"""
Price Oracle Service

Spot prices and the top-coins market list from CoinGecko.

Individual coins the feed knows nothing about are simply absent from the
result. Transport failures, timeouts, 429 and 5xx responses are retried with a
capped exponential backoff; once attempts are exhausted the caller gets a
PriceFeedError and decides whether to degrade or retry later.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import httpx
from redis.asyncio import Redis

from prizepool.core.config import settings
from prizepool.core.redis import cache_get_json, cache_set_json, get_redis_client

logger = logging.getLogger(__name__)

TOP_COINS_CACHE_KEY = "market:top_coins"


class PriceFeedError(Exception):
    """Raised when the market data source cannot be reached or answers garbage"""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


def points_for_rank(market_cap_rank: int) -> int:
    """
    Cost table: 25 points for the top 8 coins, one point less for each
    following block of 8, never below 5.
    """
    rank = max(int(market_cap_rank), 1)
    return max(25 - (rank - 1) // 8, 5)


def _price_cache_key(coin_id: str) -> str:
    return f"price:coingecko:{coin_id}"


class CoinGeckoClient:
    """
    Batch price lookups against the CoinGecko REST API.

    An httpx.AsyncClient can be injected (tests use httpx.MockTransport);
    otherwise a short-lived client is opened per request.
    """

    def __init__(
        self,
        redis: Optional[Redis] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.redis = redis
        self._http = http_client
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_current_prices(
        self, coin_ids: Iterable[str], use_cache: bool = True
    ) -> Dict[str, float]:
        """USD price per coin id. Unknown coins are left out, never raised on."""
        ids = sorted({coin_id for coin_id in coin_ids if coin_id})
        if not ids:
            return {}

        prices: Dict[str, float] = {}
        pending = ids

        if use_cache and self.redis is not None:
            pending = []
            for coin_id in ids:
                cached = await cache_get_json(self.redis, _price_cache_key(coin_id))
                if isinstance(cached, (int, float)) and cached > 0:
                    prices[coin_id] = float(cached)
                else:
                    pending.append(coin_id)

        chunk_size = max(settings.COINGECKO_IDS_PER_REQUEST, 1)
        for start in range(0, len(pending), chunk_size):
            chunk = pending[start:start + chunk_size]
            data = await self._get_json(
                "/simple/price",
                {"ids": ",".join(chunk), "vs_currencies": "usd"},
            )
            if not isinstance(data, dict):
                raise PriceFeedError("Unexpected /simple/price payload")

            for coin_id in chunk:
                entry = data.get(coin_id)
                usd = entry.get("usd") if isinstance(entry, dict) else None
                if isinstance(usd, (int, float)) and usd > 0:
                    prices[coin_id] = float(usd)
                    await cache_set_json(
                        self.redis, _price_cache_key(coin_id), float(usd),
                        settings.PRICE_CACHE_TTL_SECONDS
                    )

        missing = len(ids) - len(prices)
        if missing:
            logger.info(f"Price feed returned {len(prices)}/{len(ids)} prices ({missing} without data)")
        return prices

    async def get_top_coins(self, limit: int = 200) -> List[Dict[str, Any]]:
        """Top coins by market cap with their team-building cost in points"""
        cached = await cache_get_json(self.redis, TOP_COINS_CACHE_KEY)
        if isinstance(cached, list) and len(cached) >= limit:
            return cached[:limit]

        data = await self._get_json(
            "/coins/markets",
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": limit,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": "1h",
            },
        )
        if not isinstance(data, list):
            raise PriceFeedError("Unexpected /coins/markets payload")

        coins = []
        for index, coin in enumerate(data):
            if not isinstance(coin, dict) or not coin.get("id"):
                continue
            position = index + 1
            coins.append({
                "id": coin["id"],
                "symbol": str(coin.get("symbol", "")).upper(),
                "name": coin.get("name", ""),
                "current_price": coin.get("current_price"),
                "price_change_percentage_1h_in_currency": coin.get("price_change_percentage_1h_in_currency"),
                "market_cap_rank": coin.get("market_cap_rank") or position,
                "points": points_for_rank(position),
            })

        await cache_set_json(self.redis, TOP_COINS_CACHE_KEY, coins, settings.TOP_COINS_CACHE_TTL_SECONDS)
        return coins

    # ------------------------------------------------------------------
    # HTTP with retry
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if settings.COINGECKO_API_KEY:
            headers["x-cg-demo-api-key"] = settings.COINGECKO_API_KEY
        return headers

    async def _request(self, client: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Any:
        url = f"{settings.COINGECKO_BASE_URL}{path}"
        try:
            response = await client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            raise PriceFeedError(
                f"HTTP {code} from {path}",
                retryable=code == 429 or code >= 500,
            )
        except httpx.TimeoutException as e:
            raise PriceFeedError(f"Timeout calling {path}: {e}", retryable=True)
        except httpx.RequestError as e:
            raise PriceFeedError(f"Request error calling {path}: {e}", retryable=True)
        except ValueError as e:
            raise PriceFeedError(f"Invalid JSON from {path}: {e}")

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        attempts = max(settings.PRICE_FETCH_MAX_ATTEMPTS, 1)
        last_error: Optional[PriceFeedError] = None

        for attempt in range(attempts):
            try:
                if self._http is not None:
                    return await self._request(self._http, path, params)
                async with httpx.AsyncClient(timeout=settings.COINGECKO_TIMEOUT_SECONDS) as client:
                    return await self._request(client, path, params)
            except PriceFeedError as e:
                last_error = e
                if not e.retryable or attempt == attempts - 1:
                    break
                wait_time = min(
                    settings.PRICE_FETCH_BACKOFF_SECONDS * (2 ** attempt),
                    settings.PRICE_FETCH_BACKOFF_MAX_SECONDS,
                )
                logger.warning(
                    f"Price fetch attempt {attempt + 1}/{attempts} failed, "
                    f"retrying in {wait_time:.1f}s: {e}"
                )
                await self._sleep(wait_time)

        logger.error(f"Price feed unavailable for {path}: {last_error}")
        raise PriceFeedError(f"Price feed unavailable: {last_error}")


# Dependency injection helper
def get_price_oracle() -> CoinGeckoClient:
    return CoinGeckoClient(redis=get_redis_client())
