import json

import httpx
import pytest

from prizepool.core.config import settings
from prizepool.services.price_oracle import CoinGeckoClient, PriceFeedError


class RecordingSleep:

    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


class DictRedis:
    """Just enough of redis.asyncio.Redis for the JSON cache helpers"""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value


def _client(handler, redis=None):
    sleep = RecordingSleep()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CoinGeckoClient(redis=redis, http_client=http, sleep=sleep), sleep


def _scripted(*responses):
    """Handler replaying responses in order and recording requests"""
    requests = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        # Fresh copy, the client consumes and closes each response it receives
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    return handler, requests


async def test_partial_results_leave_out_unknown_coins():
    handler, requests = _scripted(
        httpx.Response(200, json={"bitcoin": {"usd": 65000.5}, "ethereum": {"usd": 0}, "weird": {}})
    )
    client, _ = _client(handler)

    prices = await client.get_current_prices(["ethereum", "bitcoin", "weird", "unknown-coin", "bitcoin"])

    assert prices == {"bitcoin": 65000.5}
    assert len(requests) == 1
    assert requests[0].url.path.endswith("/simple/price")
    assert requests[0].url.params["ids"] == "bitcoin,ethereum,unknown-coin,weird"
    assert requests[0].url.params["vs_currencies"] == "usd"


async def test_empty_input_makes_no_request():
    handler, requests = _scripted(httpx.Response(200, json={}))
    client, _ = _client(handler)

    assert await client.get_current_prices([]) == {}
    assert requests == []


async def test_server_error_is_retried_with_backoff():
    handler, requests = _scripted(
        httpx.Response(502),
        httpx.Response(200, json={"bitcoin": {"usd": 100}}),
    )
    client, sleep = _client(handler)

    assert await client.get_current_prices(["bitcoin"]) == {"bitcoin": 100.0}
    assert len(requests) == 2
    assert sleep.waits == [settings.PRICE_FETCH_BACKOFF_SECONDS]


async def test_rate_limit_exhausts_attempts():
    handler, requests = _scripted(httpx.Response(429))
    client, sleep = _client(handler)

    with pytest.raises(PriceFeedError):
        await client.get_current_prices(["bitcoin"])

    assert len(requests) == settings.PRICE_FETCH_MAX_ATTEMPTS
    assert sleep.waits == [0.5, 1.0]


async def test_timeouts_are_retried():
    handler, requests = _scripted(
        httpx.ConnectTimeout("slow"),
        httpx.Response(200, json={"solana": {"usd": 150}}),
    )
    client, _ = _client(handler)

    assert await client.get_current_prices(["solana"]) == {"solana": 150.0}
    assert len(requests) == 2


async def test_client_errors_are_not_retried():
    handler, requests = _scripted(httpx.Response(404))
    client, sleep = _client(handler)

    with pytest.raises(PriceFeedError):
        await client.get_current_prices(["bitcoin"])

    assert len(requests) == 1
    assert sleep.waits == []


async def test_ids_are_requested_in_chunks(monkeypatch):
    monkeypatch.setattr(settings, "COINGECKO_IDS_PER_REQUEST", 2)
    seen = []

    def handler(request):
        ids = request.url.params["ids"].split(",")
        seen.append(ids)
        return httpx.Response(200, json={coin_id: {"usd": 1.5} for coin_id in ids})

    client, _ = _client(handler)
    prices = await client.get_current_prices(["a", "b", "c"])

    assert seen == [["a", "b"], ["c"]]
    assert prices == {"a": 1.5, "b": 1.5, "c": 1.5}


async def test_cached_prices_skip_the_feed_unless_bypassed():
    redis = DictRedis()
    redis.store["price:coingecko:bitcoin"] = json.dumps(42.0)
    handler, requests = _scripted(httpx.Response(200, json={"bitcoin": {"usd": 43.0}}))
    client, _ = _client(handler, redis=redis)

    assert await client.get_current_prices(["bitcoin"]) == {"bitcoin": 42.0}
    assert requests == []

    assert await client.get_current_prices(["bitcoin"], use_cache=False) == {"bitcoin": 43.0}
    assert json.loads(redis.store["price:coingecko:bitcoin"]) == 43.0


async def test_top_coins_carry_point_costs():
    markets = [
        {"id": f"coin-{i}", "symbol": f"c{i}", "name": f"Coin {i}", "current_price": 1.0, "market_cap_rank": i + 1}
        for i in range(10)
    ]
    handler, requests = _scripted(httpx.Response(200, json=markets))
    client, _ = _client(handler)

    coins = await client.get_top_coins(limit=10)

    assert len(coins) == 10
    assert coins[0]["symbol"] == "C0"
    assert coins[0]["points"] == 25
    assert coins[8]["points"] == 24
    assert requests[0].url.params["per_page"] == "10"


async def test_invalid_payload_raises():
    handler, _ = _scripted(httpx.Response(200, json=["not", "a", "dict"]))
    client, _ = _client(handler)

    with pytest.raises(PriceFeedError):
        await client.get_current_prices(["bitcoin"])
