import os

# Settings are read at import time, so the environment must be in place first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("ENVIRONMENT", "development")

from datetime import datetime, timedelta  # noqa: E402
from typing import Dict, Iterable, List, Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from prizepool.models import contest, participant, prices, ranking, team  # noqa: E402,F401
from prizepool.models.contest import DistributionType, PrizePoolCreate, PrizeTier  # noqa: E402
from prizepool.models.team import TeamTokenIn  # noqa: E402
from prizepool.services.price_oracle import PriceFeedError, points_for_rank  # noqa: E402

# Market cap rank of the first coin of each test token family, see make_tokens
MARKET_FAMILIES = {"top": 1, "alpha": 100, "beta": 120, "gamma": 140, "alt": 160}


def market_ranks() -> Dict[str, int]:
    return {
        f"{prefix}-{i}": start + i
        for prefix, start in MARKET_FAMILIES.items()
        for i in range(11)
    }


class FakeOracle:
    """
    In-memory price source. Coins missing from `prices` have no data and only
    coins in `ranks` are listed as top coins.
    """

    def __init__(
        self,
        prices: Optional[Dict[str, float]] = None,
        ranks: Optional[Dict[str, int]] = None,
    ):
        self.prices: Dict[str, float] = dict(prices or {})
        self.ranks: Dict[str, int] = dict(ranks or {})
        self.fail = False
        self.calls: List[List[str]] = []

    async def get_current_prices(self, coin_ids: Iterable[str], use_cache: bool = True) -> Dict[str, float]:
        ids = sorted(set(coin_ids))
        self.calls.append(ids)
        if self.fail:
            raise PriceFeedError("feed down", retryable=True)
        return {coin_id: self.prices[coin_id] for coin_id in ids if coin_id in self.prices}

    async def get_top_coins(self, limit: int = 200) -> List[dict]:
        if self.fail:
            raise PriceFeedError("feed down", retryable=True)
        listed = sorted(self.ranks.items(), key=lambda item: item[1])[:limit]
        return [
            {
                "id": coin_id,
                "symbol": coin_id.replace("-", "").upper(),
                "name": coin_id.replace("-", " ").title(),
                "current_price": self.prices.get(coin_id),
                "market_cap_rank": rank,
                "points": points_for_rank(rank),
            }
            for coin_id, rank in listed
        ]


class FakeClock:

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_tokens(prefix: str, count: int = 11) -> List[TeamTokenIn]:
    return [
        TeamTokenIn(id=f"{prefix}-{i}", symbol=f"{prefix[:3]}{i}", name=f"{prefix.title()} {i}")
        for i in range(count)
    ]


def make_pool_data(**overrides) -> PrizePoolCreate:
    data = dict(
        serial_number="PP-001",
        name="Weekend Sprint",
        entry_fee=10,
        max_participants=2,
        duration_minutes=1,
        prize_pool_size=1000,
        distribution_type=DistributionType.PERCENTAGE,
        distributions=[
            PrizeTier(rank_from=1, rank_to=1, percentage=50),
            PrizeTier(rank_from=2, rank_to=3, percentage=10),
        ],
        admin_cut=10,
    )
    data.update(overrides)
    return PrizePoolCreate(**data)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def oracle():
    return FakeOracle(ranks=market_ranks())


@pytest.fixture
def clock():
    return FakeClock()
