import pytest
from sqlalchemy import func, select

from prizepool.models.contest import PrizePool
from prizepool.models.prices import FinalPrice, LockedPrice
from prizepool.services.price_ledger import PriceCaptureError, PriceLedger


@pytest.fixture
async def pool(session):
    pool = PrizePool(serial_number="PP-L", name="Ledger", max_participants=2, duration_minutes=1)
    session.add(pool)
    await session.commit()
    return pool


async def _count(session, model, pool_id):
    result = await session.execute(
        select(func.count()).select_from(model).where(model.prize_pool_id == pool_id)
    )
    return result.scalar_one()


async def test_capture_locked_is_idempotent(session, oracle, pool):
    oracle.prices = {"bitcoin": 100.0, "ethereum": 10.0}
    ledger = PriceLedger(session, oracle)

    await ledger.capture_locked(pool.id, ["bitcoin", "ethereum"])
    oracle.prices = {"bitcoin": 999.0, "ethereum": 999.0}
    await ledger.capture_locked(pool.id, ["bitcoin", "ethereum"])

    assert await _count(session, LockedPrice, pool.id) == 2
    assert await ledger.get_locked(pool.id) == {"bitcoin": 100.0, "ethereum": 10.0}
    # Second call found nothing missing and never hit the feed
    assert len(oracle.calls) == 1


async def test_capture_final_only_fetches_missing(session, oracle, pool):
    oracle.prices = {"bitcoin": 100.0}
    ledger = PriceLedger(session, oracle)

    await ledger.capture_final(pool.id, ["bitcoin"])
    oracle.prices = {"bitcoin": 1.0, "solana": 20.0}
    await ledger.capture_final(pool.id, ["bitcoin", "solana"])

    assert oracle.calls == [["bitcoin"], ["solana"]]
    assert await ledger.get_final(pool.id) == {"bitcoin": 100.0, "solana": 20.0}
    assert await _count(session, FinalPrice, pool.id) == 2


async def test_coin_without_data_is_stored_as_zero(session, oracle, pool):
    oracle.prices = {"bitcoin": 100.0}
    ledger = PriceLedger(session, oracle)

    await ledger.capture_locked(pool.id, ["bitcoin", "delisted-coin"])

    assert await ledger.get_locked(pool.id) == {"bitcoin": 100.0, "delisted-coin": 0.0}


async def test_feed_failure_raises_and_writes_nothing(session, oracle, pool):
    oracle.fail = True
    ledger = PriceLedger(session, oracle)

    with pytest.raises(PriceCaptureError):
        await ledger.capture_locked(pool.id, ["bitcoin"])

    assert await _count(session, LockedPrice, pool.id) == 0


async def test_empty_feed_result_raises(session, oracle, pool):
    ledger = PriceLedger(session, oracle)

    with pytest.raises(PriceCaptureError):
        await ledger.capture_final(pool.id, ["bitcoin"])


async def test_nothing_to_capture(session, oracle, pool):
    ledger = PriceLedger(session, oracle)
    assert await ledger.capture_locked(pool.id, []) == 0
    assert oracle.calls == []
