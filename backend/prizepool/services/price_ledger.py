"""
Price Ledger Service

Write-once locked (baseline) and final price snapshots per prize pool.

Captures are safe to run from any number of concurrent observers: only coins
without a row are fetched, and rows are written with insert-ignore on the
(prize_pool_id, coin_id) key, so a racing capture simply finds its rows
already present.
"""

import logging
from typing import Dict, Iterable, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prizepool.core.clock import utcnow
from prizepool.core.database import insert_ignore
from prizepool.models.prices import FinalPrice, LockedPrice
from prizepool.services.price_oracle import PriceFeedError

logger = logging.getLogger(__name__)


class PriceCaptureError(Exception):
    """A snapshot could not be captured; the next observer will retry"""
    pass


class PriceOracle(Protocol):
    async def get_current_prices(
        self, coin_ids: Iterable[str], use_cache: bool = True
    ) -> Dict[str, float]:
        ...


class PriceLedger:
    """
    Locked/final price snapshots.

    CRITICAL OPERATIONS:
    1. capture_locked at the upcoming -> ongoing transition
    2. capture_final at the ongoing -> finished transition
    3. get_locked / get_final for scoring (absent coin = price 0)
    """

    def __init__(self, db: AsyncSession, oracle: PriceOracle):
        self.db = db
        self.oracle = oracle

    async def capture_locked(self, pool_id: UUID, coin_ids: Iterable[str]) -> int:
        return await self._capture(LockedPrice, "locked_price", "locked_at", pool_id, coin_ids)

    async def capture_final(self, pool_id: UUID, coin_ids: Iterable[str]) -> int:
        return await self._capture(FinalPrice, "final_price", "captured_at", pool_id, coin_ids)

    async def get_locked(self, pool_id: UUID) -> Dict[str, float]:
        result = await self.db.execute(
            select(LockedPrice.coin_id, LockedPrice.locked_price)
            .where(LockedPrice.prize_pool_id == pool_id)
        )
        return {coin_id: price for coin_id, price in result.all()}

    async def get_final(self, pool_id: UUID) -> Dict[str, float]:
        result = await self.db.execute(
            select(FinalPrice.coin_id, FinalPrice.final_price)
            .where(FinalPrice.prize_pool_id == pool_id)
        )
        return {coin_id: price for coin_id, price in result.all()}

    async def _capture(
        self,
        model,
        price_column: str,
        time_column: str,
        pool_id: UUID,
        coin_ids: Iterable[str],
    ) -> int:
        """Fetch and insert-ignore prices for coins without a row yet. Commits."""
        wanted = {coin_id for coin_id in coin_ids if coin_id}
        kind = model.__tablename__

        if not wanted:
            logger.warning(f"No coins to capture into {kind} for pool {pool_id}")
            return 0

        result = await self.db.execute(
            select(model.coin_id).where(model.prize_pool_id == pool_id)
        )
        existing = set(result.scalars().all())
        missing = sorted(wanted - existing)

        if not missing:
            logger.info(f"{kind} already complete for pool {pool_id} ({len(existing)} rows)")
            return 0

        try:
            prices = await self.oracle.get_current_prices(missing, use_cache=False)
        except PriceFeedError as e:
            raise PriceCaptureError(f"Could not fetch prices for {kind} of pool {pool_id}: {e}") from e

        if not prices:
            # Writing a full row of zeros would freeze an unusable snapshot
            raise PriceCaptureError(f"Price feed returned no prices for {kind} of pool {pool_id}")

        now = utcnow()
        rows = []
        for coin_id in missing:
            price = prices.get(coin_id)
            if price is None:
                logger.warning(f"No price for {coin_id} in pool {pool_id}, storing 0 in {kind}")
            rows.append({
                "prize_pool_id": pool_id,
                "coin_id": coin_id,
                price_column: price or 0.0,
                time_column: now,
            })

        inserted = await insert_ignore(self.db, model, rows, ("prize_pool_id", "coin_id"))
        await self.db.commit()

        logger.info(
            f"Captured {kind} for pool {pool_id}: {inserted} new of {len(rows)} attempted"
        )
        return len(rows)
