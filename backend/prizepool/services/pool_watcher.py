"""
Background observer that finishes expired pools and heals missing rankings.

It is just one more reader running the same guarded transitions as API
requests and client timers do, so running several instances (one per worker)
is safe and running none only delays finalization until the next read.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List
from uuid import UUID

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prizepool.core.clock import utcnow
from prizepool.models.contest import PoolStatus, PrizePool
from prizepool.models.ranking import FinalRanking
from prizepool.services.lifecycle import LifecycleController
from prizepool.services.price_ledger import PriceOracle

logger = logging.getLogger(__name__)


class PoolWatcher:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle_factory: Callable[[], PriceOracle],
        interval_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.oracle_factory = oracle_factory
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Pool watcher started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Pool watcher stopped")

    async def _run(self) -> None:
        while self.running:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Pool watcher sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    async def sweep(self) -> List[UUID]:
        """
        Sync every ongoing pool and every finished pool still missing rankings.

        Each pool is synced in its own session, and a pool that fails is logged
        and skipped so the rest of the sweep still runs. Returns the pools that
        were synced.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(PrizePool.id).where(
                    or_(
                        PrizePool.status == PoolStatus.ONGOING.value,
                        (PrizePool.status == PoolStatus.FINISHED.value)
                        & ~exists().where(FinalRanking.prize_pool_id == PrizePool.id),
                    )
                )
            )
            pool_ids = list(result.scalars().all())

        synced = []
        for pool_id in pool_ids:
            async with self.session_factory() as session:
                controller = LifecycleController(session, self.oracle_factory(), clock=self.clock)
                try:
                    await controller.sync_pool(pool_id)
                except Exception as e:
                    await session.rollback()
                    logger.error(f"Pool watcher could not sync pool {pool_id}: {e}", exc_info=True)
                    continue
            synced.append(pool_id)

        return synced
