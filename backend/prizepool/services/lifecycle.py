"""
Contest Lifecycle Controller

Owns the prize pool state machine:

    upcoming --(capacity reached | admin force-start)--> ongoing
    ongoing  --(now >= started_at + duration)----------> finished

There is no central scheduler. Any reader (API request, client timer, the
optional PoolWatcher) may evaluate a transition predicate and attempt the
transition. Every transition is a conditional UPDATE on the current status and
only the caller whose UPDATE matched a row runs the side effects, so racing
observers collapse onto one transition. Price snapshots and final rankings are
written with insert-ignore, which makes their side effects idempotent too.
"""

import logging
import random
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from prizepool.core.clock import utcnow
from prizepool.core.config import settings
from prizepool.core.database import insert_ignore
from prizepool.core.redis import publish_pool_update
from prizepool.models.contest import PoolStatus, PrizePool, PrizePoolCreate
from prizepool.models.participant import PoolParticipant
from prizepool.models.prices import FinalPrice, LockedPrice
from prizepool.models.ranking import FinalRanking, LeaderboardResponse, TeamScore
from prizepool.models.team import Team
from prizepool.services.price_ledger import PriceCaptureError, PriceLedger, PriceOracle
from prizepool.services.price_oracle import PriceFeedError
from prizepool.services.prize_calculator import apply_prizes
from prizepool.services.ranking import rank_live, rank_teams
from prizepool.services.scoring import score_team_final, score_team_live
from prizepool.services.team_service import TeamNotFoundError

logger = logging.getLogger(__name__)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PoolError(Exception):
    """Base exception for prize pool operations"""
    pass


class PoolNotFoundError(PoolError):
    pass


class PoolNotJoinableError(PoolError):
    """Pool is no longer accepting participants"""
    pass


class PoolFullError(PoolError):
    pass


class AlreadyJoinedError(PoolError):
    pass


class TeamLimitError(PoolError):
    """User already entered the pool with the maximum number of teams"""
    pass


class PoolStateError(PoolError):
    """Operation is not allowed in the pool's current status"""
    pass


class PoolConflictError(PoolError):
    pass


ParticipantEntry = Tuple[PoolParticipant, Team]


# ============================================================================
# CONTROLLER
# ============================================================================

class LifecycleController:
    """
    Prize pool lifecycle, scoring orchestration and leaderboards.

    CRITICAL OPERATIONS:
    1. join_pool: atomic capacity-guarded counter increment + participation
    2. start_pool: CAS upcoming -> ongoing, then lock baseline prices
    3. finish_if_expired: CAS ongoing -> finished at started_at + duration
    4. finalize_pool: final prices -> scores -> ranks -> prizes, written once
    5. get_leaderboard: live (provisional) or final (persisted) standings
    """

    def __init__(
        self,
        db: AsyncSession,
        oracle: PriceOracle,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.oracle = oracle
        self.ledger = PriceLedger(db, oracle)
        self.clock = clock
        self.rng = rng

    # ------------------------------------------------------------------
    # Pool CRUD (admin)
    # ------------------------------------------------------------------

    async def create_pool(self, data: PrizePoolCreate) -> PrizePool:
        pool = PrizePool(
            serial_number=data.serial_number.strip(),
            name=data.name.strip(),
            description=data.description,
            entry_fee=data.entry_fee,
            max_participants=data.max_participants,
            duration_minutes=data.duration_minutes,
            prize_pool_size=data.prize_pool_size,
            distribution_type=data.distribution_type.value,
            distributions=[tier.model_dump(exclude_none=True) for tier in data.distributions],
            admin_cut=data.admin_cut,
            recipient_address=data.recipient_address,
        )
        self.db.add(pool)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise PoolConflictError(f"Serial number {data.serial_number} is already in use")

        await self.db.refresh(pool)
        logger.info(f"Prize pool {pool.id} (#{pool.serial_number}) created, capacity {pool.max_participants}")
        return pool

    async def get_pool(self, pool_id: UUID) -> PrizePool:
        result = await self.db.execute(
            select(PrizePool)
            .where(PrizePool.id == pool_id)
            .execution_options(populate_existing=True)
        )
        pool = result.scalar_one_or_none()
        if pool is None:
            raise PoolNotFoundError(f"Prize pool {pool_id} not found")
        return pool

    async def list_pools(self, status: Optional[str] = None) -> List[PrizePool]:
        """All pools, newest first. Expired ongoing pools are finished on the way."""
        pools = await self._select_pools(status)

        now = self.clock()
        stale = [pool.id for pool in pools if pool.status == PoolStatus.ONGOING.value and pool.is_expired(now)]
        if not stale:
            return pools

        for pool_id in stale:
            await self.sync_pool(pool_id)
        return await self._select_pools(status)

    async def delete_pool(self, pool_id: UUID) -> None:
        pool = await self.get_pool(pool_id)
        if pool.status == PoolStatus.ONGOING.value:
            raise PoolStateError("An ongoing prize pool cannot be deleted")

        for model in (FinalRanking, FinalPrice, LockedPrice, PoolParticipant):
            await self.db.execute(delete(model).where(model.prize_pool_id == pool_id))
        await self.db.execute(delete(PrizePool).where(PrizePool.id == pool_id))
        await self.db.commit()
        logger.info(f"Prize pool {pool_id} deleted")

    async def list_participants(self, pool_id: UUID) -> List[ParticipantEntry]:
        await self.get_pool(pool_id)
        return await self._participants_with_teams(pool_id)

    # ------------------------------------------------------------------
    # Joining
    # ------------------------------------------------------------------

    async def join_pool(
        self,
        pool_id: UUID,
        user_uid: str,
        team_id: UUID,
        payment_reference: Optional[str] = None,
    ) -> PoolParticipant:
        """
        Record a paid participation.

        The counter increment is conditional on status and capacity and shares
        a transaction with the participation insert, so concurrent joins can
        never push current_participants past max_participants.
        """
        pool = await self.get_pool(pool_id)
        if pool.status != PoolStatus.UPCOMING.value:
            raise PoolNotJoinableError("This prize pool is no longer accepting participants.")
        if pool.current_participants >= pool.max_participants:
            raise PoolFullError("This prize pool is already full.")

        team = await self.db.get(Team, team_id)
        if team is None or team.user_uid != user_uid:
            raise TeamNotFoundError("Team not found")

        duplicate = await self.db.execute(
            select(PoolParticipant.id).where(
                PoolParticipant.prize_pool_id == pool_id,
                PoolParticipant.team_id == team_id,
            )
        )
        if duplicate.scalar_one_or_none() is not None:
            raise AlreadyJoinedError("You have already joined this prize pool with this team.")

        user_entries = await self.db.execute(
            select(func.count()).select_from(PoolParticipant).where(
                PoolParticipant.prize_pool_id == pool_id,
                PoolParticipant.user_uid == user_uid,
            )
        )
        if user_entries.scalar_one() >= settings.MAX_TEAMS_PER_POOL_PER_USER:
            raise TeamLimitError(
                f"You can join a prize pool with maximum {settings.MAX_TEAMS_PER_POOL_PER_USER} teams."
            )

        now = self.clock()
        claimed = await self.db.execute(
            update(PrizePool)
            .where(
                PrizePool.id == pool_id,
                PrizePool.status == PoolStatus.UPCOMING.value,
                PrizePool.current_participants < PrizePool.max_participants,
            )
            .values(
                current_participants=PrizePool.current_participants + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.db.rollback()
            pool = await self.get_pool(pool_id)
            if pool.status != PoolStatus.UPCOMING.value:
                raise PoolNotJoinableError("This prize pool is no longer accepting participants.")
            raise PoolFullError("This prize pool is already full.")

        participant = PoolParticipant(
            prize_pool_id=pool_id,
            team_id=team_id,
            user_uid=user_uid,
            payment_reference=payment_reference,
            joined_at=now,
        )
        self.db.add(participant)
        try:
            await self.db.commit()
        except IntegrityError:
            # Same team raced itself into the pool; the counter rolls back too
            await self.db.rollback()
            raise AlreadyJoinedError("You have already joined this prize pool with this team.")

        pool = await self.get_pool(pool_id)
        logger.info(
            f"Team {team_id} joined pool {pool_id} "
            f"({pool.current_participants}/{pool.max_participants})"
        )

        if pool.current_participants >= pool.max_participants:
            await self.start_pool(pool_id)

        return participant

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_pool(self, pool_id: UUID, force: bool = False) -> bool:
        """
        upcoming -> ongoing. Returns True only for the caller that performed it.

        The winner locks baseline prices right away. A failed capture is not
        raised: the first live leaderboard read retries it.
        """
        if force:
            pool = await self.get_pool(pool_id)
            if pool.current_participants == 0:
                raise PoolStateError("Cannot start a prize pool without participants")

        now = self.clock()
        result = await self.db.execute(
            update(PrizePool)
            .where(PrizePool.id == pool_id, PrizePool.status == PoolStatus.UPCOMING.value)
            .values(status=PoolStatus.ONGOING.value, started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount != 1:
            logger.info(f"Pool {pool_id} was not upcoming, start skipped")
            return False

        logger.info(f"Pool {pool_id} is now ongoing{' (forced)' if force else ''}, started at {now.isoformat()}")
        await publish_pool_update(str(pool_id), PoolStatus.ONGOING.value, now.isoformat())
        await self._lock_prices(pool_id)
        return True

    async def finish_if_expired(self, pool_id: UUID) -> bool:
        """ongoing -> finished once started_at + duration has passed."""
        pool = await self.get_pool(pool_id)
        now = self.clock()
        if pool.status != PoolStatus.ONGOING.value or not pool.is_expired(now):
            return False

        result = await self.db.execute(
            update(PrizePool)
            .where(PrizePool.id == pool_id, PrizePool.status == PoolStatus.ONGOING.value)
            .values(status=PoolStatus.FINISHED.value, ended_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount != 1:
            return False

        logger.info(f"Pool {pool_id} finished at {now.isoformat()} (scheduled end {pool.ends_at.isoformat()})")
        await publish_pool_update(str(pool_id), PoolStatus.FINISHED.value, now.isoformat())
        return True

    async def finalize_pool(self, pool_id: UUID) -> bool:
        """
        Capture final prices, score, rank, price the payouts and persist.

        Existing rankings make this a no-op. If a concurrent run commits first
        our freshly computed rows are dropped by insert-ignore, never merged
        over theirs.
        """
        pool = await self.get_pool(pool_id)
        if pool.status != PoolStatus.FINISHED.value:
            raise PoolStateError(f"Pool {pool_id} is {pool.status}, not finished")

        if await self._has_rankings(pool_id):
            logger.info(f"Final rankings already exist for pool {pool_id}")
            return False

        entries = await self._participants_with_teams(pool_id)
        if not entries:
            logger.info(f"Pool {pool_id} has no scorable participants, nothing to finalize")
            return False
        coin_ids = self._coin_ids(entries)

        # The baseline belongs to the start of the contest and is never taken late
        locked = await self.ledger.get_locked(pool_id)
        if not locked and coin_ids:
            logger.error(
                f"Pool {pool_id} finished without locked prices, every token scores 0 against the missing baseline"
            )

        await self.ledger.capture_final(pool_id, coin_ids)
        final = await self.ledger.get_final(pool_id)

        scores = [
            score_team_final(team, locked, final, user_uid=participant.user_uid)
            for participant, team in entries
        ]
        ranked = apply_prizes(rank_teams(scores, self.rng), pool)

        if await self._has_rankings(pool_id):
            logger.info(f"Pool {pool_id} was finalized concurrently, discarding computed rankings")
            return False

        now = self.clock()
        rows = [
            {
                "prize_pool_id": pool_id,
                "team_id": team.team_id,
                "user_uid": team.user_uid,
                "final_rank": team.rank,
                "final_score": team.total_score,
                "prize_amount": team.prize_amount or 0.0,
                "is_tie": team.is_tie,
                "created_at": now,
            }
            for team in ranked
        ]
        inserted = await insert_ignore(self.db, FinalRanking, rows, ("prize_pool_id", "team_id"))
        await self.db.commit()

        logger.info(f"Finalized pool {pool_id}: {inserted} ranking rows for {len(rows)} teams")
        return True

    async def sync_pool(self, pool_id: UUID) -> PrizePool:
        """
        Bring a pool up to date for a reader.

        Finishes it if its time is up, and if it is finished without rankings
        runs finalization once. A price feed failure is logged and left for the
        next read.
        """
        await self.finish_if_expired(pool_id)
        pool = await self.get_pool(pool_id)

        if pool.status == PoolStatus.FINISHED.value and not await self._has_rankings(pool_id):
            try:
                await self.finalize_pool(pool_id)
            except PriceCaptureError as e:
                logger.error(f"Finalization of pool {pool_id} failed, will retry on next read: {e}")
            pool = await self.get_pool(pool_id)

        return pool

    # ------------------------------------------------------------------
    # Leaderboards
    # ------------------------------------------------------------------

    async def get_leaderboard(self, pool_id: UUID) -> LeaderboardResponse:
        pool = await self.sync_pool(pool_id)

        if pool.status == PoolStatus.ONGOING.value:
            teams = await self._live_scores(pool)
            is_final = False
        elif pool.status == PoolStatus.FINISHED.value:
            teams = await self._final_scores(pool)
            is_final = bool(teams)
        else:
            teams = []
            is_final = False

        return LeaderboardResponse(
            prize_pool_id=pool.id,
            status=pool.status,
            is_final=is_final,
            ends_at=pool.ends_at,
            teams=teams,
        )

    async def _live_scores(self, pool: PrizePool) -> List[TeamScore]:
        entries = await self._participants_with_teams(pool.id)
        coin_ids = self._coin_ids(entries)

        locked = await self.ledger.get_locked(pool.id)
        if not locked and coin_ids:
            logger.warning(f"No locked prices for ongoing pool {pool.id}, locking now")
            if await self._lock_prices(pool.id):
                locked = await self.ledger.get_locked(pool.id)

        try:
            current = await self.oracle.get_current_prices(coin_ids)
        except PriceFeedError as e:
            logger.warning(f"Live prices unavailable for pool {pool.id}: {e}")
            current = {}

        scores = [
            score_team_live(team, locked, current, user_uid=participant.user_uid)
            for participant, team in entries
        ]
        return rank_live(scores)

    async def _final_scores(self, pool: PrizePool) -> List[TeamScore]:
        result = await self.db.execute(
            select(FinalRanking, Team)
            .join(Team, FinalRanking.team_id == Team.id)
            .where(FinalRanking.prize_pool_id == pool.id)
            .order_by(FinalRanking.final_rank)
        )
        rows = result.all()
        if not rows:
            return []

        locked = await self.ledger.get_locked(pool.id)
        final = await self.ledger.get_final(pool.id)

        teams = []
        for ranking, team in rows:
            detail = score_team_final(team, locked, final, user_uid=ranking.user_uid)
            teams.append(TeamScore(
                team_id=ranking.team_id,
                team_name=team.team_name,
                user_uid=ranking.user_uid,
                total_score=ranking.final_score,
                rank=ranking.final_rank,
                prize_amount=ranking.prize_amount,
                is_tie=ranking.is_tie,
                tokens=detail.tokens,
            ))
        return teams

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _select_pools(self, status: Optional[str]) -> List[PrizePool]:
        stmt = select(PrizePool).order_by(PrizePool.created_at.desc())
        if status:
            stmt = stmt.where(PrizePool.status == status)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def _participants_with_teams(self, pool_id: UUID) -> List[ParticipantEntry]:
        result = await self.db.execute(
            select(PoolParticipant, Team)
            .outerjoin(Team, PoolParticipant.team_id == Team.id)
            .where(PoolParticipant.prize_pool_id == pool_id)
            .order_by(PoolParticipant.joined_at)
        )
        entries = []
        for participant, team in result.all():
            if team is None:
                logger.error(
                    f"Participation {participant.id} in pool {pool_id} references "
                    f"missing team {participant.team_id}, skipping it"
                )
                continue
            entries.append((participant, team))
        return entries

    @staticmethod
    def _coin_ids(entries: List[ParticipantEntry]) -> Set[str]:
        coin_ids: Set[str] = set()
        for _, team in entries:
            coin_ids.update(team.coin_ids)
        return coin_ids

    async def _has_rankings(self, pool_id: UUID) -> bool:
        result = await self.db.execute(
            select(exists().where(FinalRanking.prize_pool_id == pool_id))
        )
        return bool(result.scalar())

    async def _lock_prices(self, pool_id: UUID) -> bool:
        """Capture the baseline. Only allowed while the pool is ongoing."""
        pool = await self.get_pool(pool_id)
        if pool.status != PoolStatus.ONGOING.value:
            logger.warning(f"Pool {pool_id} is {pool.status}, not locking prices")
            return False

        entries = await self._participants_with_teams(pool_id)
        coin_ids = self._coin_ids(entries)
        try:
            await self.ledger.capture_locked(pool_id, coin_ids)
            return True
        except PriceCaptureError as e:
            logger.error(f"Locking prices for pool {pool_id} failed, will retry on next read: {e}")
            return False

