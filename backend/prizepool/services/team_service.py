"""
Team Service

Team creation under the points budget, listing, deletion and per-team results.

Teams belong to one user and are reusable across prize pools. Names are unique
platform-wide, compared case-insensitively.
"""

import logging
from typing import Any, Dict, List, Protocol, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from prizepool.core.config import settings
from prizepool.models.contest import PrizePool
from prizepool.models.participant import PoolParticipant
from prizepool.models.ranking import FinalRanking
from prizepool.models.team import Team, TeamResultItem, TeamTokenIn
from prizepool.services.price_oracle import PriceFeedError, points_for_rank

logger = logging.getLogger(__name__)


class TeamError(Exception):
    """Base exception for team operations"""
    pass


class TeamValidationError(TeamError):
    """Team composition breaks a rule (size, duplicates, budget, name)"""
    pass


class TeamNameTakenError(TeamError):
    pass


class TeamNotFoundError(TeamError):
    pass


class TeamInUseError(TeamError):
    """Team has entered a prize pool and must be kept for scoring"""
    pass


class MarketDataUnavailableError(TeamError):
    """Token costs cannot be priced without the market list"""
    pass


class MarketSource(Protocol):
    async def get_top_coins(self, limit: int = 200) -> List[Dict[str, Any]]:
        ...


def normalize_team_name(team_name: str) -> str:
    return " ".join(team_name.split())


class TeamService:

    def __init__(self, db: AsyncSession, market: MarketSource):
        self.db = db
        self.market = market

    async def create_team(
        self, user_uid: str, team_name: str, tokens: Sequence[TeamTokenIn]
    ) -> Team:
        name = normalize_team_name(team_name)
        self._validate_name(name)
        token_rows = await self._validate_tokens(tokens)
        total_points = sum(token["points"] for token in token_rows)

        if total_points > settings.TEAM_POINTS_BUDGET:
            raise TeamValidationError(
                f"Total points {total_points} exceed the {settings.TEAM_POINTS_BUDGET} point budget"
            )

        existing = await self.db.execute(
            select(Team.id).where(Team.team_name_key == name.lower())
        )
        if existing.scalar_one_or_none() is not None:
            raise TeamNameTakenError(f'Team name "{name}" is already taken. Please choose a different name.')

        team = Team(
            user_uid=user_uid,
            team_name=name,
            team_name_key=name.lower(),
            tokens=token_rows,
            total_points=total_points,
        )
        self.db.add(team)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with another request using the same name
            await self.db.rollback()
            raise TeamNameTakenError(f'Team name "{name}" is already taken. Please choose a different name.')

        await self.db.refresh(team)
        logger.info(f"Team {team.id} '{name}' created for {user_uid} ({total_points} points)")
        return team

    async def list_user_teams(self, user_uid: str) -> List[Team]:
        result = await self.db.execute(
            select(Team).where(Team.user_uid == user_uid).order_by(Team.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_user_team(self, user_uid: str, team_id: UUID) -> Team:
        team = await self.db.get(Team, team_id)
        if team is None or team.user_uid != user_uid:
            raise TeamNotFoundError("Team not found")
        return team

    async def delete_team(self, user_uid: str, team_id: UUID) -> None:
        team = await self.get_user_team(user_uid, team_id)

        entries = await self.db.execute(
            select(func.count()).select_from(PoolParticipant).where(PoolParticipant.team_id == team_id)
        )
        if entries.scalar_one() > 0:
            raise TeamInUseError("Team has joined a prize pool and cannot be deleted")

        await self.db.delete(team)
        await self.db.commit()
        logger.info(f"Team {team_id} deleted by {user_uid}")

    async def get_team_results(self, user_uid: str, team_id: UUID) -> List[TeamResultItem]:
        """Final results of one team across every finished pool it entered"""
        await self.get_user_team(user_uid, team_id)

        result = await self.db.execute(
            select(FinalRanking, PrizePool)
            .join(PrizePool, FinalRanking.prize_pool_id == PrizePool.id)
            .where(FinalRanking.team_id == team_id)
            .order_by(PrizePool.ended_at.desc())
        )
        return [
            TeamResultItem(
                prize_pool_id=pool.id,
                pool_name=pool.name,
                serial_number=pool.serial_number,
                final_rank=ranking.final_rank,
                final_score=ranking.final_score,
                prize_amount=ranking.prize_amount,
                is_tie=ranking.is_tie,
                ended_at=pool.ended_at,
            )
            for ranking, pool in result.all()
        ]

    def _validate_name(self, name: str) -> None:
        if not name:
            raise TeamValidationError("Team name is required")
        if len(name) > settings.TEAM_NAME_MAX_LENGTH:
            raise TeamValidationError(
                f"Team name must be at most {settings.TEAM_NAME_MAX_LENGTH} characters"
            )

    async def _validate_tokens(self, tokens: Sequence[TeamTokenIn]) -> List[dict]:
        """
        Resolve the picked tokens against the current top-coins list.

        Rank and cost come from the market list only, whatever the client
        claims, and tokens outside the list cannot be picked.
        """
        if len(tokens) != settings.TEAM_SIZE:
            raise TeamValidationError(
                f"A team needs exactly {settings.TEAM_SIZE} tokens, got {len(tokens)}"
            )

        ids = [token.id for token in tokens]
        if len(set(ids)) != len(ids):
            raise TeamValidationError("A team cannot contain the same token twice")

        try:
            listing = await self.market.get_top_coins(settings.TEAM_TOKEN_UNIVERSE)
        except PriceFeedError as e:
            logger.warning(f"Top coins unavailable, cannot price team tokens: {e}")
            raise MarketDataUnavailableError("Market data unavailable. Please try again shortly.")

        coins = {coin["id"]: (position, coin) for position, coin in enumerate(listing, start=1)}
        unknown = [coin_id for coin_id in ids if coin_id not in coins]
        if unknown:
            raise TeamValidationError(
                f"Tokens not in the top {settings.TEAM_TOKEN_UNIVERSE} by market cap: {', '.join(unknown)}"
            )

        rows = []
        for token in tokens:
            position, coin = coins[token.id]
            rank = coin.get("market_cap_rank") or position
            rows.append({
                "id": token.id,
                "symbol": str(coin.get("symbol") or token.symbol).upper(),
                "name": coin.get("name") or token.name,
                "market_cap_rank": rank,
                "points": coin.get("points") or points_for_rank(position),
            })
        return rows
