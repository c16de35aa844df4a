"""
Ranking models: persisted FinalRanking plus the leaderboard schemas
Maps to: final_rankings table
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlmodel import Field, SQLModel

from prizepool.core.clock import utcnow


# ============================================================================
# FINAL RANKING MODEL
# ============================================================================

class FinalRanking(SQLModel, table=True):
    """Permanent result row, written once per (pool, team) at finish"""
    __tablename__ = "final_rankings"

    prize_pool_id: UUID = Field(foreign_key="prize_pools.id", primary_key=True)
    team_id: UUID = Field(foreign_key="teams.id", primary_key=True)
    user_uid: str = Field(index=True, max_length=64)
    final_rank: int = Field(ge=1)
    final_score: float
    prize_amount: float = Field(default=0)
    is_tie: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# LEADERBOARD SCHEMAS (Pydantic, not DB tables)
# ============================================================================

class TokenScore(SQLModel):
    """Per-token contribution. current_price is None when the feed had no data"""
    coin_id: str
    name: str = ""
    symbol: str = ""
    locked_price: float = 0
    current_price: Optional[float] = None
    final_price: Optional[float] = None
    percentage_change: float = 0
    individual_score: float = 0


class TeamScore(SQLModel):
    team_id: UUID
    team_name: str = ""
    user_uid: str = ""
    total_score: float = 0
    rank: int = 0
    prize_amount: Optional[float] = None
    is_tie: bool = False
    tokens: List[TokenScore] = Field(default_factory=list)


class LeaderboardResponse(SQLModel):
    prize_pool_id: UUID
    status: str
    is_final: bool
    ends_at: Optional[datetime] = None
    teams: List[TeamScore]
