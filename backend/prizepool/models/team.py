"""
Team models: a user's fixed selection of tokens
Maps to: teams table
"""

from datetime import datetime
from typing import Any, Dict, List
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from prizepool.core.clock import utcnow


# ============================================================================
# TEAM MODEL
# ============================================================================

class Team(SQLModel, table=True):
    """
    A user's token selection. Never edited after creation.

    tokens holds the ordered list of {id, symbol, name, market_cap_rank, points}
    with points fixed at creation time. Teams are reusable across pools and
    team names are unique across the platform.
    """
    __tablename__ = "teams"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_uid: str = Field(index=True, max_length=64)
    team_name: str = Field(index=True, max_length=50)
    team_name_key: str = Field(unique=True, max_length=50)  # lower-cased name
    tokens: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    total_points: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def coin_ids(self) -> List[str]:
        return [token["id"] for token in self.tokens if isinstance(token, dict) and token.get("id")]


# ============================================================================
# REQUEST/RESPONSE MODELS (Pydantic, not DB tables)
# ============================================================================

class TeamTokenIn(SQLModel):
    """
    Token picked by the user. Rank and points come from the market list,
    never from the request.
    """
    id: str = Field(min_length=1, max_length=100)
    symbol: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=100)


class TeamCreate(SQLModel):
    """Team creation request"""
    team_name: str = Field(min_length=1, max_length=50)
    tokens: List[TeamTokenIn]


class TeamResponse(SQLModel):
    """Team response"""
    id: UUID
    user_uid: str
    team_name: str
    tokens: List[Dict[str, Any]]
    total_points: int
    created_at: datetime


class TeamResultItem(SQLModel):
    """A team's outcome in one finished pool"""
    prize_pool_id: UUID
    pool_name: str
    serial_number: str
    final_rank: int
    final_score: float
    prize_amount: float
    is_tie: bool
    ended_at: datetime | None = None
