"""
Participation model: a team entered into a prize pool
Maps to: prize_pool_participants table
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from prizepool.core.clock import utcnow


class PoolParticipant(SQLModel, table=True):
    """
    Created only after the entry fee payment was verified upstream.
    One row per (pool, team).
    """
    __tablename__ = "prize_pool_participants"
    __table_args__ = (
        UniqueConstraint("prize_pool_id", "team_id", name="uq_participant_pool_team"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    prize_pool_id: UUID = Field(foreign_key="prize_pools.id", index=True)
    team_id: UUID = Field(foreign_key="teams.id", index=True)
    user_uid: str = Field(index=True, max_length=64)
    payment_reference: Optional[str] = Field(default=None, max_length=200)
    joined_at: datetime = Field(default_factory=utcnow)


class JoinPoolRequest(SQLModel):
    """Join request: team plus the verified payment reference"""
    team_id: UUID
    payment_reference: Optional[str] = Field(default=None, max_length=200)


class ParticipantResponse(SQLModel):
    id: UUID
    prize_pool_id: UUID
    team_id: UUID
    team_name: Optional[str] = None
    user_uid: str
    payment_reference: Optional[str] = None
    joined_at: datetime
