"""
Prize pool model: the contest users join with their teams
Maps to: prize_pools table
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import model_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from prizepool.core.clock import utcnow


# ============================================================================
# ENUMS
# ============================================================================

class PoolStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    FINISHED = "finished"


class DistributionType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


# ============================================================================
# PRIZE POOL MODEL
# ============================================================================

class PrizePool(SQLModel, table=True):
    """
    Contest configuration plus lifecycle state.

    Configuration columns are written once by the admin. Only status,
    current_participants, started_at and ended_at change afterwards, and only
    through the guarded updates in services.lifecycle.
    """
    __tablename__ = "prize_pools"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    serial_number: str = Field(unique=True, index=True, max_length=50)
    name: str = Field(max_length=200)
    description: Optional[str] = Field(default=None)

    entry_fee: float = Field(default=0)
    max_participants: int = Field(ge=1)
    duration_minutes: int = Field(ge=1)
    prize_pool_size: float = Field(default=0)
    distribution_type: str = Field(default=DistributionType.PERCENTAGE.value, max_length=20)
    distributions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    admin_cut: float = Field(default=0)
    recipient_address: Optional[str] = Field(default=None, max_length=100)

    status: str = Field(default=PoolStatus.UPCOMING.value, index=True, max_length=20)
    current_participants: int = Field(default=0, ge=0)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def ends_at(self) -> Optional[datetime]:
        """Authoritative finish instant: start + duration."""
        if self.started_at is None:
            return None
        return self.started_at + timedelta(minutes=self.duration_minutes)

    def is_expired(self, now: datetime) -> bool:
        ends_at = self.ends_at
        return ends_at is not None and now >= ends_at


# ============================================================================
# REQUEST/RESPONSE MODELS (Pydantic, not DB tables)
# ============================================================================

class PrizeTier(SQLModel):
    """One row of the distribution schedule"""
    rank_from: int = Field(ge=1)
    rank_to: int = Field(ge=1)
    amount: Optional[float] = Field(default=None, ge=0)
    percentage: Optional[float] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def check_range(self):
        if self.rank_to < self.rank_from:
            raise ValueError("rank_to must be greater than or equal to rank_from")
        return self


class PrizePoolCreate(SQLModel):
    """Prize pool creation request (admin)"""
    serial_number: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    entry_fee: float = Field(default=0, ge=0)
    max_participants: int = Field(ge=1)
    duration_minutes: int = Field(ge=1)
    prize_pool_size: float = Field(default=0, ge=0)
    distribution_type: DistributionType = DistributionType.PERCENTAGE
    distributions: List[PrizeTier] = Field(default_factory=list)
    admin_cut: float = Field(default=0, ge=0)
    recipient_address: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def check_schedule(self):
        """Schedule must fit the pool: sum of payouts plus platform cut within budget"""
        if self.distribution_type == DistributionType.FIXED:
            if any(tier.amount is None for tier in self.distributions):
                raise ValueError("Every tier needs an amount in fixed mode")
            total = sum(tier.amount for tier in self.distributions) + self.admin_cut
            if total > self.prize_pool_size:
                raise ValueError("Total distribution exceeds prize pool size")
        else:
            if any(tier.percentage is None for tier in self.distributions):
                raise ValueError("Every tier needs a percentage in percentage mode")
            total = sum(tier.percentage for tier in self.distributions) + self.admin_cut
            if total > 100:
                raise ValueError("Total distribution exceeds 100%")
        return self


class PrizePoolResponse(SQLModel):
    """Prize pool response model"""
    id: UUID
    serial_number: str
    name: str
    description: Optional[str] = None
    entry_fee: float
    max_participants: int
    current_participants: int
    duration_minutes: int
    prize_pool_size: float
    distribution_type: str
    distributions: List[Dict[str, Any]]
    admin_cut: float
    recipient_address: Optional[str] = None
    status: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_pool(cls, pool: PrizePool) -> "PrizePoolResponse":
        data = pool.model_dump()
        data["ends_at"] = pool.ends_at
        return cls.model_validate(data)
