"""
Price ledger models: LockedPrice, FinalPrice
Maps to: locked_prices, final_prices tables

Both tables are write-once per (prize_pool_id, coin_id); the composite primary
key is the conflict target for insert-ignore.
"""

from datetime import datetime
from uuid import UUID

from sqlmodel import Field, SQLModel

from prizepool.core.clock import utcnow


class LockedPrice(SQLModel, table=True):
    """Baseline price captured when the pool becomes ongoing"""
    __tablename__ = "locked_prices"

    prize_pool_id: UUID = Field(foreign_key="prize_pools.id", primary_key=True)
    coin_id: str = Field(primary_key=True, max_length=100)
    locked_price: float = Field(default=0)  # 0 = no data at capture time
    locked_at: datetime = Field(default_factory=utcnow)


class FinalPrice(SQLModel, table=True):
    """Closing price captured when the pool finishes"""
    __tablename__ = "final_prices"

    prize_pool_id: UUID = Field(foreign_key="prize_pools.id", primary_key=True)
    coin_id: str = Field(primary_key=True, max_length=100)
    final_price: float = Field(default=0)
    captured_at: datetime = Field(default_factory=utcnow)
