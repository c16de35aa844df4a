"""
Async database engine and session management.

Also hosts the insert-if-absent helper used by the price ledger and final
rankings: both rely on ON CONFLICT DO NOTHING instead of check-then-insert so
that concurrent observers collapse onto a single row.
"""

from typing import AsyncGenerator, Any, Dict, List, Sequence
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from prizepool.core.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create tables that do not exist yet. Called once during app lifespan startup."""
    # Register every table on the metadata before create_all
    from prizepool.models import contest, team, participant, prices, ranking  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database schema ensured")


async def close_db() -> None:
    await engine.dispose()


def _dialect_insert(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"insert-ignore is not supported on {dialect}")
    return insert


async def insert_ignore(
    session: AsyncSession,
    model: Any,
    rows: List[Dict[str, Any]],
    conflict_columns: Sequence[str],
) -> int:
    """
    Insert rows, silently skipping any whose conflict key already exists.

    Returns the number of rows actually written. Does not commit.
    """
    if not rows:
        return 0

    insert = _dialect_insert(session)
    stmt = insert(model).values(rows).on_conflict_do_nothing(
        index_elements=list(conflict_columns)
    )
    result = await session.execute(stmt)
    # rowcount is -1 on drivers that cannot report it
    return max(result.rowcount or 0, 0)
