"""
Prize pool API routes
Pool listing, joining, leaderboards and live status updates.

Every read of a pool doubles as a finish check: whichever reader observes an
expired pool first performs the (idempotent) transition.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from prizepool.core.config import settings
from prizepool.core.database import get_session
from prizepool.core.dependencies import get_user_uid
from prizepool.core.redis import POOL_UPDATES_CHANNEL, get_redis_client
from prizepool.core.security import limiter
from prizepool.models.contest import PoolStatus, PrizePoolResponse
from prizepool.models.participant import JoinPoolRequest, ParticipantResponse
from prizepool.models.ranking import LeaderboardResponse
from prizepool.services.lifecycle import (
    AlreadyJoinedError,
    LifecycleController,
    PoolConflictError,
    PoolError,
    PoolFullError,
    PoolNotFoundError,
    PoolNotJoinableError,
    PoolStateError,
)
from prizepool.services.price_oracle import CoinGeckoClient, get_price_oracle
from prizepool.services.team_service import TeamNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_lifecycle_controller(
    session: AsyncSession = Depends(get_session),
    oracle: CoinGeckoClient = Depends(get_price_oracle),
) -> LifecycleController:
    return LifecycleController(session, oracle)


def pool_error_to_http(exc: Exception) -> HTTPException:
    """Map service exceptions onto HTTP status codes"""
    if isinstance(exc, (PoolNotFoundError, TeamNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (PoolFullError, PoolNotJoinableError, AlreadyJoinedError, PoolStateError, PoolConflictError)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


# ============================================================================
# POOLS
# ============================================================================

@router.get("", response_model=list[PrizePoolResponse])
async def list_pools(
    status_filter: Optional[PoolStatus] = Query(default=None, alias="status"),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    """List prize pools, optionally filtered by status."""
    pools = await controller.list_pools(status_filter.value if status_filter else None)
    return [PrizePoolResponse.from_pool(pool) for pool in pools]


@router.get("/{pool_id}", response_model=PrizePoolResponse)
async def get_pool(
    pool_id: UUID,
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    """Get one pool. Clients poll this as the fallback for live updates."""
    try:
        pool = await controller.sync_pool(pool_id)
    except PoolError as e:
        raise pool_error_to_http(e)
    return PrizePoolResponse.from_pool(pool)


@router.post("/{pool_id}/join", response_model=ParticipantResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_JOIN)
async def join_pool(
    request: Request,
    pool_id: UUID,
    join: JoinPoolRequest,
    user_uid: str = Depends(get_user_uid),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    """Enter a team into a pool after the entry fee payment was verified."""
    try:
        participant = await controller.join_pool(
            pool_id, user_uid, join.team_id, join.payment_reference
        )
    except (PoolError, TeamNotFoundError) as e:
        raise pool_error_to_http(e)

    return ParticipantResponse(
        id=participant.id,
        prize_pool_id=participant.prize_pool_id,
        team_id=participant.team_id,
        user_uid=participant.user_uid,
        payment_reference=participant.payment_reference,
        joined_at=participant.joined_at,
    )


@router.get("/{pool_id}/leaderboard", response_model=LeaderboardResponse)
@limiter.limit(settings.RATE_LIMIT_LEADERBOARD)
async def get_leaderboard(
    request: Request,
    pool_id: UUID,
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    """Live provisional standings while ongoing, persisted results once finished."""
    try:
        return await controller.get_leaderboard(pool_id)
    except PoolError as e:
        raise pool_error_to_http(e)


# ============================================================================
# LIVE STATUS STREAM
# ============================================================================

@router.websocket("/ws")
async def pool_update_stream(websocket: WebSocket):
    """
    WebSocket relay of pool transitions published on Redis.
    Usage: ws://localhost:8000/pools/ws

    The subscription is dropped as soon as the client goes away, even when no
    update is published in the meantime.
    """
    redis = get_redis_client()
    if not redis:
        await websocket.close(code=1011, reason="Pool updates unavailable")
        return

    pubsub = redis.pubsub()
    await pubsub.subscribe(POOL_UPDATES_CHANNEL)
    await websocket.accept()

    relay = asyncio.create_task(_relay_pool_updates(websocket, pubsub))
    watch = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({relay, watch}, return_when=asyncio.FIRST_COMPLETED)
        if relay in done and not relay.cancelled():
            error = relay.exception()
            if error and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"Pool update relay stopped: {error}")
    finally:
        relay.cancel()
        watch.cancel()
        await asyncio.gather(relay, watch, return_exceptions=True)
        await pubsub.unsubscribe(POOL_UPDATES_CHANNEL)
        await pubsub.close()


async def _relay_pool_updates(websocket: WebSocket, pubsub) -> None:
    async for message in pubsub.listen():
        if message["type"] == "message":
            data = message["data"]
            await websocket.send_text(data.decode("utf-8") if isinstance(data, bytes) else data)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients only listen, anything they send is ignored
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
