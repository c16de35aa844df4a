from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from prizepool.api.pools import get_lifecycle_controller, pool_error_to_http
from prizepool.core.dependencies import require_admin
from prizepool.models.contest import PrizePoolCreate, PrizePoolResponse
from prizepool.models.participant import ParticipantResponse
from prizepool.models.ranking import LeaderboardResponse
from prizepool.services.lifecycle import LifecycleController, PoolError
from prizepool.services.price_ledger import PriceCaptureError

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/pools", response_model=list[PrizePoolResponse])
async def list_pools(
    controller: LifecycleController = Depends(get_lifecycle_controller),
    admin: str = Depends(require_admin)
):
    """List all prize pools (admin only)"""
    pools = await controller.list_pools()
    return [PrizePoolResponse.from_pool(pool) for pool in pools]


@router.post("/pools", response_model=PrizePoolResponse, status_code=201)
async def create_pool(
    pool_data: PrizePoolCreate,
    controller: LifecycleController = Depends(get_lifecycle_controller),
    admin: str = Depends(require_admin)
):
    """Create a new prize pool (admin only)"""
    try:
        pool = await controller.create_pool(pool_data)
    except PoolError as e:
        raise pool_error_to_http(e)
    return PrizePoolResponse.from_pool(pool)


@router.delete("/pools/{pool_id}", status_code=204)
async def delete_pool(
    pool_id: UUID,
    controller: LifecycleController = Depends(get_lifecycle_controller),
    admin: str = Depends(require_admin)
):
    """Delete a pool with its participants, snapshots and results (admin only)"""
    try:
        await controller.delete_pool(pool_id)
    except PoolError as e:
        raise pool_error_to_http(e)


@router.get("/pools/{pool_id}/participants", response_model=list[ParticipantResponse])
async def list_participants(
    pool_id: UUID,
    controller: LifecycleController = Depends(get_lifecycle_controller),
    admin: str = Depends(require_admin)
):
    """Participants of a pool with their team names (admin only)"""
    try:
        entries = await controller.list_participants(pool_id)
    except PoolError as e:
        raise pool_error_to_http(e)

    return [
        ParticipantResponse(
            id=participant.id,
            prize_pool_id=participant.prize_pool_id,
            team_id=participant.team_id,
            team_name=team.team_name,
            user_uid=participant.user_uid,
            payment_reference=participant.payment_reference,
            joined_at=participant.joined_at,
        )
        for participant, team in entries
    ]


@router.post("/pools/{pool_id}/start", response_model=PrizePoolResponse)
async def force_start_pool(
    pool_id: UUID,
    controller: LifecycleController = Depends(get_lifecycle_controller),
    admin: str = Depends(require_admin)
):
    """Start an upcoming pool before it fills up (admin only)"""
    try:
        started = await controller.start_pool(pool_id, force=True)
        pool = await controller.get_pool(pool_id)
    except PoolError as e:
        raise pool_error_to_http(e)

    if not started:
        raise HTTPException(409, f"Pool is already {pool.status}")
    return PrizePoolResponse.from_pool(pool)


@router.post("/pools/{pool_id}/finalize", response_model=LeaderboardResponse)
async def finalize_pool(
    pool_id: UUID,
    controller: LifecycleController = Depends(get_lifecycle_controller),
    admin: str = Depends(require_admin)
):
    """Run finalization now for a finished pool; a no-op if results exist (admin only)"""
    try:
        await controller.finish_if_expired(pool_id)
        await controller.finalize_pool(pool_id)
        return await controller.get_leaderboard(pool_id)
    except PriceCaptureError as e:
        raise HTTPException(503, str(e))
    except PoolError as e:
        raise pool_error_to_http(e)
