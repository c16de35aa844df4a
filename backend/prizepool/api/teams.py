"""
Team API routes
Create, list and delete teams, and view a team's results across pools.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from prizepool.core.database import get_session
from prizepool.core.dependencies import get_user_uid
from prizepool.models.team import TeamCreate, TeamResponse, TeamResultItem
from prizepool.services.price_oracle import CoinGeckoClient, get_price_oracle
from prizepool.services.team_service import (
    MarketDataUnavailableError,
    TeamError,
    TeamInUseError,
    TeamNameTakenError,
    TeamNotFoundError,
    TeamService,
)

router = APIRouter()


def get_team_service(
    session: AsyncSession = Depends(get_session),
    oracle: CoinGeckoClient = Depends(get_price_oracle),
) -> TeamService:
    return TeamService(session, oracle)


def team_error_to_http(exc: TeamError) -> HTTPException:
    if isinstance(exc, TeamNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (TeamNameTakenError, TeamInUseError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, MarketDataUnavailableError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


@router.get("", response_model=list[TeamResponse])
async def list_teams(
    user_uid: str = Depends(get_user_uid),
    service: TeamService = Depends(get_team_service),
):
    """The caller's teams, newest first."""
    return await service.list_user_teams(user_uid)


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    team_data: TeamCreate,
    user_uid: str = Depends(get_user_uid),
    service: TeamService = Depends(get_team_service),
):
    """
    Create a team

    - Exactly 11 distinct tokens from the current top coins list
    - Token cost derived from the listed market cap rank, total within the 250 point budget
    - Team name unique across the platform
    """
    try:
        return await service.create_team(user_uid, team_data.team_name, team_data.tokens)
    except TeamError as e:
        raise team_error_to_http(e)


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: UUID,
    user_uid: str = Depends(get_user_uid),
    service: TeamService = Depends(get_team_service),
):
    """Delete a team that never entered a pool."""
    try:
        await service.delete_team(user_uid, team_id)
    except TeamError as e:
        raise team_error_to_http(e)


@router.get("/{team_id}/results", response_model=list[TeamResultItem])
async def get_team_results(
    team_id: UUID,
    user_uid: str = Depends(get_user_uid),
    service: TeamService = Depends(get_team_service),
):
    """Final rank, score and prize of this team in every finished pool."""
    try:
        return await service.get_team_results(user_uid, team_id)
    except TeamError as e:
        raise team_error_to_http(e)
