import pytest

from conftest import make_tokens
from prizepool.models.contest import PrizePool
from prizepool.models.participant import PoolParticipant
from prizepool.models.team import TeamCreate, TeamTokenIn
from prizepool.services.team_service import (
    MarketDataUnavailableError,
    TeamInUseError,
    TeamNameTakenError,
    TeamNotFoundError,
    TeamService,
    TeamValidationError,
    points_for_rank,
)


@pytest.fixture
def service(session, oracle):
    return TeamService(session, oracle)


@pytest.mark.parametrize(
    "rank, points",
    [(1, 25), (8, 25), (9, 24), (16, 24), (17, 23), (153, 6), (161, 5), (5000, 5)],
)
def test_points_for_rank(rank, points):
    assert points_for_rank(rank) == points


async def test_create_team_computes_points(service):
    team = await service.create_team("user-1", "  Diamond   Hands ", make_tokens("alpha"))

    assert team.team_name == "Diamond Hands"
    assert len(team.tokens) == 11
    assert team.total_points == sum(points_for_rank(100 + i) for i in range(11))
    assert team.tokens[0]["market_cap_rank"] == 100
    assert team.tokens[0]["points"] == points_for_rank(100)


async def test_team_must_have_eleven_tokens(service):
    with pytest.raises(TeamValidationError):
        await service.create_team("user-1", "Short", make_tokens("alt", count=10))


async def test_team_rejects_duplicate_tokens(service):
    tokens = make_tokens("alt", count=10)
    tokens.append(TeamTokenIn(id="alt-0", symbol="ALT0", name="Alt 0"))
    with pytest.raises(TeamValidationError):
        await service.create_team("user-1", "Dupes", tokens)


async def test_team_rejects_over_budget(service):
    # Top 11 coins cost 8 * 25 + 3 * 24 = 272 points
    with pytest.raises(TeamValidationError):
        await service.create_team("user-1", "Blue Chips", make_tokens("top"))


async def test_claimed_rank_does_not_lower_the_cost(service):
    request = TeamCreate.model_validate({
        "team_name": "Cheap Whales",
        "tokens": [
            {"id": f"top-{i}", "symbol": f"TOP{i}", "name": f"Top {i}", "market_cap_rank": 500}
            for i in range(11)
        ],
    })

    with pytest.raises(TeamValidationError, match="272"):
        await service.create_team("user-1", request.team_name, request.tokens)


async def test_team_rejects_tokens_outside_the_market_list(service):
    tokens = make_tokens("alt", count=10)
    tokens.append(TeamTokenIn(id="unlisted-coin", symbol="UNL", name="Unlisted Coin"))

    with pytest.raises(TeamValidationError, match="unlisted-coin"):
        await service.create_team("user-1", "Degens", tokens)


async def test_team_needs_the_market_list(service, oracle):
    oracle.fail = True

    with pytest.raises(MarketDataUnavailableError):
        await service.create_team("user-1", "Offline", make_tokens("alt"))

    assert await service.list_user_teams("user-1") == []


async def test_team_name_unique_case_insensitive(service):
    await service.create_team("user-1", "Moon Squad", make_tokens("alt"))

    with pytest.raises(TeamNameTakenError):
        await service.create_team("user-2", "moon squad", make_tokens("alt"))


async def test_list_and_get_are_scoped_to_owner(service):
    team = await service.create_team("user-1", "Mine", make_tokens("alt"))

    assert [t.id for t in await service.list_user_teams("user-1")] == [team.id]
    assert await service.list_user_teams("user-2") == []
    with pytest.raises(TeamNotFoundError):
        await service.get_user_team("user-2", team.id)


async def test_delete_team(service):
    team = await service.create_team("user-1", "Disposable", make_tokens("alt"))

    await service.delete_team("user-1", team.id)

    assert await service.list_user_teams("user-1") == []


async def test_team_in_a_pool_cannot_be_deleted(session, service):
    team = await service.create_team("user-1", "Veteran", make_tokens("alt"))
    pool = PrizePool(serial_number="PP-1", name="Pool", max_participants=5, duration_minutes=5)
    session.add(pool)
    await session.commit()
    session.add(PoolParticipant(prize_pool_id=pool.id, team_id=team.id, user_uid="user-1"))
    await session.commit()

    with pytest.raises(TeamInUseError):
        await service.delete_team("user-1", team.id)


async def test_results_empty_before_any_finish(service):
    team = await service.create_team("user-1", "Rookie", make_tokens("alt"))
    assert await service.get_team_results("user-1", team.id) == []
