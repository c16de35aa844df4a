from uuid import uuid4

import pytest
from pydantic import ValidationError

from prizepool.models.contest import DistributionType, PrizePool, PrizePoolCreate, PrizeTier
from prizepool.models.ranking import TeamScore
from prizepool.services.prize_calculator import apply_prizes, calculate_prize, find_tier

SCHEDULE = [
    {"rank_from": 1, "rank_to": 1, "percentage": 50},
    {"rank_from": 2, "rank_to": 3, "percentage": 10},
]


@pytest.mark.parametrize("rank, expected", [(1, 500.0), (2, 100.0), (3, 100.0), (4, 0.0)])
def test_percentage_schedule(rank, expected):
    assert calculate_prize(rank, "percentage", SCHEDULE, 1000) == expected


def test_fixed_schedule_pays_amount():
    schedule = [{"rank_from": 1, "rank_to": 2, "amount": 75}]
    assert calculate_prize(2, "fixed", schedule, 1000) == 75.0
    assert calculate_prize(3, "fixed", schedule, 1000) == 0.0


def test_empty_schedule_pays_nothing():
    assert calculate_prize(1, "percentage", [], 1000) == 0.0


def test_find_tier_skips_malformed_rows():
    schedule = [{"rank_from": "x"}, {"rank_from": 1, "rank_to": 5, "percentage": 5}]
    assert find_tier(3, schedule)["percentage"] == 5


def test_apply_prizes_uses_pool_schedule():
    pool = PrizePool(
        serial_number="PP-9",
        name="Pool",
        max_participants=3,
        duration_minutes=5,
        prize_pool_size=1000,
        distribution_type="percentage",
        distributions=SCHEDULE,
    )
    ranked = [TeamScore(team_id=uuid4(), rank=rank) for rank in (1, 2, 3, 4)]

    apply_prizes(ranked, pool)

    assert [team.prize_amount for team in ranked] == [500.0, 100.0, 100.0, 0.0]


def test_schedule_validation_rejects_overspend():
    with pytest.raises(ValidationError):
        PrizePoolCreate(
            serial_number="PP-2",
            name="Too generous",
            max_participants=2,
            duration_minutes=1,
            prize_pool_size=100,
            distribution_type=DistributionType.PERCENTAGE,
            distributions=[PrizeTier(rank_from=1, rank_to=1, percentage=95)],
            admin_cut=10,
        )


def test_schedule_validation_requires_amounts_in_fixed_mode():
    with pytest.raises(ValidationError):
        PrizePoolCreate(
            serial_number="PP-3",
            name="Fixed",
            max_participants=2,
            duration_minutes=1,
            prize_pool_size=100,
            distribution_type=DistributionType.FIXED,
            distributions=[PrizeTier(rank_from=1, rank_to=1, percentage=50)],
        )


def test_tier_range_must_be_ordered():
    with pytest.raises(ValidationError):
        PrizeTier(rank_from=3, rank_to=1, percentage=10)
