"""
Prize Distribution Calculator

Pure lookup of a payout from the admin schedule. The schedule was validated
when the pool was created; ranks that no tier covers pay 0.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from prizepool.models.contest import DistributionType, PrizePool
from prizepool.models.ranking import TeamScore


def find_tier(rank: int, distributions: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """First tier whose [rank_from, rank_to] contains rank"""
    for tier in distributions:
        try:
            if int(tier["rank_from"]) <= rank <= int(tier["rank_to"]):
                return tier
        except (KeyError, TypeError, ValueError):
            continue
    return None


def calculate_prize(
    rank: int,
    distribution_type: str,
    distributions: Sequence[Mapping[str, Any]],
    prize_pool_size: float,
    admin_cut: float = 0,
) -> float:
    """
    Payout for a final rank.

    fixed:      the matching tier's amount
    percentage: prize_pool_size * the matching tier's percentage / 100

    admin_cut is part of the schedule but already reserved at creation time;
    it does not change any individual payout.
    """
    tier = find_tier(rank, distributions)
    if tier is None:
        return 0.0

    if distribution_type == DistributionType.FIXED.value:
        return float(tier.get("amount") or 0)

    percentage = float(tier.get("percentage") or 0)
    return prize_pool_size * percentage / 100


def apply_prizes(ranked: List[TeamScore], pool: PrizePool) -> List[TeamScore]:
    distributions: List[Dict[str, Any]] = pool.distributions or []
    for team in ranked:
        team.prize_amount = calculate_prize(
            team.rank,
            pool.distribution_type,
            distributions,
            pool.prize_pool_size,
            pool.admin_cut,
        )
    return ranked
