"""
Ranking & Tie-Break Resolver

Final ranks are dense and 1-based: every team consumes exactly one rank.
Teams whose scores agree to two decimal places form a tie group; each group is
shuffled uniformly at random and every member is flagged is_tie. Finalization
persists one result per pool, so a tied team's placing is drawn exactly once.
"""

import random
from itertools import groupby
from typing import Iterable, List, Optional

from prizepool.models.ranking import TeamScore

_system_random = random.SystemRandom()


def rounded_score(score: float) -> float:
    """Absorb floating point noise before comparing scores"""
    return round(score, 2)


def rank_teams(
    scores: Iterable[TeamScore],
    rng: Optional[random.Random] = None,
) -> List[TeamScore]:
    rng = rng or _system_random
    ordered = sorted(scores, key=lambda team: rounded_score(team.total_score), reverse=True)

    ranked: List[TeamScore] = []
    current_rank = 1
    for _, group in groupby(ordered, key=lambda team: rounded_score(team.total_score)):
        teams = list(group)
        if len(teams) > 1:
            rng.shuffle(teams)  # Fisher-Yates
            for team in teams:
                team.is_tie = True
        else:
            teams[0].is_tie = False

        for team in teams:
            team.rank = current_rank
            ranked.append(team)
            current_rank += 1

    return ranked


def rank_live(scores: Iterable[TeamScore]) -> List[TeamScore]:
    """Provisional ordering for a live board, recomputed on every read."""
    ordered = sorted(scores, key=lambda team: team.total_score, reverse=True)
    for index, team in enumerate(ordered):
        team.rank = index + 1
        team.is_tie = False
    return ordered
