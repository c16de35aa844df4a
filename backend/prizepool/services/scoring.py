"""
Scoring Engine

Relative-performance scores for teams against the locked baseline.

    percentage_change = (observed - locked) / locked * 100   (0 when locked is 0)
    individual_score  = percentage_change * 100
    total_score       = sum(individual_score)

The x100 on the individual score is part of the published score scale. A token
without an observed price contributes 0; a malformed token entry contributes 0
and is logged, so one bad record never blocks a whole pool.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from prizepool.models.ranking import TeamScore, TokenScore
from prizepool.models.team import Team

logger = logging.getLogger(__name__)

SCORE_MULTIPLIER = 100


def percentage_change(locked_price: float, observed_price: Optional[float]) -> float:
    if not locked_price or locked_price <= 0 or observed_price is None:
        return 0.0
    return (observed_price - locked_price) / locked_price * 100


def score_token(
    token: Dict[str, Any],
    locked_price: float,
    observed_price: Optional[float],
) -> TokenScore:
    change = percentage_change(locked_price, observed_price)
    return TokenScore(
        coin_id=token["id"],
        name=token.get("name", ""),
        symbol=token.get("symbol", ""),
        locked_price=locked_price,
        current_price=observed_price,
        percentage_change=change,
        individual_score=change * SCORE_MULTIPLIER,
    )


def _score_team(
    team: Team,
    locked: Mapping[str, float],
    observed: Mapping[str, float],
    is_final: bool,
    user_uid: Optional[str] = None,
) -> TeamScore:
    tokens = []
    for token in team.tokens or []:
        if not isinstance(token, dict) or not token.get("id"):
            logger.warning(f"Team {team.id} has a malformed token entry, scoring it as 0: {token!r}")
            continue

        coin_id = token["id"]
        locked_price = locked.get(coin_id) or 0.0
        observed_price = observed.get(coin_id)
        if is_final and not observed_price:
            # Absent or zero closing price is missing data, not a -100% move
            observed_price = None

        token_score = score_token(token, locked_price, observed_price)
        if is_final:
            token_score.final_price = observed_price or 0.0
        tokens.append(token_score)

    if len(tokens) != len(team.tokens or []):
        logger.warning(f"Team {team.id} scored with {len(tokens)} of {len(team.tokens or [])} tokens")

    return TeamScore(
        team_id=team.id,
        team_name=team.team_name,
        user_uid=user_uid or team.user_uid,
        total_score=sum(t.individual_score for t in tokens),
        tokens=tokens,
    )


def score_team_live(
    team: Team,
    locked_prices: Mapping[str, float],
    current_prices: Mapping[str, float],
    user_uid: Optional[str] = None,
) -> TeamScore:
    """Provisional score from live prices; unavailable prices stay None and add 0."""
    return _score_team(team, locked_prices, current_prices, is_final=False, user_uid=user_uid)


def score_team_final(
    team: Team,
    locked_prices: Mapping[str, float],
    final_prices: Mapping[str, float],
    user_uid: Optional[str] = None,
) -> TeamScore:
    """Final score from the closing snapshot; absent final prices count as 0."""
    return _score_team(team, locked_prices, final_prices, is_final=True, user_uid=user_uid)
