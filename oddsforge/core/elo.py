"""ELO-style rating mathematics.

Every function here is **pure**: no I/O, no logging, no side effects.
The rating engine (:mod:`oddsforge.services.ratings`) and the ensemble
(:mod:`oddsforge.services.predictor`) both import from this module; neither
reimplements the expectation curve locally.

Conventions
-----------
* Ratings start at :data:`BASELINE_RATING` and move by at most
  ``K_FACTOR × margin_multiplier`` points per match.
* The home side plays with a :data:`HOME_ADVANTAGE` rating bonus when the
  expectation is computed.  The bonus is never written back to the rating.
* Updates are symmetric: whatever the home side gains the away side loses.
"""

from __future__ import annotations

import math
from typing import Final, Optional, Tuple

from oddsforge.core.sport_config import SportConfig

#: Rating every team is reset to before a full replay.
BASELINE_RATING: Final[float] = 1200.0

#: Maximum rating points exchanged per match before margin scaling.
K_FACTOR: Final[float] = 32.0

#: Rating bonus applied to the home side when computing the expectation.
HOME_ADVANTAGE: Final[float] = 100.0

#: Logistic scale of the classic ELO curve (400 points = 10:1 odds).
_ELO_SCALE: Final[float] = 400.0


def expected_score(rating_a: float, rating_b: float) -> float:
    """Expected score of side A against side B.

    ``expected_score(a, b) + expected_score(b, a) == 1`` for any finite
    ratings.

    Examples::

        expected_score(1200, 1200) → 0.5
        expected_score(1600, 1400) → 0.7597
    """
    return 1.0 / (1.0 + 10.0 ** ((rating_b - rating_a) / _ELO_SCALE))


def home_expectation(
    home_rating: float,
    away_rating: float,
    home_advantage: float = HOME_ADVANTAGE,
) -> float:
    """Expected score for the home side including the home-advantage bonus."""
    return expected_score(home_rating + home_advantage, away_rating)


def actual_score(home_score: int, away_score: int) -> float:
    """Home result as 1 / 0.5 / 0 for a win / draw / loss."""
    if home_score > away_score:
        return 1.0
    if home_score < away_score:
        return 0.0
    return 0.5


def margin_multiplier(home_score: int, away_score: int) -> float:
    """Scale the K-factor by the size of the victory.

    * one-score games (and draws) → 1.0
    * two-score margins          → 1.5
    * larger margins             → ``(11 + diff) / 8``
    """
    diff = abs(home_score - away_score)
    if diff <= 1:
        return 1.0
    if diff == 2:
        return 1.5
    return (11.0 + diff) / 8.0


def update_ratings(
    home_rating: float,
    away_rating: float,
    home_score: int,
    away_score: int,
    k_factor: float = K_FACTOR,
    home_advantage: float = HOME_ADVANTAGE,
) -> Tuple[float, float]:
    """Return ``(new_home_rating, new_away_rating)`` after one result."""
    expected_home = home_expectation(home_rating, away_rating, home_advantage)
    delta = (
        k_factor
        * margin_multiplier(home_score, away_score)
        * (actual_score(home_score, away_score) - expected_home)
    )
    return home_rating + delta, away_rating - delta


def rating_probabilities(
    home_rating: float,
    away_rating: float,
    config: SportConfig,
) -> Tuple[float, float, Optional[float]]:
    """Rating-implied ``(home, away, draw)`` outcome probabilities.

    Draw-capable sports carve out ``config.base_draw_prob`` first and split
    the remaining mass between home and away in proportion to the
    expectation.  Two-way sports use the expectation directly and return
    ``None`` for the draw.
    """
    expected_home = home_expectation(home_rating, away_rating)
    if config.draw_capable:
        draw = config.base_draw_prob
        return expected_home * (1.0 - draw), (1.0 - expected_home) * (1.0 - draw), draw
    return expected_home, 1.0 - expected_home, None


def sanitize_rating(rating: Optional[float], default: float = BASELINE_RATING) -> float:
    """Return ``rating`` when finite, else ``default``.

    Ratings are always finite by invariant; a NaN/inf read back from storage
    is a data inconsistency and is replaced in place rather than propagated
    into the expectation curve.
    """
    if rating is None:
        return default
    try:
        value = float(rating)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default
