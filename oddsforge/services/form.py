"""
Form tracker — recency-weighted, venue-split recent results.

For one team in one context (home or away) the tracker takes the most
recent :data:`FORM_WINDOW` finished matches played in that context, newest
first, and weights the i-th (0-indexed) by ``FORM_DECAY ** i``:

    rate = Σ wᵢ · pointsᵢ / Σ wᵢ · win_points          ∈ [0, 1]

Points per match: ``win_points`` for a win (3 in draw-capable sports, 1
otherwise), half of that for a draw in a draw-capable sport or for a
finished match whose score is missing, 0 for a loss.

The tracker never substitutes a default.  With fewer than
:data:`MIN_FORM_SAMPLE` matches the result is flagged insufficient and the
caller decides what to use instead (the ensemble uses the league baseline).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Final, Optional, Sequence

from sqlalchemy.orm import Session

from oddsforge.core.sport_config import SportConfig
from oddsforge.models import Match
from oddsforge.services.repository import VENUE_AWAY, VENUE_HOME, get_team_recent_matches

logger = logging.getLogger(__name__)

#: Number of most recent matches in the context that count.
FORM_WINDOW: Final[int] = 8

#: Geometric decay per step back in time.
FORM_DECAY: Final[float] = 0.85

#: Below this sample size the signal must not be used.
MIN_FORM_SAMPLE: Final[int] = 3


@dataclass(frozen=True)
class FormResult:
    team_id: str
    venue: str
    rate: float
    sample_size: int

    @property
    def sufficient(self) -> bool:
        return self.sample_size >= MIN_FORM_SAMPLE


def match_points(match: Match, team_id: str, config: SportConfig) -> float:
    """Form points earned by ``team_id`` in one finished match."""
    if match.home_score is None or match.away_score is None:
        return config.draw_points

    if match.home_team_id == team_id:
        scored, conceded = match.home_score, match.away_score
    else:
        scored, conceded = match.away_score, match.home_score

    if scored > conceded:
        return config.win_points
    if scored == conceded and config.draw_capable:
        return config.draw_points
    # A level score in a sport without draws earns nothing
    return 0.0


def compute_form(
    matches: Sequence[Match],
    team_id: str,
    venue: str,
    config: SportConfig,
    window: int = FORM_WINDOW,
    decay: float = FORM_DECAY,
) -> FormResult:
    """Weighted form rate over ``matches`` (newest first; truncated to ``window``)."""
    used = list(matches[:window])
    weighted_points = 0.0
    weighted_max = 0.0
    for i, match in enumerate(used):
        weight = decay ** i
        weighted_points += weight * match_points(match, team_id, config)
        weighted_max += weight * config.win_points

    rate = weighted_points / weighted_max if weighted_max > 0 else 0.0
    return FormResult(team_id=team_id, venue=venue, rate=rate, sample_size=len(used))


class FormTracker:
    """Computes form on demand from the persisted match history."""

    def __init__(self, window: int = FORM_WINDOW, decay: float = FORM_DECAY):
        self.window = window
        self.decay = decay

    def form_for(
        self,
        db: Session,
        team_id: str,
        venue: str,
        config: SportConfig,
        before: Optional[datetime] = None,
    ) -> FormResult:
        if venue not in (VENUE_HOME, VENUE_AWAY):
            raise ValueError(f"venue must be 'home' or 'away', got {venue!r}")
        matches = get_team_recent_matches(
            db, team_id, venue=venue, before=before, limit=self.window
        )
        result = compute_form(matches, team_id, venue, config, self.window, self.decay)
        logger.debug(
            "Form %s (%s): rate=%.3f over %d matches",
            team_id, venue, result.rate, result.sample_size,
        )
        return result
