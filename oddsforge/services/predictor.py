"""
Prediction ensemble — three heuristic sub-models blended into one outcome
distribution with a confidence score.

Pipeline per scheduled match
----------------------------
1. **Rating model**   rating-implied expectation with home advantage; draw-
                      capable sports carve out a fixed draw share first.
2. **Head-to-head**   empirical rates over the last 10 meetings (either
                      venue order), shrunk toward the league baseline by
                      ``clamp(1 − √n / 4, 0.30, 0.90)``.
3. **Form model**     home-venue form of the home side vs away-venue form of
                      the away side through a logistic curve; league
                      baseline when either side has fewer than 3 matches.
4. **Combine**        fixed weights 0.5 / 0.3 / 0.2, renormalised.
5. **Rest days**      two-way sports only: ±0.025 per net day of rest
                      (net capped at ±3), renormalised.
6. **Confidence**     floor 0.40 + 0.35 × strength + 0.25 × agreement,
                      capped at 0.95.

Weights and constants are fixed heuristics, not fitted parameters.

Batch semantics
---------------
Each match is predicted inside its own savepoint.  A missing team aborts
only that match (logged as a warning); the batch commits once at the end.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Final, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oddsforge.core.elo import BASELINE_RATING, rating_probabilities, sanitize_rating
from oddsforge.core.errors import NotFound
from oddsforge.core.sport_config import SportConfig
from oddsforge.models import STATUS_SCHEDULED, Match, Prediction
from oddsforge.services.form import FormResult, FormTracker
from oddsforge.services.repository import (
    VENUE_AWAY,
    VENUE_HOME,
    discard_stale_predictions,
    get_head_to_head,
    get_last_finished_before,
    put_prediction,
    require_team,
)

logger = logging.getLogger(__name__)

#: (home, away, draw); draw is None for sports without draws.
Outcome = Tuple[float, float, Optional[float]]

MODEL_VERSION: Final[str] = "ensemble_v2"

# Ensemble weights
RATING_WEIGHT: Final[float] = 0.5
H2H_WEIGHT: Final[float] = 0.3
FORM_WEIGHT: Final[float] = 0.2

# Head-to-head
H2H_LIMIT: Final[int] = 10
H2H_MIN_SHRINK: Final[float] = 0.30
H2H_MAX_SHRINK: Final[float] = 0.90

# Form model
FORM_HOME_CONSTANT: Final[float] = 0.30
FORM_LOGISTIC_SCALE: Final[float] = 3.0
FORM_DRAW_PEAK: Final[float] = 0.32  # draw share of a perfectly even contest
FORM_DRAW_SLOPE: Final[float] = 0.5
FORM_DRAW_MIN: Final[float] = 0.05
FORM_DRAW_MAX: Final[float] = 0.35

# Rest-day adjustment (two-way sports)
REST_UNKNOWN_DAYS: Final[float] = 3.0
REST_MAX_DAYS: Final[float] = 7.0
REST_NET_CAP: Final[float] = 3.0
REST_SHIFT_PER_DAY: Final[float] = 0.025

# Confidence blend
CONFIDENCE_FLOOR: Final[float] = 0.40
CONFIDENCE_CEILING: Final[float] = 0.95
STRENGTH_WEIGHT: Final[float] = 0.35
AGREEMENT_WEIGHT: Final[float] = 0.25
STRENGTH_SCALE: Final[float] = 2.5
AGREEMENT_SD_SCALE: Final[float] = 0.15


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


# ---------------------------------------------------------------------------
# Sub-models (pure)
# ---------------------------------------------------------------------------

def league_baseline(config: SportConfig) -> Outcome:
    return config.league_baseline


def shrinkage_factor(n_meetings: int) -> float:
    """Weight given to the league baseline for ``n_meetings`` meetings."""
    return clamp(1.0 - math.sqrt(n_meetings) / 4.0, H2H_MIN_SHRINK, H2H_MAX_SHRINK)


def head_to_head_probabilities(
    meetings: Sequence[Match],
    home_team_id: str,
    away_team_id: str,
    config: SportConfig,
) -> Tuple[Outcome, int]:
    """
    Shrunk head-to-head outcome rates from the current home side's view.

    A meeting counts as a "home" win when the team hosting *this* match won
    it, whichever venue it was played at.  Meetings without a score pair
    are ignored.

    Returns ``(outcome, n)`` where ``n`` is the number of meetings used; the
    league baseline is returned outright when ``n == 0``.
    """
    home_wins = away_wins = draws = 0
    for meeting in meetings:
        if meeting.home_score is None or meeting.away_score is None:
            continue
        if meeting.home_score == meeting.away_score:
            draws += 1
            continue
        winner = (
            meeting.home_team_id
            if meeting.home_score > meeting.away_score
            else meeting.away_team_id
        )
        if winner == home_team_id:
            home_wins += 1
        elif winner == away_team_id:
            away_wins += 1

    n = home_wins + away_wins + draws
    base_home, base_away, base_draw = league_baseline(config)
    if n == 0:
        return (base_home, base_away, base_draw), 0

    if config.draw_capable:
        emp_home, emp_away, emp_draw = home_wins / n, away_wins / n, draws / n
    else:
        # A level result in a two-way sport is split evenly between the sides
        emp_home = (home_wins + 0.5 * draws) / n
        emp_away = (away_wins + 0.5 * draws) / n
        emp_draw = None

    f = shrinkage_factor(n)
    home = emp_home * (1.0 - f) + base_home * f
    away = emp_away * (1.0 - f) + base_away * f
    draw = None
    if config.draw_capable and base_draw is not None:
        draw = emp_draw * (1.0 - f) + base_draw * f
    return (home, away, draw), n


def form_draw_probability(base_home: float) -> float:
    """Draw share implied by how even the form contest is."""
    return clamp(
        FORM_DRAW_PEAK - FORM_DRAW_SLOPE * abs(base_home - 0.5),
        FORM_DRAW_MIN,
        FORM_DRAW_MAX,
    )


def form_probabilities(
    home_form: FormResult,
    away_form: FormResult,
    config: SportConfig,
) -> Outcome:
    """Form-model outcome, or the league baseline when a sample is too small."""
    if not (home_form.sufficient and away_form.sufficient):
        return league_baseline(config)

    form_diff = home_form.rate - away_form.rate
    x = (form_diff + FORM_HOME_CONSTANT) * FORM_LOGISTIC_SCALE
    base_home = 1.0 / (1.0 + math.exp(-x))

    if config.draw_capable:
        draw = form_draw_probability(base_home)
        return base_home * (1.0 - draw), (1.0 - base_home) * (1.0 - draw), draw
    return base_home, 1.0 - base_home, None


def combine(
    sub_models: Sequence[Outcome],
    weights: Sequence[float],
    draw_capable: bool,
) -> Outcome:
    """Weighted blend per outcome, renormalised to sum to one."""
    home = sum(w * m[0] for m, w in zip(sub_models, weights))
    away = sum(w * m[1] for m, w in zip(sub_models, weights))
    draw = None
    if draw_capable:
        draw = sum(w * (m[2] or 0.0) for m, w in zip(sub_models, weights))

    total = home + away + (draw or 0.0)
    if total <= 0.0:
        # Unreachable with the fixed positive weights; keep the split sane anyway
        return (1.0 / 3, 1.0 / 3, 1.0 / 3) if draw_capable else (0.5, 0.5, None)
    return home / total, away / total, (draw / total if draw is not None else None)


def rest_days(match_date: datetime, last_played: Optional[datetime]) -> float:
    """Full days of rest before ``match_date``, clamped to [0, 7]; 3 if unknown."""
    if last_played is None or match_date is None:
        return REST_UNKNOWN_DAYS
    gap = (match_date.date() - last_played.date()).days - 1
    return clamp(float(gap), 0.0, REST_MAX_DAYS)


def apply_rest_adjustment(
    outcome: Outcome,
    home_rest: float,
    away_rest: float,
) -> Tuple[Outcome, float]:
    """Shift two-way probability toward the better-rested side.

    Returns ``(adjusted_outcome, shift)`` where ``shift`` was added to home
    and subtracted from away before renormalising.
    """
    home, away, _ = outcome
    net = clamp(home_rest - away_rest, -REST_NET_CAP, REST_NET_CAP)
    shift = net * REST_SHIFT_PER_DAY
    home = clamp(home + shift, 0.0, 1.0)
    away = clamp(away - shift, 0.0, 1.0)
    total = home + away
    if total <= 0.0:
        return (0.5, 0.5, None), shift
    return (home / total, away / total, None), shift


def confidence_score(final: Outcome, sub_models: Sequence[Outcome]) -> float:
    """Blend of outcome strength and sub-model agreement, in [0.40, 0.95]."""
    best = max(final[0], final[1], final[2] or 0.0)
    strength = clamp((best - 0.5) * STRENGTH_SCALE, 0.0, 1.0)

    home_probs = np.array([m[0] for m in sub_models], dtype=float)
    spread = float(np.std(home_probs))
    agreement = clamp(1.0 - spread / AGREEMENT_SD_SCALE, 0.0, 1.0)

    return clamp(
        CONFIDENCE_FLOOR + STRENGTH_WEIGHT * strength + AGREEMENT_WEIGHT * agreement,
        CONFIDENCE_FLOOR,
        CONFIDENCE_CEILING,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class EnsembleResult:
    """Complete ensemble output for one match"""
    match_id: str
    home: float
    away: float
    draw: Optional[float]
    confidence: float

    sub_models: Dict[str, Outcome] = field(default_factory=dict)
    h2h_meetings: int = 0
    home_form: Optional[FormResult] = None
    away_form: Optional[FormResult] = None
    rest_shift: float = 0.0

    def to_prediction(self) -> Prediction:
        return Prediction(
            match_id=self.match_id,
            home_win_probability=self.home,
            away_win_probability=self.away,
            draw_probability=self.draw,
            model_version=MODEL_VERSION,
            confidence_score=self.confidence,
            created_at=datetime.utcnow(),
        )


class PredictionEngine:
    """
    Rating + head-to-head + form ensemble.

    Usage::

        engine = PredictionEngine()
        predictions = engine.generate_predictions(db, scheduled_matches)
    """

    def __init__(
        self,
        form_tracker: Optional[FormTracker] = None,
        weights: Optional[Tuple[float, float, float]] = None,
    ):
        self.form_tracker = form_tracker or FormTracker()
        self.weights = weights or (RATING_WEIGHT, H2H_WEIGHT, FORM_WEIGHT)

    def _team_rating(self, team) -> float:
        rating = sanitize_rating(team.rating)
        if rating != team.rating:
            logger.warning(
                "Team %s has non-finite rating %r; using baseline %.0f",
                team.id, team.rating, BASELINE_RATING,
            )
        return rating

    def predict_match(self, db: Session, match: Match) -> EnsembleResult:
        """
        Run the full ensemble for one match.

        Raises:
            NotFound: either team is missing from the teams table.
        """
        home_team = require_team(db, match.home_team_id)
        away_team = require_team(db, match.away_team_id)
        config = SportConfig.for_sport(match.sport)

        # Model 1: ratings
        rating_model = rating_probabilities(
            self._team_rating(home_team), self._team_rating(away_team), config
        )

        # Model 2: head-to-head
        meetings = get_head_to_head(
            db, home_team.id, away_team.id, before=match.match_date, limit=H2H_LIMIT
        )
        h2h_model, n_meetings = head_to_head_probabilities(
            meetings, home_team.id, away_team.id, config
        )

        # Model 3: venue form
        home_form = self.form_tracker.form_for(
            db, home_team.id, VENUE_HOME, config, before=match.match_date
        )
        away_form = self.form_tracker.form_for(
            db, away_team.id, VENUE_AWAY, config, before=match.match_date
        )
        form_model = form_probabilities(home_form, away_form, config)

        sub_models = [rating_model, h2h_model, form_model]
        final = combine(sub_models, self.weights, config.draw_capable)

        shift = 0.0
        if not config.draw_capable:
            home_last = get_last_finished_before(db, home_team.id, match.match_date)
            away_last = get_last_finished_before(db, away_team.id, match.match_date)
            final, shift = apply_rest_adjustment(
                final,
                rest_days(match.match_date, home_last.match_date if home_last else None),
                rest_days(match.match_date, away_last.match_date if away_last else None),
            )

        return EnsembleResult(
            match_id=match.id,
            home=final[0],
            away=final[1],
            draw=final[2],
            confidence=confidence_score(final, sub_models),
            sub_models={"rating": rating_model, "head_to_head": h2h_model, "form": form_model},
            h2h_meetings=n_meetings,
            home_form=home_form,
            away_form=away_form,
            rest_shift=shift,
        )

    def generate_predictions(self, db: Session, matches: Sequence[Match]) -> List[Prediction]:
        """
        Predict every scheduled match in ``matches`` and replace any prior
        prediction.  Predictions for matches that have left the scheduled
        state are discarded in the same commit.
        """
        stored: List[Prediction] = []
        skipped = 0

        for match in matches:
            if match.status != STATUS_SCHEDULED:
                continue
            try:
                with db.begin_nested():
                    result = self.predict_match(db, match)
                    prediction = put_prediction(db, result.to_prediction())
                stored.append(prediction)
                logger.debug(
                    "Prediction %s vs %s: home %.1f%%, away %.1f%%%s (conf %.2f)",
                    match.home_team_name, match.away_team_name,
                    result.home * 100, result.away * 100,
                    f", draw {result.draw * 100:.1f}%" if result.draw is not None else "",
                    result.confidence,
                )
            except NotFound as exc:
                skipped += 1
                logger.warning("Skipping prediction for match %s: %s", match.id, exc)
            except SQLAlchemyError as exc:
                skipped += 1
                logger.error("Prediction for match %s failed: %s", match.id, exc)

        discarded = discard_stale_predictions(db)
        db.commit()
        logger.info(
            "Predictions refreshed: %d stored, %d skipped, %d stale discarded",
            len(stored), skipped, discarded,
        )
        return stored


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_prediction_engine: Optional[PredictionEngine] = None


def get_prediction_engine() -> PredictionEngine:
    global _prediction_engine
    if _prediction_engine is None:
        _prediction_engine = PredictionEngine()
    return _prediction_engine
