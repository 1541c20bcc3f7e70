"""
Rating engine — deterministic full replay of the finished-match history.

Every rebuild starts from scratch: all teams at the baseline rating, then
every finished match with a valid score pair is replayed oldest first
(ties broken by match id).  The same stored history therefore always yields
bit-identical ratings.

Isolation
---------
The replay runs entirely in memory against a working copy of the ratings.
Only when the whole history has been replayed are the new ratings and the
new rating-history rows written, inside a single transaction that also
removes the previous history.  Concurrent readers see either the old
ratings or the new ones, never the baseline-reset intermediate state.

Failure semantics
-----------------
* The match history or team list cannot be read → :class:`HistoryUnavailable`
  is raised to the caller and nothing is written.
* A single match is unusable (missing score, unknown team, no date) → it is
  logged and skipped; no rating moves and no history point is produced.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oddsforge.core.elo import BASELINE_RATING, HOME_ADVANTAGE, K_FACTOR, update_ratings
from oddsforge.core.errors import HistoryUnavailable
from oddsforge.models import Match, RatingHistoryPoint
from oddsforge.services.repository import get_all_teams, get_finished_matches_ordered

logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    team_id: str
    date: datetime
    rating: float
    match_id: str


@dataclass
class ReplayResult:
    """Outcome of replaying one ordered match history."""
    ratings: Dict[str, float]
    history: List[HistoryEntry] = field(default_factory=list)
    replayed: int = 0
    skipped: int = 0


@dataclass
class RebuildResult:
    """Summary returned to callers of :meth:`RatingEngine.rebuild`."""
    teams: int
    replayed: int
    skipped: int
    history_points: int
    ratings: Dict[str, float]


class RatingEngine:
    """ELO-style rating engine with margin-of-victory scaling."""

    def __init__(
        self,
        k_factor: float = K_FACTOR,
        home_advantage: float = HOME_ADVANTAGE,
        baseline: float = BASELINE_RATING,
    ):
        self.k_factor = k_factor
        self.home_advantage = home_advantage
        self.baseline = baseline

    # -----------------------------------------------------------------------
    # Pure replay
    # -----------------------------------------------------------------------

    def _skip_reason(self, match: Match, ratings: Dict[str, float]) -> Optional[str]:
        if match.home_score is None or match.away_score is None:
            return "missing score"
        if match.match_date is None:
            return "missing match date"
        if match.home_team_id not in ratings:
            return f"unknown home team {match.home_team_id!r}"
        if match.away_team_id not in ratings:
            return f"unknown away team {match.away_team_id!r}"
        if match.home_team_id == match.away_team_id:
            return "team listed on both sides"
        return None

    def replay(self, matches: Iterable[Match], team_ids: Iterable[str]) -> ReplayResult:
        """
        Replay ``matches`` in the order given, starting every team in
        ``team_ids`` at the baseline.

        The input order is trusted; callers pass
        :func:`~oddsforge.services.repository.get_finished_matches_ordered`.
        """
        result = ReplayResult(ratings={team_id: self.baseline for team_id in team_ids})
        ratings = result.ratings

        for match in matches:
            reason = self._skip_reason(match, ratings)
            if reason:
                result.skipped += 1
                logger.warning("Rating replay: skipping match %s (%s)", match.id, reason)
                continue

            new_home, new_away = update_ratings(
                ratings[match.home_team_id],
                ratings[match.away_team_id],
                match.home_score,
                match.away_score,
                k_factor=self.k_factor,
                home_advantage=self.home_advantage,
            )
            ratings[match.home_team_id] = new_home
            ratings[match.away_team_id] = new_away

            result.history.append(
                HistoryEntry(match.home_team_id, match.match_date, new_home, match.id)
            )
            result.history.append(
                HistoryEntry(match.away_team_id, match.match_date, new_away, match.id)
            )
            result.replayed += 1

        return result

    # -----------------------------------------------------------------------
    # Rebuild against the database
    # -----------------------------------------------------------------------

    def rebuild(self, db: Session) -> RebuildResult:
        """
        Reset every team to the baseline and replay all finished matches,
        then swap the result in atomically.

        Raises:
            HistoryUnavailable: the finished matches or teams could not be
                loaded.  Nothing has been written in that case.
        """
        try:
            teams = get_all_teams(db)
            matches = get_finished_matches_ordered(db)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Rating rebuild aborted: could not load match history: %s", exc)
            raise HistoryUnavailable(f"could not load match history: {exc}") from exc

        result = self.replay(matches, [team.id for team in teams])

        try:
            db.query(RatingHistoryPoint).delete(synchronize_session="fetch")
            for team in teams:
                team.rating = result.ratings[team.id]
            db.add_all(
                RatingHistoryPoint(
                    team_id=entry.team_id,
                    date=entry.date,
                    rating=entry.rating,
                    match_id=entry.match_id,
                )
                for entry in result.history
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Rating rebuild: swap failed, previous ratings kept")
            raise

        logger.info(
            "Ratings rebuilt from %d finished matches (%d skipped, %d teams)",
            result.replayed, result.skipped, len(teams),
        )
        return RebuildResult(
            teams=len(teams),
            replayed=result.replayed,
            skipped=result.skipped,
            history_points=len(result.history),
            ratings=dict(result.ratings),
        )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_rating_engine: Optional[RatingEngine] = None


def get_rating_engine() -> RatingEngine:
    global _rating_engine
    if _rating_engine is None:
        _rating_engine = RatingEngine()
    return _rating_engine
