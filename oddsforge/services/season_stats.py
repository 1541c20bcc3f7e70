"""
Per-team season aggregates (played, W/D/L, score for/against, last-5 form).

Recomputed from scratch after every rating rebuild; the team_stats rows
for a (team, season) pair are replaced on each run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oddsforge.core.sport_config import SportConfig
from oddsforge.models import Match, TeamStats
from oddsforge.services.repository import get_finished_matches_ordered

logger = logging.getLogger(__name__)

FORM_LENGTH = 5

#: Month in which a new season label starts (July: both leagues start after it).
SEASON_START_MONTH = 7


def season_label(match_date: datetime) -> str:
    """'2025-26' for any date from July 2025 to June 2026."""
    start = match_date.year if match_date.month >= SEASON_START_MONTH else match_date.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


@dataclass
class SeasonLine:
    team_id: str
    season: str
    draw_capable: bool
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    score_for: int = 0
    score_against: int = 0
    results: List[str] = field(default_factory=list)  # oldest first

    @property
    def form(self) -> str:
        return "".join(reversed(self.results[-FORM_LENGTH:]))

    def add(self, scored: int, conceded: int) -> None:
        self.played += 1
        self.score_for += scored
        self.score_against += conceded
        if scored > conceded:
            self.wins += 1
            self.results.append("W")
        elif scored < conceded:
            self.losses += 1
            self.results.append("L")
        elif self.draw_capable:
            self.draws += 1
            self.results.append("D")
        else:
            # Tie in a two-way sport: played, but neither a win nor a loss
            self.results.append("L")


def aggregate(matches: List[Match]) -> Dict[Tuple[str, str], SeasonLine]:
    """Fold finished matches (oldest first) into one line per (team, season)."""
    lines: Dict[Tuple[str, str], SeasonLine] = {}
    for match in matches:
        if not match.has_score or match.match_date is None:
            continue
        config = SportConfig.for_sport(match.sport)
        season = season_label(match.match_date)
        for team_id, scored, conceded in (
            (match.home_team_id, match.home_score, match.away_score),
            (match.away_team_id, match.away_score, match.home_score),
        ):
            key = (team_id, season)
            if key not in lines:
                lines[key] = SeasonLine(team_id, season, config.draw_capable)
            lines[key].add(scored, conceded)
    return lines


def compute_season_stats(db: Session, now: Optional[datetime] = None) -> int:
    """Replace every team_stats row with fresh aggregates.  Returns the row count."""
    now = now or datetime.utcnow()
    lines = aggregate(get_finished_matches_ordered(db))

    try:
        db.query(TeamStats).delete(synchronize_session="fetch")
        db.add_all(
            TeamStats(
                team_id=line.team_id,
                season=line.season,
                matches_played=line.played,
                wins=line.wins,
                draws=line.draws if line.draw_capable else None,
                losses=line.losses,
                score_for=line.score_for,
                score_against=line.score_against,
                form=line.form,
                updated_at=now,
            )
            for line in lines.values()
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Season stats: write failed, previous rows kept")
        raise

    logger.info(
        "Season stats computed: %d rows for %d teams",
        len(lines), len({team_id for team_id, _season in lines}),
    )
    return len(lines)
