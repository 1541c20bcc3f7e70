"""
Persistence helpers over SQLAlchemy sessions.

Every function takes an open ``Session`` and only ``add``/``flush``es;
committing is left to the caller so a batch (an ingestion page, a
prediction run) commits once.  All filters go through the ORM expression
API, never string-built SQL.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from oddsforge.core.errors import NotFound
from oddsforge.models import (
    STATUS_FINISHED,
    STATUS_SCHEDULED,
    DataFetch,
    FetchCursor,
    MarketQuote,
    Match,
    Prediction,
    RatingHistoryPoint,
    Team,
)

logger = logging.getLogger(__name__)

VENUE_HOME = "home"
VENUE_AWAY = "away"


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

def get_team(db: Session, team_id: str) -> Optional[Team]:
    return db.get(Team, team_id)


def require_team(db: Session, team_id: str) -> Team:
    """Return the team or raise :class:`NotFound`."""
    team = db.get(Team, team_id)
    if team is None:
        raise NotFound(f"team {team_id!r} not found")
    return team


def upsert_team(
    db: Session,
    team_id: str,
    name: str,
    sport: str,
    league: str,
    logo_url: Optional[str] = None,
) -> Team:
    """Create the team on first sighting, else refresh its descriptive fields.

    The rating is never touched here: it belongs to the rating engine.
    """
    team = db.get(Team, team_id)
    if team is None:
        team = Team(id=team_id, name=name, sport=sport, league=league, logo_url=logo_url)
        db.add(team)
        db.flush()
        logger.debug("Inserted team: %s", name)
        return team

    team.name = name
    team.sport = sport
    team.league = league
    if logo_url:
        team.logo_url = logo_url
    return team


def get_all_teams(db: Session) -> List[Team]:
    return db.query(Team).order_by(Team.id).all()


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

def upsert_match(db: Session, **fields) -> Match:
    """Create or update a match by id.

    Scores are only kept when the match is finished; a scheduled or live
    row never carries a score pair.
    """
    if fields.get("status") != STATUS_FINISHED:
        fields["home_score"] = None
        fields["away_score"] = None

    match = db.get(Match, fields["id"])
    if match is None:
        match = Match(**fields)
        db.add(match)
        db.flush()
        logger.debug("Inserted match: %s vs %s", match.home_team_name, match.away_team_name)
        return match

    for key, value in fields.items():
        setattr(match, key, value)
    return match


def get_match(db: Session, match_id: str) -> Optional[Match]:
    return db.get(Match, match_id)


def get_finished_matches_ordered(db: Session) -> List[Match]:
    """Finished matches with a full score pair, oldest first.

    Ties on ``match_date`` are broken by id so the replay order, and with it
    every rating, is fully determined by the stored history.
    """
    return (
        db.query(Match)
        .filter(
            Match.status == STATUS_FINISHED,
            Match.home_score.isnot(None),
            Match.away_score.isnot(None),
        )
        .order_by(Match.match_date.asc(), Match.id.asc())
        .all()
    )


def get_scheduled_matches(
    db: Session,
    sport: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[Match]:
    query = db.query(Match).filter(Match.status == STATUS_SCHEDULED)
    if sport:
        query = query.filter(Match.sport == sport)
    if since is not None:
        query = query.filter(Match.match_date >= since)
    if until is not None:
        query = query.filter(Match.match_date <= until)
    query = query.order_by(Match.match_date.asc(), Match.id.asc())
    if limit:
        query = query.limit(limit)
    return query.all()


def count_upcoming(db: Session, sport: str, now: datetime, days: float) -> int:
    """Scheduled matches for ``sport`` starting within ``days`` of ``now``."""
    return (
        db.query(Match)
        .filter(
            Match.sport == sport,
            Match.status == STATUS_SCHEDULED,
            Match.match_date > now,
            Match.match_date < now + timedelta(days=days),
        )
        .count()
    )


def count_unresolved(db: Session, sport: str, now: datetime, days: float) -> int:
    """Matches for ``sport`` that kicked off in the last ``days`` but are not finished."""
    return (
        db.query(Match)
        .filter(
            Match.sport == sport,
            Match.status != STATUS_FINISHED,
            Match.match_date <= now,
            Match.match_date >= now - timedelta(days=days),
        )
        .count()
    )


def get_team_recent_matches(
    db: Session,
    team_id: str,
    venue: Optional[str] = None,
    before: Optional[datetime] = None,
    limit: int = 8,
) -> List[Match]:
    """Most recent finished matches for a team, newest first.

    ``venue`` restricts to matches played at home (``"home"``) or away
    (``"away"``); ``None`` takes both.  Matches with a missing score are
    included: the form metric scores them as half a win.
    """
    if venue == VENUE_HOME:
        side = Match.home_team_id == team_id
    elif venue == VENUE_AWAY:
        side = Match.away_team_id == team_id
    else:
        side = or_(Match.home_team_id == team_id, Match.away_team_id == team_id)

    query = db.query(Match).filter(side, Match.status == STATUS_FINISHED)
    if before is not None:
        query = query.filter(Match.match_date < before)
    return (
        query.order_by(Match.match_date.desc(), Match.id.desc())
        .limit(limit)
        .all()
    )


def get_head_to_head(
    db: Session,
    team_a: str,
    team_b: str,
    before: Optional[datetime] = None,
    limit: int = 10,
) -> List[Match]:
    """Most recent finished meetings between two teams, either venue order."""
    pairing = or_(
        and_(Match.home_team_id == team_a, Match.away_team_id == team_b),
        and_(Match.home_team_id == team_b, Match.away_team_id == team_a),
    )
    query = db.query(Match).filter(pairing, Match.status == STATUS_FINISHED)
    if before is not None:
        query = query.filter(Match.match_date < before)
    return (
        query.order_by(Match.match_date.desc(), Match.id.desc())
        .limit(limit)
        .all()
    )


def get_last_finished_before(db: Session, team_id: str, before: datetime) -> Optional[Match]:
    matches = get_team_recent_matches(db, team_id, before=before, limit=1)
    return matches[0] if matches else None


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------

def get_prediction(db: Session, match_id: str) -> Optional[Prediction]:
    return db.query(Prediction).filter(Prediction.match_id == match_id).first()


def put_prediction(db: Session, prediction: Prediction) -> Prediction:
    """Store ``prediction`` as the only prediction for its match."""
    db.query(Prediction).filter(Prediction.match_id == prediction.match_id).delete(
        synchronize_session="fetch"
    )
    db.add(prediction)
    db.flush()
    return prediction


def discard_stale_predictions(db: Session) -> int:
    """Delete predictions whose match is no longer scheduled."""
    stale_ids = [
        pid
        for (pid,) in db.query(Prediction.id)
        .join(Match, Prediction.match_id == Match.id)
        .filter(Match.status != STATUS_SCHEDULED)
        .all()
    ]
    if not stale_ids:
        return 0
    db.query(Prediction).filter(Prediction.id.in_(stale_ids)).delete(synchronize_session="fetch")
    return len(stale_ids)


# ---------------------------------------------------------------------------
# Market quotes
# ---------------------------------------------------------------------------

def get_market_quote(db: Session, match_id: str) -> Optional[MarketQuote]:
    return db.get(MarketQuote, match_id)


def upsert_market_quote(
    db: Session,
    match_id: str,
    bookmaker: str,
    home_odds: float,
    draw_odds: Optional[float],
    away_odds: float,
    fetched_at: Optional[datetime] = None,
) -> MarketQuote:
    quote = db.get(MarketQuote, match_id)
    if quote is None:
        quote = MarketQuote(match_id=match_id)
        db.add(quote)
    quote.bookmaker = bookmaker
    quote.home_odds = home_odds
    quote.draw_odds = draw_odds
    quote.away_odds = away_odds
    quote.fetched_at = fetched_at or datetime.utcnow()
    db.flush()
    return quote


# ---------------------------------------------------------------------------
# Rating history
# ---------------------------------------------------------------------------

def get_rating_history(db: Session, team_id: str) -> List[RatingHistoryPoint]:
    return (
        db.query(RatingHistoryPoint)
        .filter(RatingHistoryPoint.team_id == team_id)
        .order_by(RatingHistoryPoint.date.asc(), RatingHistoryPoint.id.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Fetch cursors and audit
# ---------------------------------------------------------------------------

def get_fetch_cursor(db: Session, source_key: str) -> Optional[datetime]:
    cursor = db.get(FetchCursor, source_key)
    return cursor.last_fetched if cursor else None


def put_fetch_cursor(db: Session, source_key: str, fetched_at: datetime) -> None:
    cursor = db.get(FetchCursor, source_key)
    if cursor is None:
        db.add(FetchCursor(source_key=source_key, last_fetched=fetched_at))
    else:
        cursor.last_fetched = fetched_at


def record_fetch(
    db: Session,
    source: str,
    success: bool,
    records: Optional[int] = None,
    error: Optional[str] = None,
    response_time_ms: Optional[int] = None,
) -> None:
    db.add(DataFetch(
        data_source=source,
        success=success,
        records_fetched=records,
        error_message=error,
        response_time_ms=response_time_ms,
    ))
