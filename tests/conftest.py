"""Shared fixtures: an in-memory SQLite database per test."""

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from oddsforge.models import STATUS_FINISHED, STATUS_SCHEDULED, Base, Match, Team


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_team(db):
    def _make(team_id, sport="football", rating=1200.0, league=None, name=None):
        team = Team(
            id=team_id,
            name=name or team_id.title(),
            sport=sport,
            league=league or ("EPL" if sport == "football" else "NBA"),
            rating=rating,
        )
        db.add(team)
        db.flush()
        return team
    return _make


@pytest.fixture
def make_match(db):
    def _make(
        match_id,
        home,
        away,
        date,
        home_score=None,
        away_score=None,
        status=None,
        sport="football",
    ):
        if status is None:
            status = STATUS_FINISHED if home_score is not None else STATUS_SCHEDULED
        match = Match(
            id=match_id,
            home_team_id=home,
            away_team_id=away,
            home_team_name=home.title(),
            away_team_name=away.title(),
            sport=sport,
            league="EPL" if sport == "football" else "NBA",
            match_date=date,
            status=status,
            home_score=home_score,
            away_score=away_score,
        )
        db.add(match)
        db.flush()
        return match
    return _make


@pytest.fixture
def now():
    return datetime(2025, 11, 1, 12, 0, 0)
