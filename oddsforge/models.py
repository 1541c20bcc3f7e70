"""
Database models for the OddsForge engine
SQLAlchemy ORM (SQLite by default, any SQLAlchemy URL via DATABASE_URL)
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime
import os
from dotenv import load_dotenv

# Load .env before DATABASE_URL is read
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///oddsforge.db")

engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Match lifecycle
STATUS_SCHEDULED = "scheduled"
STATUS_LIVE = "live"
STATUS_FINISHED = "finished"


class Team(Base):
    """A team as first sighted by ingestion; rating owned by the rating engine"""

    __tablename__ = "teams"

    id = Column(String, primary_key=True, index=True)  # provider-prefixed, e.g. "epl_57"
    name = Column(String, nullable=False)
    sport = Column(String, nullable=False)  # "football", "basketball"
    league = Column(String, nullable=False)  # "EPL", "Champions League", "NBA"
    logo_url = Column(String)

    rating = Column(Float, nullable=False, default=1200.0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("idx_teams_sport_league", "sport", "league"),)


class Match(Base):
    """Fixture or result; scores are only set once status is 'finished'"""

    __tablename__ = "matches"

    id = Column(String, primary_key=True, index=True)
    home_team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    away_team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    home_team_name = Column(String, nullable=False)
    away_team_name = Column(String, nullable=False)
    sport = Column(String, nullable=False, index=True)
    league = Column(String, nullable=False)
    match_date = Column(DateTime, nullable=False, index=True)
    status = Column(String, nullable=False, default=STATUS_SCHEDULED, index=True)

    # Filled once the match is finished
    home_score = Column(Integer)
    away_score = Column(Integer)

    prediction = relationship("Prediction", back_populates="match", uselist=False)
    quote = relationship("MarketQuote", back_populates="match", uselist=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def has_score(self) -> bool:
        return self.home_score is not None and self.away_score is not None


class RatingHistoryPoint(Base):
    """Rating of one team right after one replayed match"""

    __tablename__ = "rating_history"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    date = Column(DateTime, nullable=False)
    rating = Column(Float, nullable=False)
    match_id = Column(String, ForeignKey("matches.id"))


class Prediction(Base):
    """Latest ensemble output for a scheduled match (one row per match)"""

    __tablename__ = "predictions"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(String, ForeignKey("matches.id"), nullable=False, index=True)

    home_win_probability = Column(Float, nullable=False)
    away_win_probability = Column(Float, nullable=False)
    draw_probability = Column(Float)  # None for sports without draws

    model_version = Column(String, nullable=False, default="ensemble_v2")
    confidence_score = Column(Float, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    match = relationship("Match", back_populates="prediction")

    __table_args__ = (UniqueConstraint("match_id", name="_prediction_match_uc"),)


class MarketQuote(Base):
    """Best available bookmaker prices for a match (latest overwrites)"""

    __tablename__ = "market_quotes"

    match_id = Column(String, ForeignKey("matches.id"), primary_key=True)
    bookmaker = Column(String, nullable=False)
    home_odds = Column(Float, nullable=False)  # Decimal odds
    draw_odds = Column(Float)
    away_odds = Column(Float, nullable=False)
    fetched_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    match = relationship("Match", back_populates="quote")


class FetchCursor(Base):
    """Last fully successful fetch per external source (throttling state)"""

    __tablename__ = "fetch_cursors"

    source_key = Column(String, primary_key=True)  # e.g. "football:football-data", "odds:soccer_epl"
    last_fetched = Column(DateTime, nullable=False)


class TeamStats(Base):
    """Season aggregates recomputed after every rating rebuild"""

    __tablename__ = "team_stats"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    season = Column(String, nullable=False)
    matches_played = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    draws = Column(Integer)  # Draw-capable sports only
    losses = Column(Integer, nullable=False, default=0)
    score_for = Column(Integer, nullable=False, default=0)  # goals or points
    score_against = Column(Integer, nullable=False, default=0)
    form = Column(String)  # Last 5, newest first: "WWDLW"
    updated_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("team_id", "season", name="_team_season_uc"),)


class DataFetch(Base):
    """Track provider fetches for monitoring source health"""

    __tablename__ = "data_fetches"

    id = Column(Integer, primary_key=True, index=True)
    fetch_time = Column(DateTime, default=datetime.utcnow, index=True)
    data_source = Column(String, nullable=False, index=True)  # source key
    success = Column(Boolean, nullable=False)
    records_fetched = Column(Integer)
    error_message = Column(Text)
    response_time_ms = Column(Integer)


# Create all tables
def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    init_db()
    print("Database tables created")
