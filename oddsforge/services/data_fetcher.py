"""
Fixture and result ingestion from provider APIs.

Sources
-------
football-data.org v4 (X-Auth-Token)  — EPL (2021) and Champions League (2001)
balldontlie.io v1 (Authorization)    — NBA teams and games, cursor-paginated

Each source exposes two refreshes for the orchestrator:

  fetch_status(db)  cheap: fixtures and results around today
  fetch_roster(db)  teams of every configured competition

Every HTTP call goes through :func:`call_with_backoff`: 429, 5xx and
connection errors are retried with exponential backoff; any other 4xx fails
at once.  Successive calls to the same provider are spaced by
``SOURCE_CALL_DELAY_SECONDS``.  A source that gives up raises
:class:`UpstreamUnavailable`; nothing it fetched in that run is committed.

Team and match upserts are idempotent.  Ratings are never written here.
"""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oddsforge.core.errors import DataInconsistency, UpstreamUnavailable
from oddsforge.core.sport_config import SPORT_BASKETBALL, SPORT_FOOTBALL
from oddsforge.models import STATUS_FINISHED, STATUS_LIVE, STATUS_SCHEDULED
from oddsforge.services.repository import get_team, record_fetch, upsert_match, upsert_team
from oddsforge.services.retry import RetryConfig, call_with_backoff

load_dotenv()

logger = logging.getLogger(__name__)

FOOTBALL_DATA_URL = "https://api.football-data.org/v4"
BALLDONTLIE_URL = "https://api.balldontlie.io/v1"

SOURCE_CALL_DELAY_SECONDS = float(os.getenv("SOURCE_CALL_DELAY_SECONDS", "6"))
LOOKAHEAD_DAYS = int(os.getenv("LOOKAHEAD_DAYS", "3"))
NBA_SEASON = int(os.getenv("NBA_SEASON", "2025"))

#: Finished results older than this are not re-requested by the status refresh.
RESULTS_LOOKBACK_DAYS = 7

REQUEST_TIMEOUT = 20

_STATUS_MAP = {
    "scheduled": STATUS_SCHEDULED,
    "timed": STATUS_SCHEDULED,
    "in_play": STATUS_LIVE,
    "paused": STATUS_LIVE,
    "live": STATUS_LIVE,
    "finished": STATUS_FINISHED,
    "final": STATUS_FINISHED,
}


def normalize_status(raw: Optional[str], home_score=None, away_score=None) -> str:
    """Map a provider status string onto scheduled / live / finished."""
    key = (raw or "").strip().lower().replace(" ", "_")
    if key in _STATUS_MAP:
        return _STATUS_MAP[key]
    if key.startswith("final"):  # "Final/OT"
        return STATUS_FINISHED
    if home_score is not None and away_score is not None:
        return STATUS_FINISHED
    return STATUS_SCHEDULED


def parse_datetime(value: Optional[str]) -> datetime:
    """ISO-8601 (``Z`` or offset) or bare date → naive UTC datetime.

    Raises:
        DataInconsistency: the value is missing or not a date.
    """
    if not value:
        raise DataInconsistency("missing date")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise DataInconsistency(f"malformed date {value!r}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _should_retry(response: requests.Response) -> bool:
    return response.status_code == 429 or response.status_code >= 500


def _as_score(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DataInconsistency(f"non-numeric score {value!r}")


# ---------------------------------------------------------------------------
# Base source
# ---------------------------------------------------------------------------

class Source:
    """
    One quota-limited provider feeding one sport.

    Subclasses set ``key``/``sport``/``base_url`` and implement
    ``_fetch_status`` and (if ``has_roster``) ``_fetch_roster``; both return
    the number of records upserted.
    """

    key: str = ""
    sport: str = ""
    base_url: str = ""
    has_roster: bool = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        retry_config: Optional[RetryConfig] = None,
        call_delay: float = SOURCE_CALL_DELAY_SECONDS,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.retry_config = retry_config or RetryConfig()
        self.call_delay = call_delay
        self.sleep = sleep
        self.last_call: Optional[float] = None
        self.last_headers: Dict[str, str] = {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.key}>"

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {}

    # -----------------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------------

    def _pace(self) -> None:
        """Keep successive calls to this provider ``call_delay`` apart."""
        if self.last_call is None or self.call_delay <= 0:
            return
        wait = self.call_delay - (time.monotonic() - self.last_call)
        if wait > 0:
            self.sleep(wait)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"

        def attempt() -> requests.Response:
            self._pace()
            try:
                return self.session.get(
                    url, headers=self._headers(), params=params, timeout=REQUEST_TIMEOUT
                )
            finally:
                self.last_call = time.monotonic()

        try:
            outcome = call_with_backoff(
                attempt,
                should_retry=_should_retry,
                config=self.retry_config,
                sleep=self.sleep,
                label=f"{self.key} GET {path}",
            )
        except requests.RequestException as exc:
            raise UpstreamUnavailable(
                self.key, f"GET {path} failed: {type(exc).__name__}: {exc}"
            ) from exc
        if outcome.exhausted:
            raise UpstreamUnavailable(
                self.key, f"GET {path} gave up: {outcome.error}", attempts=outcome.attempts
            )

        response = outcome.value
        self.last_headers = response.headers
        if response.status_code >= 400:
            raise UpstreamUnavailable(
                self.key,
                f"GET {path} failed: HTTP {response.status_code}",
                attempts=outcome.attempts,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(self.key, f"GET {path}: invalid JSON") from exc

    # -----------------------------------------------------------------------
    # Refreshes
    # -----------------------------------------------------------------------

    def fetch_status(self, db: Session, full: bool = False) -> int:
        """Refresh fixtures and results.  ``full`` requests the whole season."""
        return self._run(db, "status", lambda: self._fetch_status(db, full))

    def fetch_roster(self, db: Session) -> int:
        if not self.has_roster:
            return 0
        return self._run(db, "roster", lambda: self._fetch_roster(db))

    def _fetch_status(self, db: Session, full: bool) -> int:
        raise NotImplementedError

    def _fetch_roster(self, db: Session) -> int:
        raise NotImplementedError

    def _run(self, db: Session, kind: str, work: Callable[[], int]) -> int:
        """Run one refresh, commit it, and leave a DataFetch audit row either way."""
        label = f"{self.key}/{kind}"
        if not self.configured:
            raise UpstreamUnavailable(self.key, "API key not set")

        started = time.monotonic()
        try:
            records = work()
        except UpstreamUnavailable as exc:
            db.rollback()
            record_fetch(
                db, label, success=False, error=str(exc),
                response_time_ms=int((time.monotonic() - started) * 1000),
            )
            db.commit()
            logger.error("%s failed: %s", label, exc)
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception("%s: database error, fetch discarded", label)
            raise

        record_fetch(
            db, label, success=True, records=records,
            response_time_ms=int((time.monotonic() - started) * 1000),
        )
        db.commit()
        logger.info("%s: %d records upserted", label, records)
        return records

    # -----------------------------------------------------------------------
    # Upsert helpers
    # -----------------------------------------------------------------------

    def _ensure_team(self, db: Session, team_id: str, name: str, league: str) -> None:
        if get_team(db, team_id) is None:
            upsert_team(db, team_id, name, self.sport, league)


# ---------------------------------------------------------------------------
# football-data.org
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Competition:
    code: str
    league: str
    prefix: str


FOOTBALL_COMPETITIONS = (
    Competition("2021", "EPL", "epl"),
    Competition("2001", "Champions League", "ucl"),
)


class FootballDataSource(Source):
    """football-data.org competitions (EPL, Champions League)."""

    key = "football:football-data"
    sport = SPORT_FOOTBALL
    base_url = FOOTBALL_DATA_URL

    def __init__(self, api_key: Optional[str] = None, competitions=FOOTBALL_COMPETITIONS, **kwargs):
        super().__init__(api_key or os.getenv("FOOTBALL_DATA_API_KEY"), **kwargs)
        self.competitions = tuple(competitions)

    def _headers(self) -> Dict[str, str]:
        return {"X-Auth-Token": self.api_key}

    def _fetch_roster(self, db: Session) -> int:
        count = 0
        for comp in self.competitions:
            data = self._get(f"/competitions/{comp.code}/teams")
            for team in data.get("teams", []):
                if team.get("id") is None or not team.get("name"):
                    logger.warning("%s: team without id/name skipped: %r", self.key, team)
                    continue
                upsert_team(
                    db,
                    f"{comp.prefix}_{team['id']}",
                    team["name"],
                    self.sport,
                    comp.league,
                    logo_url=team.get("crest"),
                )
                count += 1
        return count

    def _fetch_status(self, db: Session, full: bool) -> int:
        params = None
        if not full:
            today = datetime.utcnow().date()
            params = {
                "dateFrom": (today - timedelta(days=RESULTS_LOOKBACK_DAYS)).isoformat(),
                "dateTo": (today + timedelta(days=LOOKAHEAD_DAYS)).isoformat(),
            }

        count = 0
        for comp in self.competitions:
            data = self._get(f"/competitions/{comp.code}/matches", params=params)
            for raw in data.get("matches", []):
                try:
                    self._upsert_match(db, comp, raw)
                except DataInconsistency as exc:
                    logger.warning("%s: match %s skipped: %s", self.key, raw.get("id"), exc)
                    continue
                count += 1
        return count

    def _upsert_match(self, db: Session, comp: Competition, raw: Dict) -> None:
        home = raw.get("homeTeam") or {}
        away = raw.get("awayTeam") or {}
        if home.get("id") is None or away.get("id") is None:
            raise DataInconsistency("participants not decided yet")

        full_time = (raw.get("score") or {}).get("fullTime") or {}
        home_score = _as_score(full_time.get("home"))
        away_score = _as_score(full_time.get("away"))

        home_id = f"{comp.prefix}_{home['id']}"
        away_id = f"{comp.prefix}_{away['id']}"
        self._ensure_team(db, home_id, home.get("name") or home_id, comp.league)
        self._ensure_team(db, away_id, away.get("name") or away_id, comp.league)

        upsert_match(
            db,
            id=f"{comp.prefix}_{raw['id']}",
            home_team_id=home_id,
            away_team_id=away_id,
            home_team_name=home.get("name") or home_id,
            away_team_name=away.get("name") or away_id,
            sport=self.sport,
            league=comp.league,
            match_date=parse_datetime(raw.get("utcDate")),
            status=normalize_status(raw.get("status"), home_score, away_score),
            home_score=home_score,
            away_score=away_score,
        )


# ---------------------------------------------------------------------------
# balldontlie.io
# ---------------------------------------------------------------------------

class BallDontLieSource(Source):
    """balldontlie.io NBA teams and games."""

    key = "basketball:balldontlie"
    sport = SPORT_BASKETBALL
    base_url = BALLDONTLIE_URL
    league = "NBA"
    per_page = 100

    def __init__(self, api_key: Optional[str] = None, season: int = NBA_SEASON, **kwargs):
        super().__init__(api_key or os.getenv("BALLDONTLIE_API_KEY"), **kwargs)
        self.season = season

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": self.api_key}

    def _paginate(self, path: str, params: Dict[str, Any]) -> List[Dict]:
        """Follow ``meta.next_cursor`` until the provider stops returning one."""
        rows: List[Dict] = []
        cursor = None
        while True:
            page_params = dict(params, per_page=self.per_page)
            if cursor is not None:
                page_params["cursor"] = cursor
            data = self._get(path, params=page_params)
            rows.extend(data.get("data", []))
            cursor = (data.get("meta") or {}).get("next_cursor")
            if cursor is None:
                return rows

    def _fetch_roster(self, db: Session) -> int:
        data = self._get("/teams")
        count = 0
        for team in data.get("data", []):
            if team.get("id") is None:
                continue
            name = team.get("full_name") or team.get("name")
            upsert_team(db, f"nba_{team['id']}", name, self.sport, self.league)
            count += 1
        return count

    def _fetch_status(self, db: Session, full: bool) -> int:
        if full:
            params: Dict[str, Any] = {"seasons[]": self.season}
        else:
            today = datetime.utcnow().date()
            params = {
                "start_date": (today - timedelta(days=RESULTS_LOOKBACK_DAYS)).isoformat(),
                "end_date": (today + timedelta(days=LOOKAHEAD_DAYS)).isoformat(),
            }

        count = 0
        for game in self._paginate("/games", params):
            try:
                self._upsert_game(db, game)
            except DataInconsistency as exc:
                logger.warning("%s: game %s skipped: %s", self.key, game.get("id"), exc)
                continue
            count += 1
        return count

    def _upsert_game(self, db: Session, game: Dict) -> None:
        home = game.get("home_team") or {}
        visitor = game.get("visitor_team") or {}
        if home.get("id") is None or visitor.get("id") is None:
            raise DataInconsistency("missing team")

        raw_status = game.get("status") or ""
        if not raw_status.lower().startswith("final"):
            # Scheduled games carry their tip-off time as the status text
            raw_status = "live" if game.get("period") else "scheduled"

        home_score = _as_score(game.get("home_team_score"))
        away_score = _as_score(game.get("visitor_team_score"))

        home_id = f"nba_{home['id']}"
        away_id = f"nba_{visitor['id']}"
        home_name = home.get("full_name") or home.get("name") or home_id
        away_name = visitor.get("full_name") or visitor.get("name") or away_id
        self._ensure_team(db, home_id, home_name, self.league)
        self._ensure_team(db, away_id, away_name, self.league)

        upsert_match(
            db,
            id=f"nba_{game['id']}",
            home_team_id=home_id,
            away_team_id=away_id,
            home_team_name=home_name,
            away_team_name=away_name,
            sport=self.sport,
            league=self.league,
            match_date=parse_datetime(game.get("datetime") or game.get("date")),
            status=normalize_status(raw_status, home_score, away_score),
            home_score=home_score,
            away_score=away_score,
        )


def default_sources(**kwargs) -> List[Source]:
    return [FootballDataSource(**kwargs), BallDontLieSource(**kwargs)]
