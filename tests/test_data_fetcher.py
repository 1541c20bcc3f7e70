"""Tests for the fixture/result provider sources."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from oddsforge.core.errors import DataInconsistency, UpstreamUnavailable
from oddsforge.models import STATUS_FINISHED, STATUS_LIVE, STATUS_SCHEDULED, DataFetch, Match, Team
from oddsforge.services.data_fetcher import (
    BallDontLieSource,
    Competition,
    FootballDataSource,
    normalize_status,
    parse_datetime,
)

EPL_ONLY = (Competition("2021", "EPL", "epl"),)


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = {}
    resp.json.return_value = payload if payload is not None else {}
    return resp


def _football_source(*responses):
    session = MagicMock()
    session.get.side_effect = list(responses)
    source = FootballDataSource(
        api_key="test-key",
        competitions=EPL_ONLY,
        session=session,
        call_delay=0,
        sleep=MagicMock(),
    )
    return source, session


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw, scores, expected", [
    ("SCHEDULED", (None, None), STATUS_SCHEDULED),
    ("TIMED", (None, None), STATUS_SCHEDULED),
    ("IN_PLAY", (1, 0), STATUS_LIVE),
    ("PAUSED", (0, 0), STATUS_LIVE),
    ("FINISHED", (2, 1), STATUS_FINISHED),
    ("Final", (101, 99), STATUS_FINISHED),
    ("Final/OT", (110, 108), STATUS_FINISHED),
    ("POSTPONED", (None, None), STATUS_SCHEDULED),
    ("AWARDED", (3, 0), STATUS_FINISHED),
    (None, (None, None), STATUS_SCHEDULED),
])
def test_normalize_status(raw, scores, expected):
    assert normalize_status(raw, *scores) == expected


@pytest.mark.parametrize("raw, expected", [
    ("2025-11-08T15:00:00Z", datetime(2025, 11, 8, 15, 0)),
    ("2025-11-08T16:00:00+01:00", datetime(2025, 11, 8, 15, 0)),
    ("2025-11-08", datetime(2025, 11, 8)),
])
def test_parse_datetime(raw, expected):
    assert parse_datetime(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "next tuesday"])
def test_parse_datetime_rejects_bad_values(raw):
    with pytest.raises(DataInconsistency):
        parse_datetime(raw)


# ---------------------------------------------------------------------------
# football-data.org
# ---------------------------------------------------------------------------

MATCHES_PAYLOAD = {
    "matches": [
        {
            "id": 1000,
            "utcDate": "2025-10-25T14:00:00Z",
            "status": "FINISHED",
            "homeTeam": {"id": 57, "name": "Arsenal FC"},
            "awayTeam": {"id": 61, "name": "Chelsea FC"},
            "score": {"fullTime": {"home": 2, "away": 1}},
        },
        {
            "id": 1001,
            "utcDate": "2025-11-08T15:00:00Z",
            "status": "TIMED",
            "homeTeam": {"id": 61, "name": "Chelsea FC"},
            "awayTeam": {"id": 64, "name": "Liverpool FC"},
            "score": {"fullTime": {"home": None, "away": None}},
        },
        {
            # knockout tie with undecided participants
            "id": 1002,
            "utcDate": "2026-05-30T19:00:00Z",
            "status": "SCHEDULED",
            "homeTeam": {"id": None, "name": None},
            "awayTeam": {"id": None, "name": None},
            "score": {"fullTime": {"home": None, "away": None}},
        },
    ]
}


class TestFootballDataSource:

    def test_roster_prefixes_team_ids(self, db):
        source, session = _football_source(_response(payload={"teams": [
            {"id": 57, "name": "Arsenal FC", "crest": "https://crests/57.png"},
            {"id": 61, "name": "Chelsea FC"},
            {"id": None, "name": "Broken"},
        ]}))
        assert source.fetch_roster(db) == 2

        arsenal = db.get(Team, "epl_57")
        assert arsenal.name == "Arsenal FC"
        assert arsenal.league == "EPL"
        assert arsenal.logo_url == "https://crests/57.png"
        assert arsenal.rating == 1200.0
        assert session.get.call_args.kwargs["headers"] == {"X-Auth-Token": "test-key"}

    def test_status_upserts_matches_and_skips_undecided(self, db):
        source, session = _football_source(_response(payload=MATCHES_PAYLOAD))
        assert source.fetch_status(db, full=True) == 2

        finished = db.get(Match, "epl_1000")
        assert finished.status == STATUS_FINISHED
        assert (finished.home_score, finished.away_score) == (2, 1)
        assert finished.match_date == datetime(2025, 10, 25, 14, 0)

        upcoming = db.get(Match, "epl_1001")
        assert upcoming.status == STATUS_SCHEDULED
        assert upcoming.home_score is None
        assert db.get(Match, "epl_1002") is None
        # teams seen only in fixtures are created
        assert db.get(Team, "epl_64").name == "Liverpool FC"
        assert session.get.call_args.kwargs["params"] is None

    def test_status_window_params(self, db):
        source, session = _football_source(_response(payload={"matches": []}))
        source.fetch_status(db)
        params = session.get.call_args.kwargs["params"]
        assert set(params) == {"dateFrom", "dateTo"}
        assert params["dateFrom"] < params["dateTo"]

    def test_status_is_idempotent(self, db):
        source, _ = _football_source(
            _response(payload=MATCHES_PAYLOAD), _response(payload=MATCHES_PAYLOAD)
        )
        source.fetch_status(db, full=True)
        source.fetch_status(db, full=True)
        assert db.query(Match).count() == 2

    def test_throttled_call_is_retried(self, db):
        source, session = _football_source(
            _response(429), _response(payload={"teams": [{"id": 57, "name": "Arsenal FC"}]})
        )
        assert source.fetch_roster(db) == 1
        assert session.get.call_count == 2
        source.sleep.assert_called_once()

    def test_forbidden_fails_immediately_and_is_audited(self, db):
        source, session = _football_source(_response(403))
        with pytest.raises(UpstreamUnavailable):
            source.fetch_roster(db)
        assert session.get.call_count == 1

        audit = db.query(DataFetch).one()
        assert audit.data_source == "football:football-data/roster"
        assert audit.success is False
        assert "403" in audit.error_message

    def test_exhausted_retries_write_nothing(self, db):
        source, session = _football_source(_response(503), _response(503), _response(503))
        with pytest.raises(UpstreamUnavailable) as excinfo:
            source.fetch_status(db, full=True)
        assert excinfo.value.attempts == 3
        assert db.query(Match).count() == 0

    def test_invalid_json_is_upstream_failure(self, db):
        bad = _response()
        bad.json.side_effect = ValueError("Expecting value")
        source, _ = _football_source(bad)
        with pytest.raises(UpstreamUnavailable):
            source.fetch_roster(db)

    def test_transport_error_is_upstream_failure(self, db):
        source, session = _football_source(requests.exceptions.TooManyRedirects("loop"))
        with pytest.raises(UpstreamUnavailable, match="TooManyRedirects"):
            source.fetch_status(db, full=True)
        assert session.get.call_count == 1
        audit = db.query(DataFetch).one()
        assert audit.success is False

    def test_dropped_connection_is_retried(self, db):
        source, session = _football_source(
            requests.exceptions.ChunkedEncodingError("connection broken"),
            _response(payload=MATCHES_PAYLOAD),
        )
        assert source.fetch_status(db, full=True) == 2
        assert session.get.call_count == 2

    def test_success_is_audited(self, db):
        source, _ = _football_source(_response(payload=MATCHES_PAYLOAD))
        source.fetch_status(db, full=True)
        audit = db.query(DataFetch).one()
        assert audit.success is True
        assert audit.records_fetched == 2

    def test_unconfigured_source_refuses(self, db, monkeypatch):
        monkeypatch.delenv("FOOTBALL_DATA_API_KEY", raising=False)
        source = FootballDataSource(session=MagicMock(), call_delay=0)
        assert not source.configured
        with pytest.raises(UpstreamUnavailable):
            source.fetch_status(db)
        source.session.get.assert_not_called()


# ---------------------------------------------------------------------------
# balldontlie.io
# ---------------------------------------------------------------------------

def _game(game_id, status, home_score, away_score, period=0):
    return {
        "id": game_id,
        "date": "2025-11-08",
        "datetime": "2025-11-09T00:30:00Z",
        "status": status,
        "period": period,
        "home_team": {"id": 2, "full_name": "Boston Celtics"},
        "visitor_team": {"id": 20, "full_name": "New York Knicks"},
        "home_team_score": home_score,
        "visitor_team_score": away_score,
    }


class TestBallDontLieSource:

    def _source(self, *responses):
        session = MagicMock()
        session.get.side_effect = list(responses)
        return BallDontLieSource(
            api_key="bdl-key", session=session, call_delay=0, sleep=MagicMock()
        ), session

    def test_pagination_follows_cursor(self, db):
        source, session = self._source(
            _response(payload={"data": [_game(1, "Final", 112, 104, 4)], "meta": {"next_cursor": 5}}),
            _response(payload={"data": [_game(2, "2025-11-09T00:30:00Z", 0, 0)], "meta": {}}),
        )
        assert source.fetch_status(db, full=True) == 2

        first_params = session.get.call_args_list[0].kwargs["params"]
        second_params = session.get.call_args_list[1].kwargs["params"]
        assert "cursor" not in first_params
        assert second_params["cursor"] == 5
        assert second_params["seasons[]"] == source.season
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "bdl-key"}

        final = db.get(Match, "nba_1")
        assert final.status == STATUS_FINISHED
        assert (final.home_score, final.away_score) == (112, 104)
        assert final.match_date == datetime(2025, 11, 9, 0, 30)

        upcoming = db.get(Match, "nba_2")
        assert upcoming.status == STATUS_SCHEDULED
        assert upcoming.home_score is None

    def test_in_progress_game_is_live(self, db):
        source, _ = self._source(
            _response(payload={"data": [_game(3, "3rd Qtr", 70, 68, period=3)], "meta": {}})
        )
        source.fetch_status(db, full=True)
        assert db.get(Match, "nba_3").status == STATUS_LIVE

    def test_roster(self, db):
        source, _ = self._source(_response(payload={"data": [
            {"id": 2, "full_name": "Boston Celtics", "name": "Celtics"},
            {"id": 20, "full_name": "New York Knicks", "name": "Knicks"},
        ]}))
        assert source.fetch_roster(db) == 2
        celtics = db.get(Team, "nba_2")
        assert celtics.sport == "basketball"
        assert celtics.league == "NBA"
