"""Tests for the persistence helpers."""

from datetime import datetime, timedelta

import pytest

from oddsforge.core.errors import NotFound
from oddsforge.models import STATUS_FINISHED, STATUS_LIVE, STATUS_SCHEDULED, Prediction, Team
from oddsforge.services.ratings import RatingEngine
from oddsforge.services.repository import (
    count_unresolved,
    count_upcoming,
    get_head_to_head,
    get_last_finished_before,
    get_market_quote,
    get_match,
    get_prediction,
    get_rating_history,
    get_scheduled_matches,
    get_team_recent_matches,
    put_prediction,
    require_team,
    upsert_market_quote,
    upsert_match,
    upsert_team,
)

T0 = datetime(2025, 9, 1, 15, 0)


def test_require_team_raises_not_found(db):
    with pytest.raises(NotFound):
        require_team(db, "ghost")


def test_upsert_team_keeps_rating(db, make_team):
    make_team("ars", rating=1333.0)
    team = upsert_team(db, "ars", "Arsenal FC", "football", "EPL", logo_url="crest.png")
    assert team.rating == 1333.0
    assert team.name == "Arsenal FC"
    assert team.logo_url == "crest.png"


def test_upsert_match_drops_scores_unless_finished(db, make_team):
    make_team("ars")
    make_team("che")
    fields = dict(
        id="m1", home_team_id="ars", away_team_id="che",
        home_team_name="Arsenal", away_team_name="Chelsea",
        sport="football", league="EPL", match_date=T0,
    )
    upsert_match(db, status=STATUS_SCHEDULED, home_score=0, away_score=0, **fields)
    assert get_match(db, "m1").home_score is None

    upsert_match(db, status=STATUS_FINISHED, home_score=2, away_score=1, **fields)
    match = get_match(db, "m1")
    assert (match.status, match.home_score, match.away_score) == (STATUS_FINISHED, 2, 1)


def test_scheduled_window_and_upcoming_count(db, make_team, make_match):
    make_team("ars")
    make_team("che")
    make_match("soon", "ars", "che", T0 + timedelta(days=1))
    make_match("later", "che", "ars", T0 + timedelta(days=10))
    make_match("done", "ars", "che", T0 - timedelta(days=1), 1, 0)

    assert [m.id for m in get_scheduled_matches(db)] == ["soon", "later"]
    assert [m.id for m in get_scheduled_matches(db, until=T0 + timedelta(days=3))] == ["soon"]
    assert get_scheduled_matches(db, sport="basketball") == []
    assert count_upcoming(db, "football", T0, 3) == 1


def test_unresolved_counts_kicked_off_unfinished(db, make_team, make_match):
    make_team("ars")
    make_team("che")
    make_match("stale", "ars", "che", T0 - timedelta(hours=2))
    make_match("live", "che", "ars", T0 - timedelta(days=2), status=STATUS_LIVE)
    make_match("old", "ars", "che", T0 - timedelta(days=10))
    make_match("done", "che", "ars", T0 - timedelta(days=1), 1, 0)
    make_match("soon", "ars", "che", T0 + timedelta(days=1))

    assert count_unresolved(db, "football", T0, 7) == 2
    assert count_unresolved(db, "basketball", T0, 7) == 0


def test_recent_matches_by_venue(db, make_team, make_match):
    make_team("ars")
    make_team("che")
    make_match("a", "ars", "che", T0, 1, 0)
    make_match("b", "che", "ars", T0 + timedelta(days=1), 1, 0)
    make_match("c", "ars", "che", T0 + timedelta(days=2), 2, 2)

    assert [m.id for m in get_team_recent_matches(db, "ars", venue="home")] == ["c", "a"]
    assert [m.id for m in get_team_recent_matches(db, "ars", venue="away")] == ["b"]
    assert [m.id for m in get_team_recent_matches(db, "ars")] == ["c", "b", "a"]
    assert [m.id for m in get_head_to_head(db, "ars", "che", limit=2)] == ["c", "b"]
    assert get_last_finished_before(db, "che", T0 + timedelta(days=2)).id == "b"
    assert get_last_finished_before(db, "che", T0) is None


def test_prediction_and_quote_are_latest_only(db, make_team, make_match):
    make_team("ars")
    make_team("che")
    make_match("m1", "ars", "che", T0)
    for home in (0.5, 0.6):
        put_prediction(db, Prediction(
            match_id="m1",
            home_win_probability=home,
            away_win_probability=0.3,
            draw_probability=1 - home - 0.3,
            confidence_score=0.5,
        ))
        upsert_market_quote(db, "m1", "Pinnacle", 1 / home, 4.0, 3.3)
    db.commit()

    assert get_prediction(db, "m1").home_win_probability == 0.6
    assert db.query(Prediction).count() == 1
    assert get_market_quote(db, "m1").home_odds == pytest.approx(1 / 0.6)


def test_rating_history_in_date_order(db, make_team, make_match):
    make_team("ars")
    make_team("che")
    make_match("m2", "che", "ars", T0 + timedelta(days=7), 0, 1)
    make_match("m1", "ars", "che", T0, 2, 0)
    db.commit()

    RatingEngine().rebuild(db)
    history = get_rating_history(db, "ars")
    assert [p.match_id for p in history] == ["m1", "m2"]
    assert history[-1].rating == pytest.approx(db.get(Team, "ars").rating)

