"""Tests for bookmaker → fixture name matching."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from oddsforge.services.team_mapping import find_fixture, names_match, normalize_name

KICKOFF = datetime(2025, 11, 8, 15, 0)


@pytest.mark.parametrize("raw, expected", [
    ("Arsenal FC", "arsenal"),
    ("AFC Bournemouth", "bournemouth"),
    ("St. Louis City SC", "st louis city"),
    ("Paris Saint-Germain", "paris saint germain"),
    ("  Man   Utd ", "manchester united"),
    ("FC", "fc"),
    (None, ""),
])
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


@pytest.mark.parametrize("a, b", [
    ("Arsenal FC", "Arsenal"),
    ("Brighton and Hove Albion", "Brighton & Hove Albion FC"),
    ("Wolves", "Wolverhampton Wanderers FC"),
    ("LA Clippers", "Los Angeles Clippers"),
    ("Tottenham Hotspur", "Tottenham Hotspur FC"),
    ("Nottingham Forest", "Nottingham Forest FC"),
])
def test_names_match(a, b):
    assert names_match(a, b)
    assert names_match(b, a)


@pytest.mark.parametrize("a, b", [
    ("Manchester United", "Manchester City"),
    ("Arsenal", "Chelsea"),
    ("", "Arsenal"),
    (None, None),
])
def test_names_do_not_match(a, b):
    assert not names_match(a, b)


def _fixture(home, away, date):
    fixture = MagicMock()
    fixture.home_team_name = home
    fixture.away_team_name = away
    fixture.match_date = date
    return fixture


class TestFindFixture:

    def test_within_window(self):
        target = _fixture("Arsenal FC", "Chelsea FC", KICKOFF)
        fixtures = [_fixture("Liverpool FC", "Everton FC", KICKOFF), target]
        assert find_fixture(fixtures, "Arsenal", "Chelsea", KICKOFF + timedelta(hours=3)) is target

    def test_outside_window(self):
        fixtures = [_fixture("Arsenal FC", "Chelsea FC", KICKOFF)]
        assert find_fixture(fixtures, "Arsenal", "Chelsea", KICKOFF + timedelta(hours=5)) is None

    def test_reversed_sides_do_not_match(self):
        fixtures = [_fixture("Arsenal FC", "Chelsea FC", KICKOFF)]
        assert find_fixture(fixtures, "Chelsea", "Arsenal", KICKOFF) is None

    def test_undated_fixture_skipped(self):
        fixtures = [_fixture("Arsenal FC", "Chelsea FC", None)]
        assert find_fixture(fixtures, "Arsenal", "Chelsea", KICKOFF) is None
