"""
Bookmaker team names → stored fixture names.

The Odds API and the fixture providers spell clubs differently
("Brighton and Hove Albion" vs "Brighton & Hove Albion FC").  Names are
first normalised (case, club-type affixes, punctuation), then compared by
equality, containment, and finally a rapidfuzz token-set score.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Iterable, Optional

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

#: Minimum token_set_ratio for two normalised names to count as the same team.
FUZZY_THRESHOLD: float = 90.0

#: An event and a fixture more than this far apart are different matches.
KICKOFF_TOLERANCE = timedelta(hours=4)

# Club-type affixes that providers add or drop at will
_AFFIXES = ("fc", "afc", "sc", "cf")

# Spellings that share too few tokens for the fuzzy scorer
_ALIASES: dict[str, str] = {
    "man utd": "manchester united",
    "man united": "manchester united",
    "man city": "manchester city",
    "spurs": "tottenham hotspur",
    "wolves": "wolverhampton wanderers",
    "nottm forest": "nottingham forest",
    "brighton and hove albion": "brighton & hove albion",
    "la clippers": "los angeles clippers",
    "la lakers": "los angeles lakers",
}


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, drop dots and hyphens, strip club-type affixes."""
    if not name:
        return ""
    n = name.lower().replace(".", "").replace("-", " ")
    n = re.sub(r"\s+", " ", n).strip()

    tokens = n.split(" ")
    while len(tokens) > 1 and tokens[-1] in _AFFIXES:
        tokens.pop()
    while len(tokens) > 1 and tokens[0] in _AFFIXES:
        tokens.pop(0)
    n = " ".join(tokens)

    return _ALIASES.get(n, n)


def names_match(a: Optional[str], b: Optional[str]) -> bool:
    """True when two provider spellings name the same team."""
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return False
    if na == nb or na in nb or nb in na:
        return True

    score = fuzz.token_set_ratio(na, nb)
    if score >= FUZZY_THRESHOLD:
        logger.debug("Fuzzy matched '%s' to '%s' with score %.0f", a, b, score)
        return True
    return False


def find_fixture(
    fixtures: Iterable,
    home_name: str,
    away_name: str,
    commence_time: datetime,
    tolerance: timedelta = KICKOFF_TOLERANCE,
):
    """
    First fixture whose kick-off is within ``tolerance`` of
    ``commence_time`` and whose home and away names both match.

    ``fixtures`` are Match rows (anything with ``match_date``,
    ``home_team_name`` and ``away_team_name``).
    """
    for fixture in fixtures:
        if fixture.match_date is None:
            continue
        if abs(fixture.match_date - commence_time) > tolerance:
            continue
        if names_match(fixture.home_team_name, home_name) and names_match(
            fixture.away_team_name, away_name
        ):
            return fixture
    return None
