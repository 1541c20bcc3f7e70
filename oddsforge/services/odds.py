"""
The Odds API integration for head-to-head decimal prices.
https://the-odds-api.com/

Credit budget
-------------
The free tier allows 500 requests a month.  Each odds source spends one
request per refresh, and the orchestrator refreshes it at most every
``ODDS_MIN_INTERVAL_HOURS`` (12 h) and only while the sport has a scheduled
match within the lookahead window.  Two sports at two calls a day stay
well under the cap.

Best price per event
--------------------
Sharp books are tried first, in :data:`PRIORITY_BOOKS` order; the first
with a usable h2h market wins.  Otherwise the bookmaker with the lowest
overround is taken.  A market is usable when both the home and away price
are above 1.0.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oddsforge.core.errors import DataInconsistency
from oddsforge.core.odds_math import overround
from oddsforge.core.sport_config import SportConfig
from oddsforge.services.data_fetcher import Source, parse_datetime
from oddsforge.services.repository import get_scheduled_matches, upsert_market_quote
from oddsforge.services.team_mapping import find_fixture, names_match

load_dotenv()

logger = logging.getLogger(__name__)

API_KEY = os.getenv("THE_ODDS_API_KEY")
BASE_URL = "https://api.the-odds-api.com/v4"

# Exchange and low-margin books whose prices are closest to the true market
PRIORITY_BOOKS: Tuple[str, ...] = (
    "pinnacle",
    "betfair_ex_eu",
    "betfair_ex_uk",
    "williamhill",
    "bet365",
)


@dataclass
class BestOdds:
    bookmaker: str
    home_odds: float
    draw_odds: Optional[float]
    away_odds: float

    @property
    def overround(self) -> float:
        return overround((self.home_odds, self.draw_odds, self.away_odds))


def extract_h2h(bookmaker: Dict, home_team: str, away_team: str) -> Optional[BestOdds]:
    """Prices from one bookmaker's h2h market, or None if unusable."""
    market = next(
        (m for m in bookmaker.get("markets", []) if m.get("key") == "h2h"), None
    )
    if market is None:
        return None

    home_price = draw_price = away_price = None
    for outcome in market.get("outcomes", []):
        name = outcome.get("name") or ""
        price = outcome.get("price")
        if name.lower() == "draw":
            draw_price = price
        elif home_price is None and names_match(name, home_team):
            home_price = price
        elif away_price is None and names_match(name, away_team):
            away_price = price

    if home_price is None or away_price is None:
        return None
    if home_price <= 1.0 or away_price <= 1.0:
        return None
    return BestOdds(
        bookmaker=bookmaker.get("title") or bookmaker.get("key", ""),
        home_odds=float(home_price),
        draw_odds=float(draw_price) if draw_price is not None else None,
        away_odds=float(away_price),
    )


def best_odds(event: Dict) -> Optional[BestOdds]:
    """Priority book if one quotes the event, else the lowest-overround book."""
    home_team = event.get("home_team", "")
    away_team = event.get("away_team", "")
    books = event.get("bookmakers", [])

    by_key = {(b.get("key") or "").lower(): b for b in books}
    for key in PRIORITY_BOOKS:
        if key in by_key:
            odds = extract_h2h(by_key[key], home_team, away_team)
            if odds is not None:
                return odds

    candidates = [
        odds
        for odds in (extract_h2h(b, home_team, away_team) for b in books)
        if odds is not None
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda o: o.overround)


class OddsAPIClient(Source):
    """Client for The Odds API, one instance per sport.

    Runs as an orchestrator source: ``fetch_status`` pulls the sport's h2h
    prices and overwrites the stored quote of every fixture it can match.
    There is no roster refresh.
    """

    base_url = BASE_URL
    has_roster = False

    def __init__(self, config: SportConfig, api_key: Optional[str] = None, **kwargs):
        if not config.odds_api_sport_key:
            raise ValueError(f"no Odds API sport key for {config.sport_id!r}")
        super().__init__(api_key or API_KEY, **kwargs)
        self.config = config
        self.sport = config.sport_id
        self.sport_key = config.odds_api_sport_key
        self.region = config.odds_api_region
        self.key = f"odds:{self.sport_key}"

    def get_odds(self, markets: str = "h2h", odds_format: str = "decimal") -> List[Dict]:
        """
        Fetch current odds for this sport.

        Returns the raw event list; raises UpstreamUnavailable on failure.
        """
        params = {
            "apiKey": self.api_key,
            "regions": self.region,
            "markets": markets,
            "oddsFormat": odds_format,
            "dateFormat": "iso",
        }
        data = self._get(f"/sports/{self.sport_key}/odds", params=params)
        events = data if isinstance(data, list) else []

        logger.info(
            "Odds API: %d %s events fetched. Quota: %s used, %s remaining",
            len(events), self.sport_key,
            self.last_headers.get("x-requests-used"),
            self.last_headers.get("x-requests-remaining"),
        )
        return events

    def _fetch_status(self, db: Session, full: bool) -> int:
        events = self.get_odds()
        if not events:
            return 0

        fixtures = get_scheduled_matches(db, sport=self.sport)
        stored = 0
        for event in events:
            odds = best_odds(event)
            if odds is None:
                continue
            try:
                commence = parse_datetime(event.get("commence_time"))
            except DataInconsistency as exc:
                logger.warning("Odds: event %s skipped: %s", event.get("id"), exc)
                continue

            fixture = find_fixture(
                fixtures, event.get("home_team"), event.get("away_team"), commence
            )
            if fixture is None:
                logger.debug(
                    "Odds: no fixture for %s vs %s at %s",
                    event.get("home_team"), event.get("away_team"), commence,
                )
                continue

            try:
                with db.begin_nested():
                    upsert_market_quote(
                        db,
                        fixture.id,
                        odds.bookmaker,
                        odds.home_odds,
                        odds.draw_odds,
                        odds.away_odds,
                    )
            except SQLAlchemyError as exc:
                logger.error("Odds upsert failed for match %s: %s", fixture.id, exc)
                continue
            stored += 1

        logger.info("Odds: %d %s quotes stored", stored, self.sport_key)
        return stored


def default_odds_sources(**kwargs) -> List[OddsAPIClient]:
    return [
        OddsAPIClient(SportConfig.football(), **kwargs),
        OddsAPIClient(SportConfig.basketball(), **kwargs),
    ]
