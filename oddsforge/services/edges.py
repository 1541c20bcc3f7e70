"""
Market edge detector.

Compares the stored ensemble prediction for each upcoming match with the
devigged bookmaker quote for the same match and reports the matches where
the model rates some outcome clearly more likely than the market does.

Only matches that carry **both** a Prediction and a MarketQuote are
considered.  A match without a live quote is excluded; the detector never
manufactures a quote from the model's own probabilities.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from oddsforge.core.odds_math import devig, fair_odds, outcome_edges, overround
from oddsforge.models import STATUS_SCHEDULED, MarketQuote, Match, Prediction

logger = logging.getLogger(__name__)

EDGE_THRESHOLD = float(os.getenv("EDGE_THRESHOLD", "0.03"))

OUTCOME_HOME = "home"
OUTCOME_DRAW = "draw"
OUTCOME_AWAY = "away"
OUTCOMES = (OUTCOME_HOME, OUTCOME_DRAW, OUTCOME_AWAY)

# (home, draw, away): the leg order used by every tuple below
Legs = Tuple[Optional[float], Optional[float], Optional[float]]


@dataclass
class MarketEdge:
    """One mispriced match, with everything needed to act on it."""
    match_id: str
    home_team: str
    away_team: str
    sport: str
    match_date: datetime
    bookmaker: str

    odds: Legs
    market_probs: Legs
    model_probs: Legs
    edges: Legs

    best_outcome: str
    edge: float
    overround: float
    fetched_at: Optional[datetime] = None

    @property
    def best_odds(self) -> Optional[float]:
        return self.odds[OUTCOMES.index(self.best_outcome)]

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "sport": self.sport,
            "match_date": self.match_date.isoformat() if self.match_date else None,
            "bookmaker": self.bookmaker,
            "odds": dict(zip(OUTCOMES, self.odds)),
            "market_probs": dict(zip(OUTCOMES, self.market_probs)),
            "model_probs": dict(zip(OUTCOMES, self.model_probs)),
            "fair_odds": {
                outcome: fair_odds(p) if p is not None else None
                for outcome, p in zip(OUTCOMES, self.model_probs)
            },
            "edges": dict(zip(OUTCOMES, self.edges)),
            "best_outcome": self.best_outcome,
            "edge": self.edge,
            "overround": self.overround,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
        }


def find_edge(
    match: Match,
    prediction: Prediction,
    quote: MarketQuote,
    threshold: float = EDGE_THRESHOLD,
) -> Optional[MarketEdge]:
    """
    Edge for one match, or ``None`` if the largest edge is not above
    ``threshold``.

    Legs the bookmaker does not quote (the draw in two-way markets) and
    outcomes the model does not price are left out of the comparison.
    """
    odds: Legs = (quote.home_odds, quote.draw_odds, quote.away_odds)
    model: Legs = (
        prediction.home_win_probability,
        prediction.draw_probability,
        prediction.away_win_probability,
    )

    # A draw price against a two-way prediction would take mass the model
    # never assigns; compare like with like.
    if model[1] is None:
        odds = (odds[0], None, odds[2])

    market = tuple(devig(odds))
    edges = tuple(outcome_edges(model, market))

    scored = [(e, name) for e, name in zip(edges, OUTCOMES) if e is not None]
    if not scored:
        return None
    best_edge, best_outcome = max(scored, key=lambda pair: pair[0])
    if best_edge <= threshold:
        return None

    return MarketEdge(
        match_id=match.id,
        home_team=match.home_team_name,
        away_team=match.away_team_name,
        sport=match.sport,
        match_date=match.match_date,
        bookmaker=quote.bookmaker,
        odds=odds,
        market_probs=market,
        model_probs=model,
        edges=edges,
        best_outcome=best_outcome,
        edge=best_edge,
        overround=overround(odds),
        fetched_at=quote.fetched_at,
    )


def scan_edges(
    db: Session,
    threshold: float = EDGE_THRESHOLD,
    now: Optional[datetime] = None,
) -> List[MarketEdge]:
    """
    All upcoming scheduled matches whose best edge exceeds ``threshold``,
    sorted by descending edge.
    """
    now = now or datetime.utcnow()
    rows = (
        db.query(Match, Prediction, MarketQuote)
        .join(Prediction, Prediction.match_id == Match.id)
        .join(MarketQuote, MarketQuote.match_id == Match.id)
        .filter(Match.status == STATUS_SCHEDULED, Match.match_date > now)
        .all()
    )

    found: List[MarketEdge] = []
    for match, prediction, quote in rows:
        edge = find_edge(match, prediction, quote, threshold)
        if edge is not None:
            found.append(edge)
            logger.debug(
                "Edge %s vs %s: %s %.1f%% @ %s (%s)",
                edge.home_team, edge.away_team, edge.best_outcome,
                edge.edge * 100, edge.best_odds, edge.bookmaker,
            )

    found.sort(key=lambda e: e.edge, reverse=True)
    logger.info(
        "Edge scan: %d of %d quoted matches above %.1f%%",
        len(found), len(rows), threshold * 100,
    )
    return found
