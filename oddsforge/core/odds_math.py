"""Fundamental odds mathematics — the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services.

The pillars exposed are:

1. **Odds conversion** — decimal odds ↔ implied probability.
2. **Vig removal** — proportional normalisation of 2- or 3-leg markets.
3. **Edge** — model probability minus devigged market probability.

Design decisions
----------------
* All functions take **decimal** odds because the quotes collaborator
  requests ``oddsFormat=decimal`` from The Odds API.  A decimal price is
  the total payout per unit staked, so a fair coin flip is 2.0.
* Proportional normalisation is used rather than Shin because the engine
  compares against 1X2 football markets as well as two-way basketball
  markets, and the same rule must apply to both leg counts.  The devigged
  legs always sum to exactly one.
* Degenerate prices (``odds ≤ 1.0``) come from corrupt feeds: a price of
  1.0 promises no return at all.  Such a leg contributes zero implied
  probability instead of raising, so a single bad leg never drops the whole
  market.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

from typing import Final, List, Optional, Sequence

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Decimal-odds floor.  Prices at or below this return nothing on a win.
_MIN_DECIMAL_ODDS: Final[float] = 1.0

#: Price reported by :func:`fair_odds` for an outcome the model rules out.
_MAX_FAIR_ODDS: Final[float] = 1000.0


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def implied_prob(decimal_odds: Optional[float]) -> float:
    """Raw implied probability from decimal odds (vig-inclusive).

    Returns 0.0 for a missing or degenerate (``≤ 1.0``) price.

    Examples::

        implied_prob(2.00) → 0.5000
        implied_prob(3.50) → 0.2857
        implied_prob(1.00) → 0.0      (corrupt feed)
    """
    if decimal_odds is None or decimal_odds <= _MIN_DECIMAL_ODDS:
        return 0.0
    return 1.0 / decimal_odds


def fair_odds(probability: float) -> float:
    """Decimal price that exactly matches ``probability`` (no margin)."""
    if probability <= 0.0:
        return _MAX_FAIR_ODDS
    return 1.0 / probability


def overround(legs: Sequence[Optional[float]]) -> float:
    """Sum of raw implied probabilities across the available legs.

    A value above 1.0 is the bookmaker margin; e.g. 2.00 / 3.50 / 4.00
    gives ≈ 1.0357 (a 3.6 % book).
    """
    return sum(implied_prob(o) for o in legs if o is not None)


# ---------------------------------------------------------------------------
# Vig removal
# ---------------------------------------------------------------------------


def devig(legs: Sequence[Optional[float]]) -> List[Optional[float]]:
    """Remove the bookmaker margin by proportional normalisation.

    Args:
        legs: Decimal odds per outcome, e.g. ``[home, draw, away]``.  A
            ``None`` entry marks an outcome the bookmaker does not quote
            (the draw in a two-way market); it is excluded from the
            normalisation and returned as ``None``.

    Returns:
        True probabilities aligned with ``legs``.  The non-``None`` entries
        are non-negative and sum to 1.0.  If every available leg is
        degenerate the probability is split evenly across them.

    Examples::

        devig([2.00, 3.50, 4.00]) → [0.4828, 0.2759, 0.2414]
        devig([1.00, 3.00, 3.00]) → [0.0,    0.5,    0.5   ]
        devig([1.90, None, 1.90]) → [0.5,    None,   0.5   ]
    """
    available = [i for i, o in enumerate(legs) if o is not None]
    result: List[Optional[float]] = [None] * len(legs)
    if not available:
        return result

    implied = {i: implied_prob(legs[i]) for i in available}
    total = sum(implied.values())

    if total <= 0.0:
        even = 1.0 / len(available)
        for i in available:
            result[i] = even
        return result

    for i in available:
        result[i] = implied[i] / total
    return result


# ---------------------------------------------------------------------------
# Edge
# ---------------------------------------------------------------------------


def outcome_edges(
    model_probs: Sequence[Optional[float]],
    true_probs: Sequence[Optional[float]],
) -> List[Optional[float]]:
    """Per-outcome edge: ``model − market``, ``None`` where either is missing.

    A positive edge means the model rates the outcome more likely than the
    devigged market does, i.e. the quoted price is too long.
    """
    edges: List[Optional[float]] = []
    for model_p, market_p in zip(model_probs, true_probs):
        if model_p is None or market_p is None:
            edges.append(None)
        else:
            edges.append(model_p - market_p)
    return edges
