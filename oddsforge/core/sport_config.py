"""Sport-level configuration — all sport-specific constants in one place.

This module is the **registry** for every constant that differs between
sports.  Nowhere else in the codebase should league baselines, draw
handling, or Odds API sport keys be hard-coded.

Architecture
------------
:class:`SportConfig` is a frozen dataclass carrying all per-sport constants.
Named constructors (:meth:`SportConfig.football`,
:meth:`SportConfig.basketball`, :meth:`SportConfig.generic`) return
pre-populated instances and :meth:`SportConfig.for_sport` resolves the
``sport`` column of a Team or Match row to one of them.

Typical usage::

    from oddsforge.core.sport_config import SportConfig

    cfg = SportConfig.for_sport(match.sport)
    if cfg.draw_capable:
        ...

    # Override a single constant for an experiment:
    from dataclasses import replace
    custom_cfg = replace(cfg, base_draw_prob=0.24)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Optional, Tuple

#: Sport identifier strings used in Team / Match rows.
SPORT_FOOTBALL: Final[str] = "football"
SPORT_BASKETBALL: Final[str] = "basketball"


@dataclass(frozen=True)
class SportConfig:
    """Immutable configuration bundle for a single sport.

    Attributes:
        sport_id: Identifier stored on Team / Match rows (``"football"``,
            ``"basketball"``).
        draw_capable: True when a level score is a valid final result
            (association football).  Drives the three-way vs two-way split
            in every sub-model and the rest-day adjustment gate.
        win_points: Points awarded for a win in the form metric: 3 in
            draw-capable sports (league-table convention), 1 otherwise.
        baseline_home / baseline_away / baseline_draw: League-average outcome
            rates used whenever a sub-model has too little data.
            ``baseline_draw`` is ``None`` for sports without draws.
            Football 0.46 / 0.27 / 0.27 is the long-run top-flight European
            split; basketball 0.55 / 0.45 reflects home-court advantage.
        base_draw_prob: Fixed draw probability carved out of the
            rating-implied expectation before splitting the remainder
            between home and away (draw-capable sports only).
        odds_api_sport_key: The sport key passed to The Odds API.
        odds_api_region: Region whose bookmakers quote this sport best.
    """

    sport_id: str

    draw_capable: bool
    win_points: float

    baseline_home: float
    baseline_away: float
    baseline_draw: Optional[float]

    base_draw_prob: float = 0.25

    odds_api_sport_key: Optional[str] = None
    odds_api_region: str = "us"

    # ------------------------------------------------------------------ #
    #  Derived values                                                      #
    # ------------------------------------------------------------------ #

    @property
    def draw_points(self) -> float:
        """Points for a draw (or a result with a missing score): half a win."""
        return self.win_points / 2.0

    @property
    def league_baseline(self) -> Tuple[float, float, Optional[float]]:
        """``(home, away, draw)`` league-average outcome rates."""
        return self.baseline_home, self.baseline_away, self.baseline_draw

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def football(cls) -> "SportConfig":
        """Association football (EPL, Champions League)."""
        return cls(
            sport_id=SPORT_FOOTBALL,
            draw_capable=True,
            win_points=3.0,
            baseline_home=0.46,
            baseline_away=0.27,
            baseline_draw=0.27,
            base_draw_prob=0.25,
            odds_api_sport_key="soccer_epl",
            odds_api_region="eu",
        )

    @classmethod
    def basketball(cls) -> "SportConfig":
        """Professional basketball (NBA)."""
        return cls(
            sport_id=SPORT_BASKETBALL,
            draw_capable=False,
            win_points=1.0,
            baseline_home=0.55,
            baseline_away=0.45,
            baseline_draw=None,
            odds_api_sport_key="basketball_nba",
            odds_api_region="us",
        )

    @classmethod
    def generic(cls, sport_id: str = "other") -> "SportConfig":
        """Binary-outcome fallback for sports without a dedicated profile."""
        return cls(
            sport_id=sport_id,
            draw_capable=False,
            win_points=1.0,
            baseline_home=0.50,
            baseline_away=0.50,
            baseline_draw=None,
        )

    @classmethod
    def for_sport(cls, sport: Optional[str]) -> "SportConfig":
        """Resolve a ``sport`` column value to its configuration.

        Matching is case-insensitive; unknown or missing sports fall back to
        :meth:`generic` so callers never receive ``None``.
        """
        key = (sport or "").strip().lower()
        if key == SPORT_FOOTBALL:
            return cls.football()
        if key == SPORT_BASKETBALL:
            return cls.basketball()
        return cls.generic(key or "other")
