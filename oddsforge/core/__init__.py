"""Core mathematics and configuration for the OddsForge engine.

This package contains pure, sport-agnostic building blocks:

- ``elo``          — expected score, margin multiplier, rating updates
- ``odds_math``    — implied probability, overround, devig, edge
- ``sport_config`` — per-sport constants (draw handling, league baselines)
- ``errors``       — the error taxonomy shared by services

Nothing in this package imports from ``oddsforge.services`` or ``oddsforge.models``.
All modules are side-effect-free and unit-testable in isolation.
"""
