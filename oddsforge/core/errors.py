"""Error taxonomy shared by the rating, prediction and refresh services.

Per-item and per-source failures are isolated by the caller that catches
them; only :class:`HistoryUnavailable` is meant to reach the caller of
``rebuild()``.
"""


class OddsForgeError(Exception):
    """Base class for all engine errors."""


class NotFound(OddsForgeError):
    """A referenced team or match is missing.  Skip the item and continue."""


class UpstreamUnavailable(OddsForgeError):
    """An ingestion or quotes call failed, was throttled, or ran out of retries.

    Raised by a provider source; the orchestrator fails only that source for
    the current cycle.
    """

    def __init__(self, source: str, message: str, attempts: int = 1):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.attempts = attempts


class DataInconsistency(OddsForgeError):
    """Malformed provider data (bad date, non-finite number, degenerate odds).

    Usually clamped or defaulted in place; raised only where a record cannot
    be salvaged at all, and then caught per record.
    """


class HistoryUnavailable(OddsForgeError):
    """The finished-match history could not be loaded; the rebuild is aborted."""
