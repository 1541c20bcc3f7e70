"""
Refresh orchestrator — the recurring fetch-and-recompute loop.

Per tick
--------
1. Advance the cycle counter (state is a value owned by the orchestrator and
   threaded through :meth:`RefreshOrchestrator.run_cycle`).
2. For every source, in parallel across sources:
     * skip unless its FetchCursor is older than the source's minimum
       interval **and** a scheduled match for its sport starts within the
       lookahead window (ingestion sources also run for a recent match that
       is not finished yet, and once a day when idle);
     * on every 10th cycle run the roster refresh first;
     * run the status refresh;
     * write the FetchCursor only once everything above succeeded.
3. If any source succeeded: rating rebuild → season stats → predictions
   over every scheduled match.  Each step logs and continues on failure.

Single flight
-------------
APScheduler runs the job with ``max_instances=1, coalesce=True``; ``tick``
also takes a non-blocking lock, so a tick that fires while a cycle is still
running is dropped (and the cycle counter does not advance).
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from oddsforge.core.errors import HistoryUnavailable, UpstreamUnavailable
from oddsforge.models import SessionLocal, Team
from oddsforge.services.data_fetcher import RESULTS_LOOKBACK_DAYS, default_sources
from oddsforge.services.odds import default_odds_sources
from oddsforge.services.predictor import PredictionEngine, get_prediction_engine
from oddsforge.services.ratings import RatingEngine, get_rating_engine
from oddsforge.services.repository import (
    count_unresolved,
    count_upcoming,
    get_fetch_cursor,
    get_scheduled_matches,
    put_fetch_cursor,
)
from oddsforge.services.season_stats import compute_season_stats

load_dotenv()

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECONDS = int(os.getenv("REFRESH_INTERVAL_SECONDS", "60"))
REFRESH_ROSTER_EVERY = int(os.getenv("REFRESH_ROSTER_EVERY", "10"))
INGEST_MIN_INTERVAL_SECONDS = int(os.getenv("INGEST_MIN_INTERVAL_SECONDS", "55"))
ODDS_MIN_INTERVAL_HOURS = float(os.getenv("ODDS_MIN_INTERVAL_HOURS", "12"))
LOOKAHEAD_DAYS = int(os.getenv("LOOKAHEAD_DAYS", "3"))
INGEST_IDLE_INTERVAL_HOURS = float(os.getenv("INGEST_IDLE_INTERVAL_HOURS", "24"))

RUN_OK = "ok"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"


@dataclass(frozen=True)
class SourcePolicy:
    """
    Quota policy for one source key.

    A source is due once ``min_interval`` has passed and it has fixtures to
    work on: a scheduled match within ``lookahead_days``, or (when
    ``lookback_days`` is set) a match that has kicked off in the last
    ``lookback_days`` but is not finished yet.  With nothing to work on it
    still runs every ``idle_interval`` when one is set, so new fixtures get
    loaded after a break.
    """
    min_interval: timedelta
    lookahead_days: float = LOOKAHEAD_DAYS
    lookback_days: float = 0
    idle_interval: Optional[timedelta] = None


INGEST_POLICY = SourcePolicy(
    min_interval=timedelta(seconds=INGEST_MIN_INTERVAL_SECONDS),
    lookback_days=RESULTS_LOOKBACK_DAYS,
    idle_interval=timedelta(hours=INGEST_IDLE_INTERVAL_HOURS),
)
ODDS_POLICY = SourcePolicy(min_interval=timedelta(hours=ODDS_MIN_INTERVAL_HOURS))


@dataclass(frozen=True)
class RefreshState:
    """Orchestrator-owned loop state."""
    cycle: int = 0
    last_cycle_at: Optional[datetime] = None

    def advance(self, now: datetime) -> "RefreshState":
        return replace(self, cycle=self.cycle + 1, last_cycle_at=now)


@dataclass
class SourceRun:
    key: str
    status: str
    records: int = 0
    roster_records: int = 0
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == RUN_OK


@dataclass
class CycleReport:
    cycle: int
    runs: List[SourceRun] = field(default_factory=list)
    rebuilt: bool = False
    stats_rows: int = 0
    predictions: int = 0

    @property
    def any_success(self) -> bool:
        return any(run.ok for run in self.runs)


def default_schedule() -> List[Tuple[object, SourcePolicy]]:
    """Ingestion sources plus one odds source per sport."""
    return [(s, INGEST_POLICY) for s in default_sources()] + [
        (s, ODDS_POLICY) for s in default_odds_sources()
    ]


class RefreshOrchestrator:
    """
    Drives ingestion and recomputation on a fixed interval.

    Usage::

        orchestrator = RefreshOrchestrator(default_schedule())
        orchestrator.bootstrap()
        orchestrator.start()
    """

    def __init__(
        self,
        sources: Sequence[Tuple[object, SourcePolicy]],
        session_factory: Callable = SessionLocal,
        rating_engine: Optional[RatingEngine] = None,
        prediction_engine: Optional[PredictionEngine] = None,
        roster_every: int = REFRESH_ROSTER_EVERY,
        interval_seconds: int = REFRESH_INTERVAL_SECONDS,
        max_workers: int = 4,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.sources = list(sources)
        self.session_factory = session_factory
        self.rating_engine = rating_engine or get_rating_engine()
        self.prediction_engine = prediction_engine or get_prediction_engine()
        self.roster_every = roster_every
        self.interval_seconds = interval_seconds
        self.max_workers = max_workers
        self.clock = clock

        self.state = RefreshState()
        self._lock = threading.Lock()
        self.scheduler: Optional[BackgroundScheduler] = None

    # -----------------------------------------------------------------------
    # Eligibility
    # -----------------------------------------------------------------------

    def skip_reason(self, db, source, policy: SourcePolicy, now: datetime) -> Optional[str]:
        """Why ``source`` should not be fetched now, or None if it should."""
        if not source.configured:
            return "API key not set"
        last = get_fetch_cursor(db, source.key)
        if last is not None and now - last < policy.min_interval:
            return f"fetched {int((now - last).total_seconds())}s ago"
        if count_upcoming(db, source.sport, now, policy.lookahead_days) > 0:
            return None
        if policy.lookback_days and count_unresolved(db, source.sport, now, policy.lookback_days) > 0:
            return None
        if policy.idle_interval is not None and (last is None or now - last >= policy.idle_interval):
            return None
        return f"no {source.sport} matches in the next {policy.lookahead_days:g} days"

    # -----------------------------------------------------------------------
    # One source
    # -----------------------------------------------------------------------

    def run_source(
        self,
        source,
        policy: SourcePolicy,
        roster_due: bool,
        now: datetime,
        force: bool = False,
    ) -> SourceRun:
        """Fetch one source in its own session.  Never raises for source failures."""
        db = self.session_factory()
        try:
            if force:
                if not source.configured:
                    return SourceRun(source.key, RUN_SKIPPED, detail="API key not set")
            else:
                reason = self.skip_reason(db, source, policy, now)
                if reason:
                    logger.debug("Skipping %s: %s", source.key, reason)
                    return SourceRun(source.key, RUN_SKIPPED, detail=reason)

            roster_records = 0
            if source.has_roster and (force or roster_due):
                roster_records = source.fetch_roster(db)
            records = source.fetch_status(db, full=force)

            put_fetch_cursor(db, source.key, now)
            db.commit()
            return SourceRun(source.key, RUN_OK, records, roster_records)

        except UpstreamUnavailable as exc:
            logger.error("Source %s failed this cycle: %s", source.key, exc)
            return SourceRun(source.key, RUN_FAILED, detail=str(exc))
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Source %s failed this cycle (database): %s", source.key, exc)
            return SourceRun(source.key, RUN_FAILED, detail=str(exc))
        except Exception as exc:
            db.rollback()
            logger.error("Source %s failed this cycle: %s", source.key, exc, exc_info=True)
            return SourceRun(source.key, RUN_FAILED, detail=f"{type(exc).__name__}: {exc}")
        finally:
            db.close()

    def _run_sources(
        self,
        roster_due: bool,
        now: datetime,
        force: bool = False,
        sources: Optional[Sequence[Tuple[object, SourcePolicy]]] = None,
    ) -> List[SourceRun]:
        """Run sources concurrently; each source stays sequential internally."""
        sources = self.sources if sources is None else list(sources)
        if not sources:
            return []
        runs: List[SourceRun] = []
        workers = max(1, min(self.max_workers, len(sources)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.run_source, source, policy, roster_due, now, force): source.key
                for source, policy in sources
            }
            for future in as_completed(futures):
                runs.append(future.result())
        runs.sort(key=lambda run: run.key)
        return runs

    # -----------------------------------------------------------------------
    # Recompute
    # -----------------------------------------------------------------------

    def recompute(self, report: CycleReport) -> CycleReport:
        """Rating rebuild → season stats → predictions, each isolated."""
        db = self.session_factory()
        try:
            try:
                self.rating_engine.rebuild(db)
                report.rebuilt = True
            except (HistoryUnavailable, SQLAlchemyError) as exc:
                logger.error("Rating rebuild failed: %s", exc)

            try:
                report.stats_rows = compute_season_stats(db)
            except SQLAlchemyError as exc:
                logger.error("Season stats failed: %s", exc)

            try:
                matches = get_scheduled_matches(db)
                report.predictions = len(
                    self.prediction_engine.generate_predictions(db, matches)
                )
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Prediction refresh failed: %s", exc)
        finally:
            db.close()
        return report

    # -----------------------------------------------------------------------
    # Cycles
    # -----------------------------------------------------------------------

    def run_cycle(self, state: RefreshState, now: Optional[datetime] = None) -> Tuple[RefreshState, CycleReport]:
        """Run one cycle from ``state`` and return the advanced state."""
        now = now or self.clock()
        state = state.advance(now)
        roster_due = state.cycle % self.roster_every == 0
        logger.info("Refresh cycle %d%s", state.cycle, " (roster)" if roster_due else "")

        report = CycleReport(cycle=state.cycle)
        report.runs = self._run_sources(roster_due, now)

        if report.any_success:
            self.recompute(report)
        logger.info(
            "Refresh cycle %d done: %d ok, %d failed, %d skipped, %d predictions",
            state.cycle,
            sum(1 for r in report.runs if r.status == RUN_OK),
            sum(1 for r in report.runs if r.status == RUN_FAILED),
            sum(1 for r in report.runs if r.status == RUN_SKIPPED),
            report.predictions,
        )
        return state, report

    def tick(self, now: Optional[datetime] = None) -> Optional[CycleReport]:
        """Run the next cycle unless one is already running (then drop the tick)."""
        if not self._lock.acquire(blocking=False):
            logger.warning("Refresh cycle still running; tick dropped")
            return None
        try:
            self.state, report = self.run_cycle(self.state, now)
            return report
        finally:
            self._lock.release()

    def needs_bootstrap(self) -> bool:
        db = self.session_factory()
        try:
            return db.query(Team).count() == 0
        finally:
            db.close()

    def bootstrap(self, now: Optional[datetime] = None) -> CycleReport:
        """
        Startup load.  An empty teams table gets a full roster and season
        fetch from every configured ingestion source, bypassing cursors and
        the lookahead gate; odds sources then run under their normal policy
        against the fixtures just loaded.  Ratings, stats and predictions
        are recomputed either way.
        """
        now = now or self.clock()
        report = CycleReport(cycle=self.state.cycle)
        with self._lock:
            if self.needs_bootstrap():
                logger.info("Empty database: running initial full load")
                ingest = [(s, p) for s, p in self.sources if s.has_roster]
                quotes = [(s, p) for s, p in self.sources if not s.has_roster]
                report.runs = self._run_sources(True, now, force=True, sources=ingest)
                report.runs += self._run_sources(False, now, sources=quotes)
            self.recompute(report)
        return report

    # -----------------------------------------------------------------------
    # Scheduling
    # -----------------------------------------------------------------------

    def _tick_job(self) -> None:
        try:
            self.tick()
        except Exception as exc:
            logger.error("Refresh cycle failed: %s", exc, exc_info=True)

    def start(self) -> BackgroundScheduler:
        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(
            self._tick_job,
            IntervalTrigger(seconds=self.interval_seconds),
            id="refresh_cycle",
            name="Refresh Cycle",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "Scheduler started: refresh every %ds, roster every %d cycles, %d sources",
            self.interval_seconds, self.roster_every, len(self.sources),
        )
        return self.scheduler

    def shutdown(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown()
        self.scheduler = None
