"""
OddsForge engine entry points.

    rebuild()          full rating replay
    predict(matches)   ensemble over a given match set
    scan_edges()       mispriced upcoming matches
    run()              bootstrap, then the scheduled refresh loop
"""

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from sqlalchemy.orm import Session

from oddsforge.models import Match, Prediction, SessionLocal, init_db
from oddsforge.services import edges
from oddsforge.services.edges import EDGE_THRESHOLD, MarketEdge
from oddsforge.services.predictor import get_prediction_engine
from oddsforge.services.ratings import RebuildResult, get_rating_engine
from oddsforge.services.refresh import RefreshOrchestrator, default_schedule

logger = logging.getLogger(__name__)


@contextmanager
def _session(db: Optional[Session]) -> Iterator[Session]:
    """Use the caller's session, or open (and close) a fresh one."""
    if db is not None:
        yield db
        return
    owned = SessionLocal()
    try:
        yield owned
    finally:
        owned.close()


def rebuild(db: Optional[Session] = None) -> RebuildResult:
    """Replay every finished match from the baseline and swap the ratings in.

    Raises:
        HistoryUnavailable: the match history could not be read.
    """
    with _session(db) as session:
        return get_rating_engine().rebuild(session)


def predict(matches: Sequence[Match], db: Optional[Session] = None) -> List[Prediction]:
    """Predict the scheduled matches among ``matches`` and store the results."""
    with _session(db) as session:
        return get_prediction_engine().generate_predictions(session, matches)


def scan_edges(db: Optional[Session] = None, threshold: float = EDGE_THRESHOLD) -> List[MarketEdge]:
    """Mispriced upcoming matches, largest edge first.

    Only matches with both a stored prediction and a market quote are
    considered.
    """
    with _session(db) as session:
        return edges.scan_edges(session, threshold=threshold)


def run() -> None:
    """Start the engine and block until interrupted."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Starting OddsForge engine")

    init_db()
    orchestrator = RefreshOrchestrator(default_schedule())
    try:
        orchestrator.bootstrap()
    except Exception as exc:
        logger.error("Initial load failed: %s", exc, exc_info=True)
    orchestrator.start()

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        while not stop.is_set():
            stop.wait(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Shutting down OddsForge engine")
        orchestrator.shutdown()


if __name__ == "__main__":
    run()
