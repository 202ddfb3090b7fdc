"""Background expiry sweeper.

Runs as a daemon thread and periodically deletes expired credentials and
stale pairing requests. Expiry itself is enforced in SQL; the sweep only
keeps the tables small.
"""

import logging
import threading

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from devicelink.services.device_service import purge_expired

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Calls purge_expired every ``interval_seconds`` until stopped."""

    def __init__(self, engine, interval_seconds: float):
        self._engine = engine
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> bool:
        """Start the sweeper thread. Returns False when sweeping is disabled."""
        if self._interval <= 0:
            logger.info("Expiry sweeper disabled")
            return False

        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="expiry-sweeper")
        self._thread.start()
        logger.info("Expiry sweeper started (every %ss)", self._interval)
        return True

    def stop(self):
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Expiry sweeper stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sweep_once(self) -> dict:
        with Session(self._engine) as session:
            return purge_expired(session)

    def _run(self):
        while not self._stop.wait(self._interval):
            try:
                self.sweep_once()
            except SQLAlchemyError as e:
                logger.error("Expiry sweep failed: %s", e)
