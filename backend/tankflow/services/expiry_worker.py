# Overview: Background sweeper that expires stale reservations on a timer.

from __future__ import annotations

import logging
import threading

from ..extensions import db
from . import reservation_service

logger = logging.getLogger(__name__)


class ReservationExpiryWorker:
    """Runs expire_old_reservations every `interval` seconds in its own thread."""

    def __init__(self, app, *, interval: float = 300, threshold_hours: float = 24):
        self.app = app
        self.interval = interval
        self.threshold_hours = threshold_hours
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Reservation expiry worker already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="reservation-expiry-worker", daemon=True
        )
        self._thread.start()
        logger.info(
            "Reservation expiry worker started (every %ss, threshold %sh)",
            self.interval, self.threshold_hours,
        )

    def stop(self, timeout: float | None = 5) -> None:
        if not self.running:
            return
        self._stop.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Reservation expiry worker stopped")

    def run_once(self) -> int:
        with self.app.app_context():
            try:
                return reservation_service.expire_old_reservations(
                    db.session, self.threshold_hours
                )
            finally:
                db.session.remove()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Reservation expiry sweep failed")
            self._stop.wait(self.interval)
