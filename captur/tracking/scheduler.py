"""
Periodic sync scheduler.

Drains the pending-location queue on a background thread every
``interval_s`` seconds.  The timer is only one of several sync paths
(foreground, tracking toggles and sign-out also sync), never the only
route to consistency.

Usage
-----
    scheduler = SyncScheduler(logger, interval_s=300)
    scheduler.start()
    scheduler.trigger()      # sync now
    scheduler.stop()
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from ..storage.location_queue import DurableLocationLogger, SyncResult

log = logging.getLogger(__name__)

SYNC_INTERVAL_S = 300.0


class SyncScheduler:
    """Runs ``sync_pending`` periodically on a daemon thread."""

    def __init__(self, logger: DurableLocationLogger, interval_s: float = SYNC_INTERVAL_S):
        self._logger = logger
        self._interval = interval_s
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.last_result: Optional[SyncResult] = None
        self.passes = 0

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._wake.clear()
            self._thread = threading.Thread(
                target=self._run, name="captur-sync", daemon=True,
            )
            self._thread.start()
        log.info("SyncScheduler started (every %ds)", int(self._interval))

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop.set()
            self._wake.set()
            self._thread = None
        thread.join(timeout=timeout)
        log.info("SyncScheduler stopped")

    def trigger(self) -> None:
        """Run a sync pass as soon as possible."""
        self._wake.set()

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self._interval)
            self._wake.clear()
            if self._stop.is_set():
                break
            try:
                self.last_result = self._logger.sync_pending()
            except Exception:
                log.exception("Scheduled sync failed")
            self.passes += 1
