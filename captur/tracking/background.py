"""
Background location task.

The OS wakes the app with batches of fixes while it is not in the
foreground.  There is no map in that context, so every fix in a batch
only goes through the durable logger; the visitation grid catches up
from history on the next foreground session.

Usage
-----
    tracker = BackgroundTracker(background_provider, logger)
    tracker.start()                      # registers with BACKGROUND_WATCH
    tracker.handle_batch(fixes)          # called by the platform task
    tracker.stop()                       # safe when not registered
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from ..geo.location import LocationFix
from ..storage.location_queue import DurableLocationLogger, FixState
from .provider import BACKGROUND_WATCH, LocationProvider, WatchConfig

log = logging.getLogger(__name__)


class BackgroundTracker:
    """Registers the background watch and logs the fixes it delivers."""

    def __init__(
        self,
        provider: LocationProvider,
        logger: DurableLocationLogger,
        watch_config: WatchConfig = BACKGROUND_WATCH,
    ):
        self._provider = provider
        self._logger = logger
        self._watch_config = watch_config

    @property
    def registered(self) -> bool:
        return self._provider.is_registered()

    def start(self) -> bool:
        """Register for background fixes.  Returns True when registered."""
        if self._provider.is_registered():
            return True
        if not self._provider.request_permission(background=True):
            log.warning("Background location permission denied")
            return False
        self._provider.start_watch(self.handle_fix, self._watch_config)
        log.info("Background tracking started")
        return True

    def stop(self) -> None:
        """Unregister the background watch, if it is registered."""
        if not self._provider.is_registered():
            return
        self._provider.stop_watch()
        log.info("Background tracking stopped")

    def handle_fix(self, fix: LocationFix) -> FixState:
        return self._logger.log_fix(fix)

    def handle_batch(
        self,
        fixes: Iterable[LocationFix],
        error: Optional[str] = None,
    ) -> List[FixState]:
        """Log every fix of one OS delivery, in order.

        A delivery that carries a task error is logged and skipped.
        """
        if error:
            log.error("Background task error: %s", error)
            return []
        states = [self.handle_fix(fix) for fix in fixes]
        log.debug("Background batch: %d fixes logged", len(states))
        return states
