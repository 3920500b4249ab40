"""
Tracking session — wires live fixes through the visitation pipeline.

Data flow
─────────
  provider fix
    → VisitationGridManager.initialize()  (first fix only)
    → seed_from_history()                 (once per session)
    → DurableLocationLogger.log_fix()     (persist or queue)
    → VisitationGridManager.process_fix() → RewardCoordinator
    → LocationPath.add_fix()

Session states
──────────────
  IDLE               not tracking
  TRACKING           provider watch active
  PERMISSION_DENIED  user refused location access; terminal for this
                     session, the user has to re-grant and start again

Stopping never flushes the queue; callers that want a flush call
``sync()`` (``set_tracking_enabled`` and ``sign_out`` do so first).
"""
from __future__ import annotations

import enum
import logging
import threading
from typing import Optional

from ..backend.history import HISTORY_LIMIT, fetch_location_history
from ..geo.location import LocationFix
from ..geo.path_track import LocationPath
from ..geo.visitation import VisitationGridManager
from ..storage.location_queue import DurableLocationLogger, FixState, SyncResult
from .provider import FOREGROUND_WATCH, LocationProvider, WatchConfig

log = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    PERMISSION_DENIED = "permission_denied"


class TrackingSession:
    """One app session's tracking lifecycle."""

    def __init__(
        self,
        client,
        provider: LocationProvider,
        logger: DurableLocationLogger,
        grid: VisitationGridManager,
        path: Optional[LocationPath] = None,
        history_limit: int = HISTORY_LIMIT,
        watch_config: WatchConfig = FOREGROUND_WATCH,
    ):
        self._client = client
        self._provider = provider
        self._logger = logger
        self._grid = grid
        self._path = path if path is not None else LocationPath()
        self._history_limit = history_limit
        self._watch_config = watch_config

        self._state = SessionState.IDLE
        self._lock = threading.Lock()
        self._fix_lock = threading.Lock()
        self._history_loaded = False
        self.last_sync: Optional[SyncResult] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def grid(self) -> VisitationGridManager:
        return self._grid

    @property
    def path(self) -> LocationPath:
        return self._path

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self) -> bool:
        """Sync, ask for permission, then start the watch.

        Returns True when tracking.  A refused permission moves the
        session to PERMISSION_DENIED and is not retried.
        """
        with self._lock:
            if self._state is SessionState.TRACKING:
                return True
            if self._state is SessionState.PERMISSION_DENIED:
                return False

        self.sync()

        if not self._provider.request_permission(background=False):
            log.warning("Location permission denied")
            with self._lock:
                self._state = SessionState.PERMISSION_DENIED
            return False

        with self._lock:
            if self._state is SessionState.TRACKING:
                return True
            self._provider.start_watch(self.handle_fix, self._watch_config)
            self._state = SessionState.TRACKING
        log.info("Tracking started")
        return True

    def stop(self) -> None:
        """Stop the watch.  Idempotent; queued fixes stay queued."""
        with self._lock:
            if self._state is not SessionState.TRACKING:
                return
            self._provider.stop_watch()
            self._state = SessionState.IDLE
        log.info("Tracking stopped")

    def set_tracking_enabled(self, enabled: bool) -> bool:
        """Settings toggle: flush the queue, then start or stop."""
        self.sync()
        if enabled:
            return self.start()
        self.stop()
        return False

    def on_foreground(self) -> SyncResult:
        return self.sync()

    def sign_out(self) -> SyncResult:
        """Flush what we can, stop tracking and end the auth session."""
        result = self.sync()
        self.stop()
        self._client.sign_out()
        if not result.complete:
            log.warning("Could not sync all locations before sign-out (%d left)", result.remaining)
        return result

    def sync(self) -> SyncResult:
        result = self._logger.sync_pending()
        self.last_sync = result
        return result

    # ── Fixes ─────────────────────────────────────────────────────────

    def handle_fix(self, fix: LocationFix) -> Optional[str]:
        """Process one fix from the provider.

        Returns the newly visited cell id, if any.
        """
        with self._fix_lock:
            # History is read before this fix is stored so it cannot seed its own cell
            if self._grid.initialize(fix):
                self._load_history()

            if self._logger.log_fix(fix) is FixState.SKIPPED:
                return None

            cell_id = self._grid.process_fix(fix)
            self._path.add_fix(fix)
            return cell_id

    def _load_history(self) -> None:
        if self._history_loaded:
            return
        self._history_loaded = True
        history = fetch_location_history(self._client, self._history_limit)
        self._grid.seed_from_history(history)
        self._path.extend(history)
