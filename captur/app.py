"""
Application wiring.

Builds every component from a ``CapturConfig`` and hands back a single
``CapturApp`` handle.  Nothing is a module-level singleton, so tests and
the background task can each build their own instance.

Usage
-----
    app = run_app(CapturConfig.from_env(), my_provider, background_provider=my_task)
    overlay = app.grid.overlay_geojson()
    app.shutdown()
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .backend.client import SupabaseClient
from .backend.rewards import RewardCoordinator
from .config import CapturConfig
from .geo.path_track import LocationPath
from .geo.visitation import VisitationGridManager
from .logger import setup_logging
from .storage.kv_store import KeyValueStore
from .storage.location_queue import DurableLocationLogger
from .tracking.background import BackgroundTracker
from .tracking.provider import LocationProvider
from .tracking.scheduler import SyncScheduler
from .tracking.session import TrackingSession

log = logging.getLogger(__name__)


@dataclass
class CapturApp:
    config: CapturConfig
    store: KeyValueStore
    client: object
    logger: DurableLocationLogger
    grid: VisitationGridManager
    rewards: RewardCoordinator
    path: LocationPath
    session: TrackingSession
    scheduler: SyncScheduler
    background: Optional[BackgroundTracker] = None

    def start(self) -> bool:
        """Start the periodic sync and the tracking session."""
        self.scheduler.start()
        return self.session.start()

    def shutdown(self) -> None:
        """Stop tracking and the scheduler.  Does not flush the queue.

        The background watch is left registered; it outlives the app.
        """
        self.session.stop()
        self.scheduler.stop()
        self.store.close()
        log.info("Captur shutdown complete.")


def build_app(
    config: CapturConfig,
    provider: LocationProvider,
    client=None,
    store: Optional[KeyValueStore] = None,
    background_provider: Optional[LocationProvider] = None,
) -> CapturApp:
    """Wire the components.  *client* and *store* may be injected for tests.

    *background_provider* is the OS background-task registration; without
    one the app only tracks in the foreground.
    """
    store = store or KeyValueStore(config.db_path)
    if client is None:
        client = SupabaseClient(
            config.supabase_url, config.supabase_anon_key, session_store=store,
        )

    logger = DurableLocationLogger(client, store)
    grid = VisitationGridManager(
        initial_radius_km=config.initial_radius_km,
        cell_identity=config.cell_identity,
    )
    rewards = RewardCoordinator(client, amount=config.reward_amount)
    grid.add_listener(rewards.on_new_cell_visited)

    path = LocationPath()
    session = TrackingSession(
        client, provider, logger, grid, path=path,
        history_limit=config.history_limit,
    )
    scheduler = SyncScheduler(logger, interval_s=config.sync_interval_s)
    background = None
    if background_provider is not None:
        background = BackgroundTracker(background_provider, logger)

    return CapturApp(
        config=config,
        store=store,
        client=client,
        logger=logger,
        grid=grid,
        rewards=rewards,
        path=path,
        session=session,
        scheduler=scheduler,
        background=background,
    )


def run_app(
    config: CapturConfig,
    provider: LocationProvider,
    background_provider: Optional[LocationProvider] = None,
) -> CapturApp:
    """Process entry point: configure logging, build the app and start it."""
    logfile = setup_logging(config.log_dir)
    log.info("Captur starting (log: %s)", logfile)
    app = build_app(config, provider, background_provider=background_provider)
    app.start()
    if app.background is not None:
        app.background.start()
    return app
