"""Tests for the tracking session lifecycle and fix pipeline."""
from unittest.mock import Mock

import pytest

from captur.backend.rewards import REWARD_RPC, RewardCoordinator
from captur.geo.location import LocationFix
from captur.geo.path_track import LocationPath
from captur.geo.visitation import VisitationGridManager
from captur.storage.location_queue import DurableLocationLogger, SyncResult
from captur.tracking.provider import FOREGROUND_WATCH
from captur.tracking.session import SessionState, TrackingSession

LNG, LAT = 4.8952, 52.3702
HISTORY_FIX = LocationFix(latitude=LAT, longitude=LNG + 0.005)


@pytest.fixture
def session(backend, store, provider):
    logger = DurableLocationLogger(backend, store)
    grid = VisitationGridManager(initial_radius_km=3.0)
    grid.add_listener(RewardCoordinator(backend).on_new_cell_visited)
    return TrackingSession(backend, provider, logger, grid)


class TestLifecycle:

    def test_start_registers_watch(self, session, provider):
        assert session.start()
        assert session.state is SessionState.TRACKING
        assert provider.is_registered()
        assert provider.config == FOREGROUND_WATCH
        assert session.last_sync == SyncResult()

    def test_start_twice_registers_once(self, session, provider):
        session.start()
        session.start()
        assert provider.permission_requests == 1

    def test_permission_denied_is_terminal(self, session, provider):
        provider.grant = False
        assert not session.start()
        assert session.state is SessionState.PERMISSION_DENIED

        provider.grant = True
        assert not session.start()
        assert provider.permission_requests == 1
        assert not provider.is_registered()

    def test_stop_is_idempotent_and_does_not_flush(self, backend, provider):
        logger = Mock()
        session = TrackingSession(backend, provider, logger, VisitationGridManager())
        session.start()
        session.stop()
        session.stop()

        assert provider.stop_calls == 1
        assert session.state is SessionState.IDLE
        logger.sync_pending.assert_called_once()

    def test_toggle_syncs_first(self, session, backend, provider):
        backend.offline = True
        session._logger.log_fix(LocationFix(latitude=LAT, longitude=LNG))
        backend.offline = False

        assert session.set_tracking_enabled(True)
        assert session._logger.pending_keys() == []
        assert len(backend.rows()) == 1

        assert not session.set_tracking_enabled(False)
        assert session.state is SessionState.IDLE
        assert not provider.is_registered()

    def test_foreground_syncs(self, session, backend):
        backend.offline = True
        session._logger.log_fix(LocationFix(latitude=LAT, longitude=LNG))
        backend.offline = False
        assert session.on_foreground().synced == 1

    def test_sign_out_flushes_then_ends_session(self, session, backend, provider):
        session.start()
        backend.offline = True
        provider.emit(LocationFix(latitude=LAT, longitude=LNG))
        backend.offline = False

        result = session.sign_out()
        assert result.complete
        assert backend.signed_out
        assert session.state is SessionState.IDLE
        assert not provider.is_registered()


class TestHandleFix:

    def test_injected_path_is_extended(self, backend, store, provider):
        path = LocationPath()
        session = TrackingSession(
            backend, provider, DurableLocationLogger(backend, store),
            VisitationGridManager(initial_radius_km=3.0), path=path,
        )
        assert session.path is path
        session.start()
        provider.emit(LocationFix(latitude=LAT, longitude=LNG))
        assert path.coordinates == [(LNG, LAT)]

    def test_pipeline(self, session, backend, provider):
        backend.tables["locations"] = [{
            "user_id": "user-1", "latitude": HISTORY_FIX.latitude,
            "longitude": HISTORY_FIX.longitude, "speed": None,
            "created_at": "2024-05-01T10:00:00+00:00",
        }]
        session.start()

        here = LocationFix(latitude=LAT, longitude=LNG, speed=2.0)
        first = provider.emit(here)
        assert first is not None
        assert first in session.grid.visited
        assert len(session.grid.visited) == 2          # history cell + this one

        # Already-visited cells earn nothing
        assert provider.emit(HISTORY_FIX) is None
        assert provider.emit(here) is None

        assert backend.rpc_calls == [(REWARD_RPC, {"user_id": "user-1", "amount": 1})]
        assert len(backend.rows()) == 4
        assert len(session.path) == 4
        assert session.path.coordinates[0] == (HISTORY_FIX.longitude, HISTORY_FIX.latitude)

    def test_history_loaded_once(self, session, backend, provider, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "captur.tracking.session.fetch_location_history",
            lambda client, limit: calls.append(limit) or [],
        )
        session.start()
        provider.emit(LocationFix(latitude=LAT, longitude=LNG))
        provider.emit(LocationFix(latitude=LAT + 0.001, longitude=LNG))
        assert calls == [500]

    def test_offline_fix_still_marks_cells(self, session, backend, provider):
        session.start()
        backend.offline = True
        assert provider.emit(LocationFix(latitude=LAT, longitude=LNG)) is not None
        assert len(session._logger.pending_keys()) == 1
        # The reward call failed and was dropped
        assert backend.rpc_calls == []

    def test_malformed_fix_is_ignored(self, session, backend, provider):
        session.start()
        assert provider.emit(LocationFix(latitude=float("nan"), longitude=LNG)) is None
        assert not session.grid.initialized
        assert backend.rows() == []
        assert len(session.path) == 0
