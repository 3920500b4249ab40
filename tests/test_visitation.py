"""Tests for the visitation grid manager."""
import logging
import threading
from unittest.mock import Mock

import pytest

from captur.geo.hex_grid import KM_PER_DEGREE
from captur.geo.location import LocationFix
from captur.geo.visitation import VisitationGridManager

from conftest import nearest_cell

LNG, LAT = 4.8952, 52.3702
STEP = 1.0 / KM_PER_DEGREE


def _manager(**kwargs):
    kwargs.setdefault("initial_radius_km", 3.0)
    mgr = VisitationGridManager(**kwargs)
    mgr.initialize(LocationFix(latitude=LAT, longitude=LNG))
    return mgr


def _center_fix(cell):
    return LocationFix(latitude=cell.center[1], longitude=cell.center[0])


class TestInitialize:

    def test_builds_grid_around_first_fix(self):
        mgr = VisitationGridManager(initial_radius_km=3.0)
        assert not mgr.initialized
        assert mgr.initialize(LocationFix(latitude=LAT, longitude=LNG))

        b = mgr.bounds
        assert b.min_lng == pytest.approx(LNG - 3.0 / KM_PER_DEGREE)
        assert b.max_lat == pytest.approx(LAT + 3.0 / KM_PER_DEGREE)
        assert len(mgr.cells) > 100

    def test_second_call_is_a_no_op(self):
        mgr = _manager()
        bounds = mgr.bounds
        assert not mgr.initialize(LocationFix(latitude=LAT + 1, longitude=LNG + 1))
        assert mgr.bounds == bounds

    def test_malformed_first_fix_is_ignored(self):
        mgr = VisitationGridManager(initial_radius_km=3.0)
        assert not mgr.initialize(LocationFix(latitude=float("nan"), longitude=LNG))
        assert not mgr.initialized

    def test_operations_before_initialize(self):
        mgr = VisitationGridManager()
        assert mgr.process_fix(LocationFix(latitude=LAT, longitude=LNG)) is None
        assert mgr.seed_from_history([LocationFix(latitude=LAT, longitude=LNG)]) == 0
        assert mgr.overlay_geojson() == {"type": "FeatureCollection", "features": []}

    def test_unknown_identity_rejected(self):
        with pytest.raises(ValueError):
            VisitationGridManager(cell_identity="hash")


class TestSeedFromHistory:

    def test_three_fixes_in_three_cells(self):
        mgr = _manager()
        cells = [mgr.cells[i] for i in (40, 200, 410)]
        added = mgr.seed_from_history([_center_fix(c) for c in cells])

        assert added == 3
        assert mgr.visited == {c.cell_id for c in cells}

    def test_repeated_and_outside_fixes(self):
        mgr = _manager()
        cell = mgr.cells[100]
        history = [
            _center_fix(cell),
            _center_fix(cell),
            LocationFix(latitude=LAT + 1.0, longitude=LNG),   # far outside
            LocationFix(latitude=float("nan"), longitude=LNG),
        ]
        assert mgr.seed_from_history(history) == 1
        assert mgr.visited == {cell.cell_id}

    def test_seeding_does_not_emit_events(self):
        mgr = _manager()
        listener = Mock()
        mgr.add_listener(listener)
        mgr.seed_from_history([_center_fix(mgr.cells[10])])
        listener.assert_not_called()


class TestProcessFix:

    def test_new_cell_emits_once(self):
        mgr = _manager()
        rewards = Mock()
        mgr.add_listener(rewards)
        cell = nearest_cell(mgr.cells, LNG, LAT)

        assert mgr.process_fix(_center_fix(cell)) == cell.cell_id
        assert mgr.process_fix(_center_fix(cell)) is None
        rewards.assert_called_once_with(cell.cell_id)

    def test_seeded_cell_is_not_rewarded(self):
        mgr = _manager()
        rewards = Mock()
        mgr.add_listener(rewards)
        cell = nearest_cell(mgr.cells, LNG, LAT)
        mgr.seed_from_history([_center_fix(cell)])

        assert mgr.process_fix(_center_fix(cell)) is None
        rewards.assert_not_called()

    def test_visited_set_never_shrinks(self):
        mgr = _manager()
        path = [
            (LNG, LAT), (LNG + 0.002, LAT), (LNG + 0.002, LAT + 0.001),
            (LNG + 0.02, LAT),                 # triggers eastward expansion
            (LNG, LAT), (LNG - 0.022, LAT - 0.022),
            (LNG + 0.5, LAT + 0.5),            # outside the grid
        ]
        sizes = []
        for lng, lat in path:
            mgr.process_fix(LocationFix(latitude=lat, longitude=lng))
            sizes.append(len(mgr.visited))
        assert sizes == sorted(sizes)
        assert sizes[-1] >= 3

    def test_fix_outside_grid_is_ignored(self):
        mgr = _manager(expansion_threshold_deg=0.0)
        assert mgr.process_fix(LocationFix(latitude=LAT + 1.0, longitude=LNG)) is None

    def test_failing_listener_is_logged(self, caplog):
        mgr = _manager()
        bad = Mock(side_effect=RuntimeError("boom"))
        good = Mock()
        mgr.add_listener(bad)
        mgr.add_listener(good)
        cell = nearest_cell(mgr.cells, LNG, LAT)

        with caplog.at_level(logging.ERROR):
            assert mgr.process_fix(_center_fix(cell)) == cell.cell_id
        good.assert_called_once_with(cell.cell_id)
        assert "listener failed" in caplog.text


class TestExpansion:

    def test_east_edge_grows_only_east(self):
        mgr = _manager()
        before = mgr.bounds
        mgr.process_fix(LocationFix(latitude=LAT, longitude=LNG + 0.02))
        after = mgr.bounds

        assert after.max_lng == pytest.approx(before.max_lng + STEP)
        assert after.min_lng == before.min_lng
        assert after.min_lat == before.min_lat
        assert after.max_lat == before.max_lat
        assert mgr.generation == 1

    def test_corner_grows_two_edges(self):
        mgr = _manager()
        before = mgr.bounds
        mgr.process_fix(LocationFix(latitude=LAT - 0.022, longitude=LNG - 0.022))
        after = mgr.bounds

        assert after.min_lng == pytest.approx(before.min_lng - STEP)
        assert after.min_lat == pytest.approx(before.min_lat - STEP)
        assert after.max_lng == before.max_lng
        assert after.max_lat == before.max_lat

    def test_interior_fix_does_not_expand(self):
        mgr = _manager()
        before = mgr.bounds
        mgr.process_fix(LocationFix(latitude=LAT, longitude=LNG))
        assert mgr.bounds == before
        assert mgr.generation == 0

    def test_regeneration_adds_cells(self):
        mgr = _manager()
        n = len(mgr.cells)
        mgr.process_fix(LocationFix(latitude=LAT + 0.02, longitude=LNG))
        assert len(mgr.cells) > n

    def test_index_identity_is_renumbered_by_expansion(self):
        mgr = _manager(cell_identity="index")
        rewards = Mock()
        mgr.add_listener(rewards)
        fix = _center_fix(nearest_cell(mgr.cells, LNG, LAT))

        first = mgr.process_fix(fix)
        mgr.process_fix(LocationFix(latitude=LAT + 0.02, longitude=LNG))   # north
        again = mgr.process_fix(fix)

        # Same place, new positional id: visited state for it is forgotten
        assert again is not None and again != first
        assert first in mgr.visited

    def test_axial_identity_survives_expansion(self):
        mgr = _manager(cell_identity="axial")
        rewards = Mock()
        mgr.add_listener(rewards)
        cell = nearest_cell(mgr.cells, LNG, LAT)
        fix = _center_fix(cell)

        assert mgr.process_fix(fix) == cell.axial_id
        mgr.process_fix(LocationFix(latitude=LAT + 0.02, longitude=LNG))
        assert mgr.process_fix(fix) is None
        assert rewards.call_args_list[0].args == (cell.axial_id,)


class TestOverlay:

    def test_overlay_reflects_visited(self):
        mgr = _manager()
        cell = nearest_cell(mgr.cells, LNG, LAT)
        mgr.process_fix(_center_fix(cell))

        fc = mgr.overlay_geojson()
        visited = [f for f in fc["features"] if f["properties"]["visited"]]
        assert len(fc["features"]) == len(mgr.cells)
        assert [f["properties"]["cell_id"] for f in visited] == [cell.cell_id]

    def test_overlay_waits_for_a_running_expansion(self):
        mgr = _manager()
        cell = nearest_cell(mgr.cells, LNG, LAT)
        mgr.process_fix(_center_fix(cell))
        result = {}
        reader = threading.Thread(target=lambda: result.update(fc=mgr.overlay_geojson()))

        with mgr._lock:
            reader.start()
            reader.join(0.2)
            assert reader.is_alive()
        reader.join(5)

        visited = [f for f in result["fc"]["features"] if f["properties"]["visited"]]
        assert [f["properties"]["cell_id"] for f in visited] == [cell.cell_id]

    def test_overlay_is_read_only(self):
        mgr = _manager()
        bounds, visited = mgr.bounds, mgr.visited
        for _ in range(3):
            mgr.overlay_geojson()
        assert mgr.bounds == bounds
        assert mgr.visited == visited
        assert mgr.generation == 0
