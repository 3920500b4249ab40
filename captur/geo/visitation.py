"""
Visitation grid manager.

Owns the live hexagon grid, its bounding box, and the set of cells the
user has physically entered.  The grid starts as a 10 km box around the
first fix and grows by 1 km on any side the user gets within ~1 km of.

Data flow
─────────
  first fix        →  initialize()          →  grid generation 0
  history (≤ 500)  →  seed_from_history()   →  visited set
  live fix         →  process_fix()
                        → edge check → expand + regenerate (atomic swap)
                        → cell lookup → "newly visited" listeners
  renderer         →  overlay_geojson()     (read-only snapshot)

Cell identity
─────────────
With ``cell_identity="index"`` a cell is identified by its position in
the current generation, as the map layer has always done.  Regenerating
the grid renumbers every cell, so ids recorded before an expansion no
longer point at the same place.  ``cell_identity="axial"`` keys cells by
their lattice coordinate instead, which survives expansion.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional, Set

from .cell_mapper import CellMapper
from .hex_grid import (
    HEX_SIZE_KM,
    BoundingBox,
    HexCell,
    HexLattice,
    cells_to_geojson,
    grid_for_bounds,
)
from .location import LocationFix

log = logging.getLogger(__name__)

INITIAL_RADIUS_KM = 10.0
EXPANSION_THRESHOLD_DEG = 0.01     # expand when within ~1 km of an edge
EXPANSION_STEP_KM = 1.0            # grow 1 km per expansion

CELL_IDENTITIES = ("index", "axial")

NewCellListener = Callable[[str], None]


class VisitationGridManager:
    """Live hexagon grid plus the user's visited-cell set.

    Thread-safe: mutations run under a lock and a new grid generation is
    published by swapping a single reference, so ``overlay_geojson`` never
    sees a half-built grid.
    """

    def __init__(
        self,
        initial_radius_km: float = INITIAL_RADIUS_KM,
        expansion_threshold_deg: float = EXPANSION_THRESHOLD_DEG,
        expansion_step_km: float = EXPANSION_STEP_KM,
        size_km: float = HEX_SIZE_KM,
        cell_identity: str = "index",
    ):
        if cell_identity not in CELL_IDENTITIES:
            raise ValueError(f"Unknown cell identity '{cell_identity}'")
        self._radius_km = initial_radius_km
        self._threshold = expansion_threshold_deg
        self._step_km = expansion_step_km
        self._size_km = size_km
        self._identity = cell_identity

        self._mapper: Optional[CellMapper] = None
        self._visited: Set[str] = set()
        self._listeners: List[NewCellListener] = []
        self._lock = threading.RLock()
        self._generation = 0

    # ── State ─────────────────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self._mapper is not None

    @property
    def bounds(self) -> Optional[BoundingBox]:
        mapper = self._mapper
        return mapper.grid.bounds if mapper else None

    @property
    def cells(self) -> List[HexCell]:
        mapper = self._mapper
        return list(mapper.grid.cells) if mapper else []

    @property
    def generation(self) -> int:
        """Number of regenerations since initialization."""
        return self._generation

    @property
    def visited(self) -> frozenset:
        with self._lock:
            return frozenset(self._visited)

    def cell_key(self, cell: HexCell) -> str:
        return cell.cell_id if self._identity == "index" else cell.axial_id

    def add_listener(self, callback: NewCellListener) -> None:
        """Register a callback for the "newly visited" event (gets the cell id)."""
        self._listeners.append(callback)

    # ── Operations ────────────────────────────────────────────────────

    def initialize(self, first_fix: LocationFix) -> bool:
        """Build the starting grid around *first_fix*.

        Returns True if a grid was built; False when already initialized
        or when the fix is malformed.
        """
        if not first_fix.is_valid():
            return False
        with self._lock:
            if self._mapper is not None:
                return False
            bounds = BoundingBox.around(
                first_fix.longitude, first_fix.latitude, self._radius_km,
            )
            lattice = HexLattice.for_latitude(first_fix.latitude, self._size_km)
            self._mapper = CellMapper(grid_for_bounds(bounds, lattice))
        log.info(
            "Grid initialized at %.5f, %.5f (%d cells)",
            first_fix.longitude, first_fix.latitude, len(self._mapper.grid),
        )
        return True

    def seed_from_history(self, fixes: Iterable[LocationFix]) -> int:
        """Mark every cell entered by a historical fix as visited.

        Does not emit "newly visited" events.  Returns the number of ids
        added to the visited set.
        """
        fixes = list(fixes)
        with self._lock:
            mapper = self._mapper
            if mapper is None:
                log.debug("seed_from_history before initialize; ignored")
                return 0
            before = len(self._visited)
            for cell in mapper.map_fixes(fixes):
                self._visited.add(self.cell_key(cell))
            added = len(self._visited) - before
        log.info("Processed %d historical locations (%d cells visited)", len(fixes), added)
        return added

    def process_fix(self, fix: LocationFix) -> Optional[str]:
        """Handle one live fix.

        Expands the grid if the fix is near an edge, then marks the cell
        it falls in.  Returns the cell id when the cell is newly visited,
        else None.
        """
        if not fix.is_valid():
            return None

        with self._lock:
            if self._mapper is None:
                return None

            directions = self._edges_near(fix, self._mapper.grid.bounds)
            if directions:
                self._expand(directions)

            cell = self._mapper.find_cell(fix.longitude, fix.latitude)
            if cell is None:
                return None

            cid = self.cell_key(cell)
            if cid in self._visited:
                return None
            self._visited.add(cid)

        log.debug("New cell visited: %s", cid)
        for callback in list(self._listeners):
            try:
                callback(cid)
            except Exception:
                log.exception("New-cell listener failed for %s", cid)
        return cid

    def overlay_geojson(self) -> dict:
        """Current grid as a FeatureCollection with a ``visited`` flag per cell.

        Side-effect free; safe to call from the render loop.
        """
        with self._lock:
            mapper = self._mapper
            visited = frozenset(self._visited)
        if mapper is None:
            return {"type": "FeatureCollection", "features": []}
        return cells_to_geojson(mapper.grid.cells, visited, key=self.cell_key)

    # ── Expansion ─────────────────────────────────────────────────────

    def _edges_near(self, fix: LocationFix, bounds: BoundingBox) -> dict:
        near = {
            "west": fix.longitude < bounds.min_lng + self._threshold,
            "east": fix.longitude > bounds.max_lng - self._threshold,
            "south": fix.latitude < bounds.min_lat + self._threshold,
            "north": fix.latitude > bounds.max_lat - self._threshold,
        }
        return {k: v for k, v in near.items() if v}

    def _expand(self, directions: dict) -> None:
        old = self._mapper.grid
        bounds = old.bounds.expanded(step_km=self._step_km, **directions)
        # Build the new generation completely before publishing it
        mapper = CellMapper(grid_for_bounds(bounds, old.lattice))
        self._mapper = mapper
        self._generation += 1
        log.info(
            "Expanding grid %s by %.1f km (%d → %d cells, generation %d)",
            "/".join(directions), self._step_km, len(old), len(mapper.grid),
            self._generation,
        )
