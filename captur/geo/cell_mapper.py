"""
Spatial mapper — assigns location fixes to grid cells.

Given a point and a grid generation, computes the candidate lattice cell
by axial rounding and confirms it with a strict point-in-polygon test.
The six neighbours are also checked so that round-off at a shared edge
can never push a point into the wrong cell.

Usage
-----
    from captur.geo.cell_mapper import CellMapper
    mapper = CellMapper(grid)
    cell = mapper.find_cell(lng=4.89, lat=52.37)
    hits = mapper.map_fixes(history)
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import shapely

from .hex_grid import AXIAL_NEIGHBOURS, HexCell, HexGrid, cell_contains
from .location import LocationFix

log = logging.getLogger(__name__)


class CellMapper:
    """Assigns geographic points to the cells of one grid generation."""

    def __init__(self, grid: HexGrid):
        self._grid = grid
        self._lattice = grid.lattice
        # Spatial index: (q, r) → cell
        self._by_axial: Dict[Tuple[int, int], HexCell] = {
            (c.q, c.r): c for c in grid.cells
        }

    @property
    def grid(self) -> HexGrid:
        return self._grid

    def find_cell(self, lng: float, lat: float) -> Optional[HexCell]:
        """Find the cell strictly containing a point, or None."""
        q, r = self._lattice.axial_at(lng, lat)
        return self._resolve(int(q), int(r), lng, lat)

    def _resolve(self, q: int, r: int, lng: float, lat: float) -> Optional[HexCell]:
        cell = self._by_axial.get((q, r))
        if cell is not None and cell_contains(lng, lat, cell):
            return cell
        for dq, dr in AXIAL_NEIGHBOURS:
            other = self._by_axial.get((q + dq, r + dr))
            if other is not None and cell_contains(lng, lat, other):
                return other
        return None

    def map_fixes(self, fixes: Iterable[LocationFix]) -> List[HexCell]:
        """Return the distinct cells entered by *fixes*, in first-hit order.

        Fixes outside the grid, on a cell edge, or malformed are ignored.
        """
        valid = [f for f in fixes if f.is_valid()]
        if not valid or not self._by_axial:
            return []

        lngs = np.fromiter((f.longitude for f in valid), dtype=float, count=len(valid))
        lats = np.fromiter((f.latitude for f in valid), dtype=float, count=len(valid))
        qs, rs = self._lattice.axial_at(lngs, lats)

        # Fast path: confirm every candidate in one vectorised call
        candidates = [self._by_axial.get((int(q), int(r))) for q, r in zip(qs, rs)]
        inside = np.zeros(len(valid), dtype=bool)
        present = [i for i, c in enumerate(candidates) if c is not None]
        if present:
            polys = np.array([candidates[i].polygon for i in present], dtype=object)
            inside[present] = shapely.contains_xy(polys, lngs[present], lats[present])

        seen: Dict[int, HexCell] = {}
        for i, fix in enumerate(valid):
            if inside[i]:
                cell = candidates[i]
            else:
                cell = self._resolve(int(qs[i]), int(rs[i]), fix.longitude, fix.latitude)
            if cell is not None and cell.index not in seen:
                seen[cell.index] = cell

        log.debug(
            "Mapped %d fixes to %d cells", len(valid), len(seen),
        )
        return list(seen.values())
