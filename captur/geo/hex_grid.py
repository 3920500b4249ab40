"""
Hexagonal visitation grid.

The area around the user is tessellated into flat-top regular hexagons
with a 100 m edge.  Cells sit on a global lattice anchored at (0°, 0°),
so a cell's axial coordinate ``(q, r)`` depends only on where it is and
on the grid's reference latitude, never on the bounding box that
happened to produce it.

Distances use the flat small-area approximation of 111 km per degree of
latitude and ``111·cos(ref_lat)`` km per degree of longitude.  The
reference latitude is rounded to a whole degree so every grid generated
in the same region lands on the same lattice.

Usage
-----
    grid = generate_grid(center_lng=4.89, center_lat=52.37, radius_km=10)
    print(f"{len(grid)} cells")
    cell = grid.cells[0]
    cell_contains(cell.center[0], cell.center[1], cell)   # True
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import AbstractSet, Iterator, List, Optional, Tuple

import numpy as np
import shapely
from shapely.geometry import Polygon

KM_PER_DEGREE = 111.0
HEX_SIZE_KM = 0.1          # edge length == circumradius of a regular hexagon

_SQRT3 = math.sqrt(3.0)
_ANGLES = np.arange(6) * (math.pi / 3.0)

# Axial offsets of the six neighbours of a flat-top hexagon
AXIAL_NEIGHBOURS: Tuple[Tuple[int, int], ...] = (
    (1, 0), (1, -1), (0, -1), (-1, 0), (-1, 1), (0, 1),
)


@dataclass(frozen=True)
class BoundingBox:
    """Geographic bounding box in degrees.

    Frozen: expansion produces a new box, so a published box is never
    observed half-updated.
    """

    min_lng: float
    max_lng: float
    min_lat: float
    max_lat: float

    @classmethod
    def around(cls, lng: float, lat: float, radius_km: float) -> "BoundingBox":
        d = radius_km / KM_PER_DEGREE
        return cls(
            min_lng=lng - d,
            max_lng=lng + d,
            min_lat=lat - d,
            max_lat=lat + d,
        )

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.min_lng + self.max_lng) / 2.0, (self.min_lat + self.max_lat) / 2.0)

    def expanded(
        self,
        *,
        west: bool = False,
        east: bool = False,
        south: bool = False,
        north: bool = False,
        step_km: float = 1.0,
    ) -> "BoundingBox":
        """Return a copy with the flagged edges moved outward by *step_km*."""
        d = step_km / KM_PER_DEGREE
        return BoundingBox(
            min_lng=self.min_lng - d if west else self.min_lng,
            max_lng=self.max_lng + d if east else self.max_lng,
            min_lat=self.min_lat - d if south else self.min_lat,
            max_lat=self.max_lat + d if north else self.max_lat,
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """``(min_lng, min_lat, max_lng, max_lat)``, shapely/GeoJSON order."""
        return (self.min_lng, self.min_lat, self.max_lng, self.max_lat)


@dataclass(frozen=True)
class HexLattice:
    """Scale of the global hexagon lattice, in degrees."""

    ref_lat: float
    size_km: float = HEX_SIZE_KM

    @classmethod
    def for_latitude(cls, lat: float, size_km: float = HEX_SIZE_KM) -> "HexLattice":
        return cls(ref_lat=float(round(lat)), size_km=size_km)

    @property
    def r_lat(self) -> float:
        return self.size_km / KM_PER_DEGREE

    @property
    def r_lng(self) -> float:
        return self.size_km / (KM_PER_DEGREE * math.cos(math.radians(self.ref_lat)))

    @property
    def step_lng(self) -> float:
        """Horizontal distance between adjacent columns."""
        return 1.5 * self.r_lng

    @property
    def step_lat(self) -> float:
        """Vertical distance between adjacent rows."""
        return _SQRT3 * self.r_lat

    def centers(self, q: np.ndarray, r: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        q = np.asarray(q, dtype=float)
        r = np.asarray(r, dtype=float)
        return q * self.step_lng, (r + q / 2.0) * self.step_lat

    def axial_at(self, lng, lat) -> Tuple[np.ndarray, np.ndarray]:
        """Axial coordinates of the lattice cell nearest to each point.

        Vectorised cube rounding; works on scalars or arrays.
        """
        x = np.asarray(lng, dtype=float) / self.r_lng
        y = np.asarray(lat, dtype=float) / self.r_lat

        qf = (2.0 / 3.0) * x
        rf = (-1.0 / 3.0) * x + (_SQRT3 / 3.0) * y
        sf = -qf - rf

        q = np.round(qf)
        r = np.round(rf)
        s = np.round(sf)

        dq = np.abs(q - qf)
        dr = np.abs(r - rf)
        ds = np.abs(s - sf)

        fix_q = (dq > dr) & (dq > ds)
        fix_r = ~fix_q & (dr > ds)
        q = np.where(fix_q, -r - s, q)
        r = np.where(fix_r, -q - s, r)
        return q.astype(np.int64), r.astype(np.int64)


@dataclass
class HexCell:
    """One hexagon in a grid generation."""

    index: int                              # position in the grid's cell list
    q: int                                  # axial column
    r: int                                  # axial row
    center: Tuple[float, float]             # (lng, lat)
    polygon: Polygon = field(repr=False)

    @property
    def cell_id(self) -> str:
        """Positional identity, valid only within one grid generation."""
        return str(self.index)

    @property
    def axial_id(self) -> str:
        """Spatial identity, stable across generations on the same lattice."""
        return f"{self.q}:{self.r}"

    @property
    def ring(self) -> List[Tuple[float, float]]:
        return list(self.polygon.exterior.coords)


@dataclass
class HexGrid:
    """One complete tessellation of a bounding box (a grid generation)."""

    bounds: BoundingBox
    lattice: HexLattice
    cells: List[HexCell]

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[HexCell]:
        return iter(self.cells)


# ── Public API ────────────────────────────────────────────────────────

def generate_grid(
    center_lng: float,
    center_lat: float,
    radius_km: float = 1.0,
    size_km: float = HEX_SIZE_KM,
) -> HexGrid:
    """Build the hexagon grid covering *radius_km* around a centre point.

    Parameters
    ----------
    center_lng, center_lat : float
        Centre of the grid in degrees.
    radius_km : float
        Half-width of the square bounding box, converted at 111 km/degree.
    size_km : float
        Hexagon edge length (default 0.1 km).

    Returns
    -------
    HexGrid
        Cells ordered west → east by column, south → north within a column.
    """
    bounds = BoundingBox.around(center_lng, center_lat, radius_km)
    return grid_for_bounds(bounds, HexLattice.for_latitude(center_lat, size_km))


def grid_for_bounds(bounds: BoundingBox, lattice: HexLattice) -> HexGrid:
    """Tessellate *bounds* with every lattice cell whose centre lies inside it.

    The caller guarantees ``min <= max`` on both axes.
    """
    # Column range, then the row range of each column (rows shift by
    # half a step on every column).
    q_min = math.ceil(bounds.min_lng / lattice.step_lng)
    q_max = math.floor(bounds.max_lng / lattice.step_lng)

    qs: List[int] = []
    rs: List[int] = []
    for q in range(q_min, q_max + 1):
        r_min = math.ceil(bounds.min_lat / lattice.step_lat - q / 2.0)
        r_max = math.floor(bounds.max_lat / lattice.step_lat - q / 2.0)
        for r in range(r_min, r_max + 1):
            qs.append(q)
            rs.append(r)

    if not qs:
        return HexGrid(bounds=bounds, lattice=lattice, cells=[])

    q_arr = np.array(qs, dtype=np.int64)
    r_arr = np.array(rs, dtype=np.int64)
    cx, cy = lattice.centers(q_arr, r_arr)

    vx = cx[:, None] + lattice.r_lng * np.cos(_ANGLES)[None, :]
    vy = cy[:, None] + lattice.r_lat * np.sin(_ANGLES)[None, :]
    ring = np.stack([vx, vy], axis=-1)
    ring = np.concatenate([ring, ring[:, :1, :]], axis=1)   # close ring
    polygons = shapely.polygons(ring)

    cells = [
        HexCell(
            index=i,
            q=int(q_arr[i]),
            r=int(r_arr[i]),
            center=(float(cx[i]), float(cy[i])),
            polygon=polygons[i],
        )
        for i in range(len(qs))
    ]
    return HexGrid(bounds=bounds, lattice=lattice, cells=cells)


def cell_contains(lng: float, lat: float, cell: HexCell) -> bool:
    """Strict point-in-cell test; points on an edge belong to no cell."""
    return bool(shapely.contains_xy(cell.polygon, lng, lat))


def cells_to_geojson(
    cells: List[HexCell],
    visited: Optional[AbstractSet[str]] = None,
    key=None,
) -> dict:
    """Export cells as a GeoJSON FeatureCollection.

    *key* maps a cell to the identifier looked up in *visited*
    (default: the positional ``cell_id``).
    """
    key = key or (lambda c: c.cell_id)
    visited = visited or frozenset()
    features = []
    for c in cells:
        cid = key(c)
        features.append({
            "type": "Feature",
            "properties": {
                "cell_id": cid,
                "index": c.index,
                "q": c.q,
                "r": c.r,
                "visited": cid in visited,
            },
            "geometry": {
                "type": "Polygon",
                "coordinates": [[(round(lng, 6), round(lat, 6)) for lng, lat in c.ring]],
            },
        })

    return {
        "type": "FeatureCollection",
        "features": features,
    }
