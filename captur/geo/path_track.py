"""
Travelled path for the map's line layer.

Seeded once from location history, then extended with every live fix.
"""
from __future__ import annotations

import threading
from typing import Iterable, List, Tuple

from .location import LocationFix


class LocationPath:
    """Ordered list of ``(lng, lat)`` points, oldest first."""

    def __init__(self) -> None:
        self._coords: List[Tuple[float, float]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._coords)

    @property
    def coordinates(self) -> List[Tuple[float, float]]:
        with self._lock:
            return list(self._coords)

    def extend(self, fixes: Iterable[LocationFix]) -> None:
        points = [(f.longitude, f.latitude) for f in fixes if f.is_valid()]
        with self._lock:
            self._coords.extend(points)

    def add_fix(self, fix: LocationFix) -> None:
        if not fix.is_valid():
            return
        with self._lock:
            self._coords.append((fix.longitude, fix.latitude))

    def to_geojson(self) -> dict:
        return {
            "type": "Feature",
            "geometry": {
                "type": "LineString",
                "coordinates": [list(p) for p in self.coordinates],
            },
            "properties": {},
        }
