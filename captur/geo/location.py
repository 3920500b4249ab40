"""
Location fix data model.

A ``LocationFix`` is one GPS sample as delivered by the platform location
provider (foreground watch or background task) or read back from the
``locations`` table.  Fixes are immutable once captured.

Example
-------
    fix = LocationFix(latitude=52.37, longitude=4.89, speed=1.4)
    fix.is_valid()        # True
    fix.as_row("user-1")  # payload for the locations table
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class LocationFix:
    """One GPS sample."""

    latitude: float
    longitude: float
    speed: Optional[float] = None          # m/s, when the provider reports it
    timestamp: Optional[int] = None        # ms since epoch

    def is_valid(self) -> bool:
        """True when both coordinates are finite and inside WGS84 range."""
        try:
            lat = float(self.latitude)
            lng = float(self.longitude)
        except (TypeError, ValueError):
            return False
        if not (math.isfinite(lat) and math.isfinite(lng)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

    def as_row(self, user_id: Optional[str]) -> Dict[str, Any]:
        """Row for an insert into the ``locations`` table."""
        return {
            "user_id": user_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Optional["LocationFix"]:
        """Build a fix from a provider payload or a ``locations`` row.

        Accepts both the nested provider shape
        ``{"coords": {"latitude": .., "longitude": .., "speed": ..}, "timestamp": ..}``
        and the flat row shape ``{"latitude": .., "longitude": .., "created_at": ..}``.
        Returns None when coordinates are missing.
        """
        coords = data.get("coords") or data
        lat = coords.get("latitude")
        lng = coords.get("longitude")
        if lat is None or lng is None:
            return None

        ts = data.get("timestamp")
        if ts is None and data.get("created_at"):
            ts = _iso_to_epoch_ms(str(data["created_at"]))

        speed = coords.get("speed")
        try:
            return cls(
                latitude=float(lat),
                longitude=float(lng),
                speed=float(speed) if speed is not None else None,
                timestamp=int(ts) if ts is not None else None,
            )
        except (TypeError, ValueError):
            return None


@dataclass
class PendingLocationRecord:
    """A fix waiting in the durable queue for remote confirmation."""

    key: str
    user_id: Optional[str]
    latitude: float
    longitude: float
    speed: Optional[float] = None
    timestamp: Optional[int] = None
    enqueued_at: float = field(default_factory=time.time)

    @classmethod
    def from_fix(cls, key: str, fix: LocationFix, user_id: Optional[str]) -> "PendingLocationRecord":
        return cls(
            key=key,
            user_id=user_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            speed=fix.speed,
            timestamp=fix.timestamp,
        )

    def as_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
        }

    def as_dict(self) -> Dict[str, Any]:
        """Serialize to a flat dict (for the key-value store)."""
        return {
            "user_id": self.user_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
            "timestamp": self.timestamp,
            "enqueued_at": self.enqueued_at,
        }

    @classmethod
    def from_dict(cls, key: str, data: Mapping[str, Any]) -> "PendingLocationRecord":
        return cls(
            key=key,
            user_id=data.get("user_id"),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            speed=data.get("speed"),
            timestamp=data.get("timestamp"),
            enqueued_at=data.get("enqueued_at", 0.0),
        )


def _iso_to_epoch_ms(text: str) -> Optional[int]:
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return int(dt.timestamp() * 1000)
