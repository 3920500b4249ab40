"""
Platform location provider interface.

The platform delivers raw fixes through a foreground watch (high
accuracy, frequent) and a background-registered task (balanced accuracy,
OS-scheduled).  Concrete providers wrap the platform SDK; the tracking
session only talks to this interface.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from ..geo.location import LocationFix

FixCallback = Callable[[LocationFix], None]


@dataclass(frozen=True)
class WatchConfig:
    accuracy: str          # "high" | "balanced" | "low"
    interval_s: float      # minimum time between fixes
    distance_m: float      # minimum movement between fixes


FOREGROUND_WATCH = WatchConfig(accuracy="high", interval_s=1.0, distance_m=10.0)
BACKGROUND_WATCH = WatchConfig(accuracy="balanced", interval_s=30.0, distance_m=100.0)


class LocationProvider(ABC):
    """Source of raw GPS fixes."""

    @abstractmethod
    def request_permission(self, background: bool = False) -> bool:
        """Ask the user for location access.  True when granted."""

    @abstractmethod
    def start_watch(self, callback: FixCallback, config: WatchConfig) -> None:
        """Begin delivering fixes to *callback*."""

    @abstractmethod
    def stop_watch(self) -> None:
        """Stop delivering fixes.  Must be idempotent."""

    @abstractmethod
    def is_registered(self) -> bool:
        """True while a watch is active."""
