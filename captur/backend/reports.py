"""
Crowd-sourced road-condition reports.

A report is a typed marker (crash, police, roadworks, ...) attached to a
row in the ``locations`` table.  Other users confirm or reject it through
``report_validations``.  The map shows active reports from the last six
hours.

Usage
-----
    from captur.backend.reports import submit_report, fetch_active_reports
    submit_report(client, "Police", fix)
    reports = fetch_active_reports(client)
    geojson = reports_to_geojson(reports)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from . import AuthError, BackendError
from ..geo.location import LocationFix

log = logging.getLogger(__name__)

REPORT_TYPES = (
    "Crash",
    "Congestion",
    "Police",
    "Roadworks",
    "Lane closure",
    "Object on road",
)

ACTIVE_WINDOW_HOURS = 6.0

_REPORT_COLUMNS = "id,type,created_at,status,locations:location_id(latitude,longitude)"


@dataclass
class CommunityReport:
    """One active report, resolved to its coordinates."""
    id: int
    type: str
    created_at: str
    latitude: float
    longitude: float

    @property
    def icon(self) -> str:
        """Map symbol key, e.g. ``"lane_closure"``."""
        return self.type.lower().replace(" ", "_")


def submit_report(client, report_type: str, fix: LocationFix) -> int:
    """Store the reporter's location, then the report pointing at it.

    Returns the new location row id.  Raises ``ValueError`` for an
    unknown type or malformed fix and ``BackendError`` on remote failure.
    """
    if report_type not in REPORT_TYPES:
        raise ValueError(f"Unknown report type '{report_type}'")
    if not fix.is_valid():
        raise ValueError("Report needs a valid location")

    user_id = client.current_user_id()
    if not user_id:
        raise AuthError("User not logged in")

    rows = client.insert("locations", fix.as_row(user_id), returning="id")
    if not rows:
        raise BackendError("Location insert returned no id")
    location_id = rows[0]["id"]

    client.insert("reports", {
        "type": report_type,
        "user_id": user_id,
        "location_id": location_id,
    })
    log.info("Report sent: %s at %.5f, %.5f", report_type, fix.latitude, fix.longitude)
    return location_id


def validate_report(client, report_id: int, is_valid: bool) -> None:
    """Record the current user's vote on a report."""
    user_id = client.current_user_id()
    if not user_id:
        raise AuthError("User not logged in")
    client.insert("report_validations", {
        "report_id": report_id,
        "user_id": user_id,
        "is_valid": is_valid,
    })


def fetch_active_reports(
    client,
    hours: float = ACTIVE_WINDOW_HOURS,
    now: Optional[datetime] = None,
) -> List[CommunityReport]:
    """Active reports created in the last *hours*.

    Reports whose location could not be joined are dropped.  Returns an
    empty list on remote failure.
    """
    now = now or datetime.now(timezone.utc)
    since = (now - timedelta(hours=hours)).isoformat()
    try:
        rows = client.select(
            "reports",
            _REPORT_COLUMNS,
            eq={"status": "active"},
            gte={"created_at": since},
        )
    except BackendError as exc:
        log.warning("Error fetching community reports: %s", exc)
        return []

    reports: List[CommunityReport] = []
    for row in rows or []:
        loc = _first_location(row.get("locations"))
        if loc is None:
            continue
        try:
            reports.append(CommunityReport(
                id=row["id"],
                type=row.get("type", ""),
                created_at=row.get("created_at", ""),
                latitude=float(loc["latitude"]),
                longitude=float(loc["longitude"]),
            ))
        except (KeyError, TypeError, ValueError) as exc:
            log.debug("Skipping malformed report row: %s", exc)
    return reports


def _first_location(value: Any) -> Optional[Dict[str, Any]]:
    # The join yields either an object or a list depending on the FK shape
    if isinstance(value, list):
        return value[0] if value else None
    return value or None


def reports_to_geojson(reports: List[CommunityReport]) -> dict:
    """Point features for the report symbol layer."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {
                    "type": "Point",
                    "coordinates": [r.longitude, r.latitude],
                },
                "properties": {
                    "id": r.id,
                    "type": r.type,
                    "icon": r.icon,
                },
            }
            for r in reports
        ],
    }
