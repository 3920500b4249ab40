"""
Location history loader.

Fetches the first *limit* fixes the signed-in user ever stored, oldest
first, for seeding the visited-cell set and drawing the travelled path.  A
single bounded query; no pagination.

Usage
-----
    from captur.backend.history import fetch_location_history
    fixes = fetch_location_history(client, limit=500)
"""
from __future__ import annotations

import logging
from typing import List

from . import BackendError
from ..geo.location import LocationFix

log = logging.getLogger(__name__)

HISTORY_LIMIT = 500
_COLUMNS = "latitude,longitude,speed,created_at"


def fetch_location_history(client, limit: int = HISTORY_LIMIT) -> List[LocationFix]:
    """Return the current user's earliest *limit* fixes, oldest first.

    Returns an empty list when nobody is signed in or the query fails.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")

    user_id = client.current_user_id()
    if not user_id:
        log.info("No signed-in user; history not loaded")
        return []

    try:
        rows = client.select(
            "locations",
            _COLUMNS,
            eq={"user_id": user_id},
            order="created_at",
            ascending=True,
            limit=limit,
        )
    except BackendError as exc:
        log.warning("Fetch history failed: %s", exc)
        return []

    fixes: List[LocationFix] = []
    for row in rows or []:
        fix = LocationFix.from_mapping(row)
        if fix is None or not fix.is_valid():
            continue
        fixes.append(fix)

    log.info("Loaded %d/%d history fixes", len(fixes), len(rows or []))
    return fixes
