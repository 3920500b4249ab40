"""
Durable location logger — store-and-forward for GPS fixes.

Every fix is first written straight to the ``locations`` table.  When
that fails (network down, session refused, backend rejection, or the
debug offline switch) the fix is queued in the local key-value store
under a unique ``pending_location_<ns>`` key.  ``sync_pending`` later
replays the queue and deletes each key only after the backend accepted
its row.

Per-fix states
──────────────
  PERSISTED   remote insert accepted
  QUEUED      remote insert failed, record stored locally
  SKIPPED     fix had no usable coordinates; nothing written
  LOST        remote insert failed and the local write failed too

Delivery is at-least-once: a crash between a successful replay and the
key deletion replays the same record again on the next pass, so the
backend may receive a duplicate row.  It never silently loses one.

Usage
-----
    logger = DurableLocationLogger(client, store)
    state = logger.log_fix(fix)
    result = logger.sync_pending()
    if not result.complete:
        print(f"{result.remaining} locations still waiting")
"""
from __future__ import annotations

import enum
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

from ..backend import BackendError
from ..geo.location import LocationFix, PendingLocationRecord
from .kv_store import KeyValueStore, get_debug_offline

log = logging.getLogger(__name__)

PENDING_PREFIX = "pending_location_"
LOCATIONS_TABLE = "locations"


class FixState(enum.Enum):
    PERSISTED = "persisted"
    QUEUED = "queued"
    SKIPPED = "skipped"
    LOST = "lost"


@dataclass
class SyncResult:
    """Outcome of one sync pass."""
    attempted: int = 0
    synced: int = 0
    remaining: int = 0

    @property
    def complete(self) -> bool:
        return self.remaining == 0


class DurableLocationLogger:
    """Writes fixes to the backend, queueing them locally when it can't."""

    def __init__(self, client, store: KeyValueStore):
        self._client = client
        self._store = store
        self._sync_lock = threading.Lock()
        self._key_lock = threading.Lock()
        self._last_ns = 0

    # ── Logging ───────────────────────────────────────────────────────

    def log_fix(self, fix: LocationFix) -> FixState:
        """Persist one fix remotely, or queue it for a later sync."""
        if not fix.is_valid():
            log.debug("Ignoring fix without usable coordinates: %s", fix)
            return FixState.SKIPPED

        user_id = self._client.current_user_id()

        try:
            offline = get_debug_offline(self._store)
        except sqlite3.Error as exc:
            log.error("Could not read debug settings: %s", exc)
            offline = False

        if offline:
            log.debug("Debug offline mode: forcing local queue")
            return self._enqueue(fix, user_id)

        if not user_id:
            log.warning("DB log failed: not signed in")
            return self._enqueue(fix, user_id)

        try:
            self._client.insert(LOCATIONS_TABLE, fix.as_row(user_id))
        except BackendError as exc:
            log.warning("DB log failed: %s", exc)
            return self._enqueue(fix, user_id)

        log.debug("Location logged: %.6f, %.6f", fix.latitude, fix.longitude)
        return FixState.PERSISTED

    def _enqueue(self, fix: LocationFix, user_id: Optional[str]) -> FixState:
        try:
            for _ in range(100):
                key = self._next_key()
                record = PendingLocationRecord.from_fix(key, fix, user_id)
                if self._store.add(key, json.dumps(record.as_dict())):
                    log.info("Queued location locally: %s", key)
                    return FixState.QUEUED
            log.error("Local storage failed: no free pending key")
        except (sqlite3.Error, TypeError, ValueError) as exc:
            log.error("Local storage failed: %s", exc)
        return FixState.LOST

    def _next_key(self) -> str:
        # Monotonic within the process; another process colliding on the
        # same nanosecond is caught by KeyValueStore.add refusing the key.
        with self._key_lock:
            ns = max(time.time_ns(), self._last_ns + 1)
            self._last_ns = ns
        return f"{PENDING_PREFIX}{ns:020d}"

    # ── Queue ─────────────────────────────────────────────────────────

    def pending_keys(self) -> List[str]:
        return self._store.keys(prefix=PENDING_PREFIX)

    def pending_records(self) -> List[PendingLocationRecord]:
        records = []
        for key in self.pending_keys():
            raw = self._store.get(key)
            if raw is None:
                continue
            try:
                records.append(PendingLocationRecord.from_dict(key, json.loads(raw)))
            except (KeyError, TypeError, ValueError):
                log.warning("Unreadable pending record %s", key)
        return records

    def sync_pending(self) -> SyncResult:
        """Replay every queued record; delete each one the backend accepts.

        Safe to call at any time and from several threads; passes within
        one process run one after another.
        """
        result = SyncResult()
        with self._sync_lock:
            try:
                self._sync_once(result)
            except sqlite3.Error as exc:
                log.error("Sync failed: local storage error: %s", exc)
        return result

    def _sync_once(self, result: SyncResult) -> None:
        keys = self.pending_keys()
        if not keys:
            return

        if get_debug_offline(self._store):
            log.info("Debug offline mode: %d locations left queued", len(keys))
            result.remaining = len(keys)
            return

        current_user = self._client.current_user_id()

        for key in keys:
            raw = self._store.get(key)
            if raw is None:
                # Synced by another context since we listed the keys
                continue
            try:
                record = PendingLocationRecord.from_dict(key, json.loads(raw))
            except (KeyError, TypeError, ValueError) as exc:
                log.error("Dropping unreadable pending record %s: %s", key, exc)
                self._store.delete(key)
                continue

            if not record.user_id:
                record.user_id = current_user
            if not record.user_id:
                result.remaining += 1
                continue

            result.attempted += 1
            try:
                self._client.insert(LOCATIONS_TABLE, record.as_row())
            except BackendError as exc:
                log.warning("Sync of %s failed: %s", key, exc)
                result.remaining += 1
                continue

            try:
                self._store.delete(key)
            except sqlite3.Error as exc:
                # Row is upstream; the record will be replayed next pass
                log.error("Could not dequeue %s after sync: %s", key, exc)
                result.remaining += 1
                continue
            result.synced += 1

        log.info(
            "Sync pass: %d synced, %d attempted, %d remaining",
            result.synced, result.attempted, result.remaining,
        )
