"""
SQLite-backed durable key-value storage.

Holds the pending-location queue, the persisted auth session and a few
app settings.  Survives process restarts; shared by the foreground app
and the background location task, which may both write at once.

Usage
-----
    store = KeyValueStore()
    store.set("appSettings:debugOfflineMode", "true")
    for key in store.keys(prefix="pending_location_"):
        print(key, store.get(key))
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

log = logging.getLogger(__name__)

_DEFAULT_DB = Path(__file__).resolve().parent.parent.parent / "data" / "captur_local.db"

SETTINGS_PREFIX = "appSettings:"
DEBUG_OFFLINE_KEY = f"{SETTINGS_PREFIX}debugOfflineMode"


class KeyValueStore:
    """Persistent string → string map.

    Thread-safe: uses check_same_thread=False and serialises writes
    through a lock.  Every write is committed immediately; a second
    process on the same file is arbitrated by SQLite's own locking.
    """

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 30.0):
        self._path = Path(db_path) if db_path else _DEFAULT_DB
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self._path), check_same_thread=False, timeout=timeout,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._write_lock = threading.Lock()
        self._create_tables()
        log.info("KeyValueStore opened: %s", self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key     TEXT PRIMARY KEY,
                value   TEXT NOT NULL
            );
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._write_lock:
            row = self._conn.execute(
                "SELECT value FROM kv WHERE key = ?", (key,),
            ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        """Insert or overwrite *key*."""
        with self._write_lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value),
            )
            self._conn.commit()

    def add(self, key: str, value: str) -> bool:
        """Insert *key* only if absent.  Returns False if it already exists."""
        with self._write_lock:
            try:
                self._conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?)", (key, value),
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                return False
            self._conn.commit()
        return True

    def delete(self, key: str) -> None:
        """Remove *key*; a missing key is not an error."""
        with self._write_lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()

    def keys(self, prefix: str = "") -> List[str]:
        """All keys starting with *prefix*, in sorted order."""
        with self._write_lock:
            rows = self._conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            log.debug("KeyValueStore close failed: %s", exc)


# ── Debug settings ────────────────────────────────────────────────────

def set_debug_offline(store: KeyValueStore, value: bool) -> None:
    """Force every remote location write to fail (test/dev hook)."""
    store.set(DEBUG_OFFLINE_KEY, "true" if value else "false")


def get_debug_offline(store: KeyValueStore) -> bool:
    return store.get(DEBUG_OFFLINE_KEY) == "true"
