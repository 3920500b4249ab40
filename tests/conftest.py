"""Shared fixtures: an in-memory backend double and a local store."""
from __future__ import annotations

import itertools
from typing import Any, Callable, Dict, List, Optional

import pytest

from captur.backend import TransientBackendError
from captur.geo.location import LocationFix
from captur.storage.kv_store import KeyValueStore
from captur.tracking.provider import LocationProvider


class FakeBackend:
    """Implements the client surface the core depends on, in memory."""

    def __init__(self, user_id: Optional[str] = "user-1"):
        self.user_id = user_id
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.rpc_calls: List[tuple] = []
        self.offline = False
        self.reject: Optional[Callable[[str, Dict[str, Any]], bool]] = None
        self.signed_out = False
        self._ids = itertools.count(1)

    def current_user_id(self) -> Optional[str]:
        return self.user_id

    def insert(self, table, row, *, returning=None):
        if self.offline:
            raise TransientBackendError("network unreachable")
        if self.reject is not None and self.reject(table, dict(row)):
            raise TransientBackendError("rejected")
        stored = dict(row)
        stored.setdefault("id", next(self._ids))
        self.tables.setdefault(table, []).append(stored)
        return [{"id": stored["id"]}] if returning else []

    def select(self, table, columns="*", *, eq=None, gte=None, lte=None,
               order=None, ascending=True, limit=None):
        if self.offline:
            raise TransientBackendError("network unreachable")
        rows = [r for r in self.tables.get(table, [])
                if all(r.get(k) == v for k, v in (eq or {}).items())]
        if order:
            rows.sort(key=lambda r: r.get(order), reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    def rpc(self, function, params=None):
        if self.offline:
            raise TransientBackendError("network unreachable")
        self.rpc_calls.append((function, dict(params or {})))
        return None

    def sign_out(self):
        self.signed_out = True
        self.user_id = None

    def rows(self, table="locations"):
        return self.tables.get(table, [])


class FakeProvider(LocationProvider):
    def __init__(self, grant: bool = True):
        self.grant = grant
        self.permission_requests = 0
        self.background_requested = None
        self.callback = None
        self.config = None
        self.stop_calls = 0

    def request_permission(self, background=False):
        self.permission_requests += 1
        self.background_requested = background
        return self.grant

    def start_watch(self, callback, config):
        self.callback = callback
        self.config = config

    def stop_watch(self):
        self.stop_calls += 1
        self.callback = None

    def is_registered(self):
        return self.callback is not None

    def emit(self, fix: LocationFix):
        return self.callback(fix)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def store(tmp_path):
    kv = KeyValueStore(tmp_path / "local.db")
    yield kv
    kv.close()


@pytest.fixture
def provider():
    return FakeProvider()


def nearest_cell(cells, lng, lat):
    return min(cells, key=lambda c: (c.center[0] - lng) ** 2 + (c.center[1] - lat) ** 2)
