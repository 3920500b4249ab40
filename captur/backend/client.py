"""
Backend client — REST access to the hosted Postgres backend.

Talks to the PostgREST data API (``/rest/v1``) and the auth API
(``/auth/v1``) over plain HTTP.  The core only needs three primitives:

1. **insert** — append a row to a table (``locations``, ``reports``, ...).
2. **select** — equality / range / order / limit query.
3. **rpc**    — call a server-side function (atomic token increment).

Plus the auth session lifecycle (sign in, refresh, sign out, current
user).  The session is persisted in the local key-value store so that a
background context started after a restart can still attribute fixes.

Usage
-----
    client = SupabaseClient(url, anon_key, session_store=store)
    client.sign_in_with_password("me@example.com", "secret")
    client.insert("locations", {"user_id": client.current_user_id(), ...})
    rows = client.select("locations", eq={"user_id": uid},
                         order="created_at", limit=500)
"""
from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

import requests

from . import (
    AuthError,
    BackendError,
    TransientBackendError,
    _DEFAULT_TIMEOUT,
    request_with_retry,
)

log = logging.getLogger(__name__)

SESSION_KEY = "auth:session"

_UA = "captur/1.0 python-requests"


class SupabaseClient:
    """Thin, thread-safe wrapper over the backend's REST endpoints."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        session_store=None,
        http: Optional[requests.Session] = None,
        timeout: float = _DEFAULT_TIMEOUT,
        read_retries: int = 2,
    ):
        self._base = url.rstrip("/")
        self._anon_key = anon_key
        self._store = session_store
        self._timeout = timeout
        self._read_retries = read_retries

        self._http = http or requests.Session()
        self._http.headers["apikey"] = anon_key
        self._http.headers["User-Agent"] = _UA

        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._user: Optional[Dict[str, Any]] = None
        self._restore_session()

    # ── Transport ─────────────────────────────────────────────────────

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self._access_token or self._anon_key}"}
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        retries: int = 0,
        headers: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> requests.Response:
        url = f"{self._base}{path}"
        try:
            resp = request_with_retry(
                self._http, method, url,
                timeout=self._timeout, retries=retries,
                headers=self._headers(headers), **kwargs,
            )
        except requests.RequestException as exc:
            raise TransientBackendError(f"{method} {path}: {exc}") from exc

        if resp.status_code in (401, 403):
            raise AuthError(f"{method} {path}: {_error_text(resp)}", resp.status_code)
        if resp.status_code >= 500:
            raise TransientBackendError(f"{method} {path}: {_error_text(resp)}", resp.status_code)
        if resp.status_code >= 400:
            raise BackendError(f"{method} {path}: {_error_text(resp)}", resp.status_code)
        return resp

    # ── Auth session ──────────────────────────────────────────────────

    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        resp = self._request(
            "POST", "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        data = _json(resp)
        self._set_session(data)
        log.info("Signed in as %s", (self._user or {}).get("id"))
        return data

    def refresh_session(self) -> Dict[str, Any]:
        if not self._refresh_token:
            raise AuthError("No refresh token")
        resp = self._request(
            "POST", "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self._refresh_token},
        )
        data = _json(resp)
        self._set_session(data)
        return data

    def sign_out(self) -> None:
        """End the local session.  The remote logout is best-effort."""
        if self._access_token:
            try:
                self._request("POST", "/auth/v1/logout", params={"scope": "local"})
            except BackendError as exc:
                log.warning("Remote sign-out failed: %s", exc)
        with self._lock:
            self._access_token = None
            self._refresh_token = None
            self._user = None
        if self._store is not None:
            self._store.delete(SESSION_KEY)
        log.info("Signed out")

    def get_user(self) -> Dict[str, Any]:
        """Fetch the signed-in user from the auth API."""
        if not self._access_token:
            raise AuthError("Not signed in")
        resp = self._request("GET", "/auth/v1/user", retries=self._read_retries)
        user = _json(resp)
        with self._lock:
            self._user = user
        return user

    def current_user_id(self) -> Optional[str]:
        """Id of the signed-in user, without a network call once known."""
        with self._lock:
            if self._user and self._user.get("id"):
                return self._user["id"]
        if not self._access_token:
            return None
        try:
            return self.get_user().get("id")
        except BackendError as exc:
            log.debug("Could not resolve current user: %s", exc)
            return None

    def _set_session(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            self._access_token = data.get("access_token")
            self._refresh_token = data.get("refresh_token", self._refresh_token)
            if data.get("user"):
                self._user = dict(data["user"])
        if self._store is not None:
            self._store.set(SESSION_KEY, json.dumps({
                "access_token": self._access_token,
                "refresh_token": self._refresh_token,
                "user": self._user,
            }))

    def _restore_session(self) -> None:
        if self._store is None:
            return
        raw = self._store.get(SESSION_KEY)
        if not raw:
            return
        try:
            data = json.loads(raw)
        except ValueError:
            log.warning("Stored auth session is unreadable; ignoring it")
            return
        self._access_token = data.get("access_token")
        self._refresh_token = data.get("refresh_token")
        self._user = data.get("user")

    # ── Data API ──────────────────────────────────────────────────────

    def insert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        returning: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Insert one row.  With *returning* (a column list) the stored row
        is returned; otherwise an empty list.  Never retried.
        """
        params = {}
        prefer = "return=minimal"
        if returning:
            params["select"] = returning
            prefer = "return=representation"
        resp = self._request(
            "POST", f"/rest/v1/{table}",
            params=params, json=dict(row),
            headers={"Prefer": prefer},
        )
        if returning:
            return _json(resp)
        return []

    def select(
        self,
        table: str,
        columns: str = "*",
        *,
        eq: Optional[Mapping[str, Any]] = None,
        gte: Optional[Mapping[str, Any]] = None,
        lte: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Query rows with PostgREST filters."""
        params: List = [("select", columns)]
        for col, val in (eq or {}).items():
            params.append((col, f"eq.{val}"))
        for col, val in (gte or {}).items():
            params.append((col, f"gte.{val}"))
        for col, val in (lte or {}).items():
            params.append((col, f"lte.{val}"))
        if order:
            params.append(("order", f"{order}.{'asc' if ascending else 'desc'}"))
        if limit is not None:
            params.append(("limit", str(int(limit))))

        resp = self._request(
            "GET", f"/rest/v1/{table}", params=params, retries=self._read_retries,
        )
        return _json(resp)

    def rpc(self, function: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Call a server-side function.  Never retried."""
        resp = self._request(
            "POST", f"/rest/v1/rpc/{function}", json=dict(params or {}),
        )
        if not resp.content:
            return None
        return _json(resp)


def _error_text(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("msg") or body.get("error_description")
                   or body.get("error") or f"HTTP {resp.status_code}")
    return f"HTTP {resp.status_code}"


def _json(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise BackendError(
            f"Unreadable response body (HTTP {resp.status_code}): {exc}", resp.status_code,
        ) from exc
