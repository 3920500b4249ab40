"""Remote backend access: error taxonomy and HTTP transport helpers."""
from __future__ import annotations

import logging
import time
from typing import Optional

import requests

log = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 15  # seconds


class BackendError(Exception):
    """The backend rejected a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientBackendError(BackendError):
    """Network error, timeout or 5xx; worth trying again later."""


class AuthError(BackendError):
    """No signed-in user, or the session was refused (401/403)."""


def request_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = _DEFAULT_TIMEOUT,
    retries: int = 2,
    backoff: float = 2.0,
    **kwargs,
) -> requests.Response:
    """Send a request with automatic retry on transient failures.

    Retries on connection errors, timeouts, and 5xx responses.  Any
    response below 500 is returned as-is for the caller to interpret.
    Only use ``retries > 0`` for idempotent requests.
    """
    last_exc: Optional[Exception] = None
    resp: Optional[requests.Response] = None
    for attempt in range(1, retries + 2):  # 1 initial + retries
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
            if resp.status_code < 500:
                return resp
            log.warning("HTTP %d from %s %s (attempt %d/%d)",
                        resp.status_code, method, url[:80], attempt, retries + 1)
        except (requests.ConnectionError, requests.Timeout) as exc:
            last_exc = exc
            resp = None
            log.warning("Network error on %s %s (attempt %d/%d): %s",
                        method, url[:80], attempt, retries + 1, exc)

        if attempt <= retries:
            time.sleep(backoff * attempt)

    if resp is not None:
        return resp
    raise last_exc or requests.ConnectionError(f"Failed after {retries + 1} attempts")
