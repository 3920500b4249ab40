"""
Reward coordinator — credits the user's token ledger for new cells.

The balance lives server-side and is only ever changed through the
``increment_token_balance`` RPC, which increments atomically.  The
client never reads, adds and writes back, so two devices rewarding at
once cannot lose an update.

The RPC itself does not deduplicate: the grid manager emits each cell id
at most once per visited-set lifetime and this class makes exactly one
call per event.  A failed call is logged and dropped.
"""
from __future__ import annotations

import logging
import threading

from . import BackendError

log = logging.getLogger(__name__)

REWARD_RPC = "increment_token_balance"
TOKENS_PER_CELL = 1


class RewardCoordinator:
    """Turns "newly visited" events into token increments."""

    def __init__(self, client, amount: int = TOKENS_PER_CELL):
        self._client = client
        self._amount = amount
        self._lock = threading.Lock()
        self.rewarded = 0
        self.dropped = 0

    def on_new_cell_visited(self, cell_id: str) -> bool:
        """Issue one atomic increment.  Returns True when the backend accepted it."""
        user_id = self._client.current_user_id()
        if not user_id:
            log.warning("Token reward for cell %s dropped: not signed in", cell_id)
            self._count(ok=False)
            return False

        try:
            self._client.rpc(REWARD_RPC, {"user_id": user_id, "amount": self._amount})
        except BackendError as exc:
            log.error("Token reward for cell %s failed: %s", cell_id, exc)
            self._count(ok=False)
            return False

        log.debug("Rewarded %d token(s) for cell %s", self._amount, cell_id)
        self._count(ok=True)
        return True

    def _count(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.rewarded += 1
            else:
                self.dropped += 1
