from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from .backend.history import HISTORY_LIMIT
from .backend.rewards import TOKENS_PER_CELL
from .geo.visitation import INITIAL_RADIUS_KM
from .tracking.scheduler import SYNC_INTERVAL_S

ENV_PREFIX = "CAPTUR_"


@dataclass
class CapturConfig:
    supabase_url: str = ""
    supabase_anon_key: str = ""
    db_path: Optional[Path] = None          # None → data/captur_local.db
    log_dir: Optional[Path] = None          # None → logs/
    history_limit: int = HISTORY_LIMIT
    initial_radius_km: float = INITIAL_RADIUS_KM
    sync_interval_s: float = SYNC_INTERVAL_S
    reward_amount: int = TOKENS_PER_CELL
    cell_identity: str = "index"

    def __post_init__(self) -> None:
        if self.db_path is not None:
            self.db_path = Path(self.db_path)
        if self.log_dir is not None:
            self.log_dir = Path(self.log_dir)
        self.history_limit = int(self.history_limit)
        self.initial_radius_km = float(self.initial_radius_km)
        self.sync_interval_s = float(self.sync_interval_s)
        self.reward_amount = int(self.reward_amount)

    @classmethod
    def from_env(cls, environ=None) -> "CapturConfig":
        """Read ``CAPTUR_<FIELD>`` variables, e.g. ``CAPTUR_SUPABASE_URL``."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw not in (None, ""):
                values[f.name] = raw
        return cls(**values)

    @classmethod
    def from_json(cls, path: Path) -> "CapturConfig":
        with Path(path).open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise KeyError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")
        return cls(**data)
