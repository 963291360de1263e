"""Load engine settings from a JSON profile and environment overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)

DB_PATH_ENV = "ROSTERFLOW_DB_PATH"
BATCH_SIZE_ENV = "ROSTERFLOW_BATCH_SIZE"
MAX_WORKERS_ENV = "ROSTERFLOW_MAX_WORKERS"
WRITE_TIMEOUT_ENV = "ROSTERFLOW_WRITE_TIMEOUT"
HISTORY_LIMIT_ENV = "ROSTERFLOW_HISTORY_LIMIT"


def _env_float(name: str, default: float, *, clamp_min: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid float for %s: %s; using default %.2f", name, raw, default)
        return default
    if clamp_min is not None:
        value = max(clamp_min, value)
    return value


def _env_int(name: str, default: int, *, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid int for %s: %s; using default %d", name, raw, default)
        return default
    if min_value is not None:
        value = max(min_value, value)
    return value


@dataclass
class EngineSettings:
    db_path: str = "rosterflow.sqlite"
    batch_size: int = 500
    max_workers: int = 4
    write_timeout: float = 5.0
    history_limit: int = 50

    @classmethod
    def load(cls, path: Path) -> "EngineSettings":
        data = json.loads(path.read_text(encoding="utf-8"))
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown settings in %s: %s", path, ", ".join(unknown))
        return cls(**{key: value for key, value in data.items() if key in known})

    def save(self, path: Path) -> None:
        path.write_text(json.dumps(asdict(self), indent=2), encoding="utf-8")

    def with_env_overrides(self) -> "EngineSettings":
        return replace(
            self,
            db_path=os.getenv(DB_PATH_ENV) or self.db_path,
            batch_size=_env_int(BATCH_SIZE_ENV, self.batch_size, min_value=1),
            max_workers=_env_int(MAX_WORKERS_ENV, self.max_workers, min_value=1),
            write_timeout=_env_float(WRITE_TIMEOUT_ENV, self.write_timeout, clamp_min=0.1),
            history_limit=_env_int(HISTORY_LIMIT_ENV, self.history_limit, min_value=1),
        )

    @classmethod
    def resolve(cls, profile: Optional[Path] = None) -> "EngineSettings":
        """Defaults, then the JSON profile if given, then environment variables."""

        base = cls.load(profile) if profile is not None else cls()
        return base.with_env_overrides()
