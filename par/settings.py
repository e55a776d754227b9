from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("PAR_DB_PATH", "par.db")
    catalog_path: str = os.getenv("PAR_CATALOG_PATH", "examples/catalog.yaml")
    log_level: str = os.getenv("PAR_LOG_LEVEL", "INFO")

    # Control loop
    workers: int = _env_int("PAR_WORKERS", 3)
    requeue_after_s: float = _env_float("PAR_REQUEUE_AFTER_S", 10.0)
    backoff_base_s: float = _env_float("PAR_BACKOFF_BASE_S", 0.005)
    backoff_max_s: float = _env_float("PAR_BACKOFF_MAX_S", 1000.0)

    # Start the worker pool together with the API process.
    start_controller: bool = _env_bool("PAR_START_CONTROLLER", True)


settings = Settings()
