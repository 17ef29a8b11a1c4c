from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class EngineSettings:
    lock_timeout: float = 5.0
    default_low_stock_threshold: int = 5

    @classmethod
    def from_env(cls) -> "EngineSettings":
        timeout = os.environ.get("STOCKFLOW_LOCK_TIMEOUT", "").strip()
        threshold = os.environ.get("STOCKFLOW_LOW_STOCK_THRESHOLD", "").strip()
        return cls(
            lock_timeout=float(timeout) if timeout else cls.lock_timeout,
            default_low_stock_threshold=int(threshold) if threshold else cls.default_low_stock_threshold,
        )


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "Stockflow") -> AppPaths:
    override = os.environ.get("STOCKFLOW_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "stockflow.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)
