from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class StorageSettings:
    """Object storage used for store logos."""

    base_url: str
    api_key: str
    bucket: str = "logos"

    @classmethod
    def from_env(cls, environ=None) -> Optional["StorageSettings"]:
        env = os.environ if environ is None else environ
        base_url = env.get("ACAI_STORAGE_URL", "").strip().rstrip("/")
        api_key = env.get("ACAI_STORAGE_KEY", "").strip()
        if not base_url or not api_key:
            return None
        return cls(base_url=base_url, api_key=api_key, bucket=env.get("ACAI_STORAGE_BUCKET", "logos").strip() or "logos")


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "AcaiManager") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "acai.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)
