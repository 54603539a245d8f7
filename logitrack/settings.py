"""Application settings and the immutable runtime configuration.

``SettingsManager`` persists lightweight JSON settings next to the local
database. ``load_config`` combines them with the environment (optionally read
from a ``.env`` file) into an ``AppConfig`` that is built once at start-up and
handed to the persistence gateway.
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

APP_DIR_NAME = "LogiTrack"


def resolve_data_directory() -> Path:
    override = os.getenv("LOGITRACK_DATA_DIR", "").strip()
    if override:
        data_dir = Path(override).expanduser()
    else:
        if sys.platform == "win32":
            base = Path(os.getenv("APPDATA", Path.home() / "AppData/Roaming"))
        elif sys.platform == "darwin":
            base = Path.home() / "Library/Application Support"
        else:
            base = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local/share"))
        data_dir = base / APP_DIR_NAME
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


class SettingsManager:
    """Load and persist lightweight JSON application settings."""

    DEFAULTS: dict[str, Any] = {
        "remote_url": "",
        "remote_key": "",
        "remote_timeout_s": 10.0,
        "google_maps_api_key": "",
        "invoice_prefix": "IBEC - ",
        "notification_limit": 20,
    }

    def __init__(self, path: Path) -> None:
        self.path = path
        self.data = json.loads(json.dumps(self.DEFAULTS))  # deep copy
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            self.save()
            return
        try:
            loaded = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            self.save()
            return
        if isinstance(loaded, dict):
            self.data = _deep_merge(self.data, loaded)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.data, indent=2), encoding="utf-8")

    def update(self, updates: dict[str, Any]) -> None:
        self.data = _deep_merge(self.data, updates)
        self.save()


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path
    remote_url: str = ""
    remote_key: str = ""
    remote_timeout_s: float = 10.0
    google_maps_api_key: str = ""
    invoice_prefix: str = "IBEC - "
    notification_limit: int = 20

    @property
    def database_path(self) -> Path:
        return self.data_dir / "logitrack.db"

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_url and self.remote_key)


def load_config(data_dir: Optional[Path] = None, *, use_dotenv: bool = True) -> AppConfig:
    """Build the runtime configuration; environment values win over stored settings."""

    if use_dotenv:
        load_dotenv()
    directory = Path(data_dir) if data_dir is not None else resolve_data_directory()
    directory.mkdir(parents=True, exist_ok=True)
    settings = SettingsManager(directory / "settings.json").data

    def _pick(env_name: str, key: str) -> str:
        return (os.getenv(env_name, "").strip() or str(settings.get(key, "") or "")).strip()

    try:
        timeout = float(settings.get("remote_timeout_s", 10.0))
    except (TypeError, ValueError):
        timeout = 10.0

    return AppConfig(
        data_dir=directory,
        remote_url=_pick("LOGITRACK_REMOTE_URL", "remote_url"),
        remote_key=_pick("LOGITRACK_REMOTE_KEY", "remote_key"),
        remote_timeout_s=timeout,
        google_maps_api_key=_pick("GOOGLE_MAPS_API_KEY", "google_maps_api_key"),
        invoice_prefix=str(settings.get("invoice_prefix") or "IBEC - "),
        notification_limit=int(settings.get("notification_limit") or 20),
    )


__all__ = ["AppConfig", "SettingsManager", "load_config", "resolve_data_directory"]
