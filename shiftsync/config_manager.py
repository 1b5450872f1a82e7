from __future__ import annotations

import copy
import errno
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from shiftsync.models import AppConfig, default_app_config


CONFIG_SECTIONS = ("fetch", "sync", "scheduler", "storage", "events", "logging")


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _render(config: AppConfig) -> str:
    return yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False)


class ConfigManager:
    """YAML-backed settings shared by the scheduler loop, sync runs and the admin API.

    The scheduler reloads on every tick and each run reloads before fetching, so the
    parsed file is cached and only re-read when its stat signature changes.
    """

    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        self._cached: AppConfig | None = None
        self._cached_signature: tuple[int, int, int] | None = None
        if not self.config_path.exists():
            self.save(default_app_config())

    def _signature(self) -> tuple[int, int, int]:
        stat = self.config_path.stat()
        return stat.st_ino, stat.st_mtime_ns, stat.st_size

    def load(self) -> AppConfig:
        with self._lock:
            signature = self._signature()
            if self._cached is None or signature != self._cached_signature:
                with self.config_path.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle) or {}
                if not isinstance(data, dict):
                    raise ValueError(f"{self.config_path} must contain a mapping of config sections")
                self._cached = AppConfig.from_dict(data)
                self._cached_signature = signature
            return copy.deepcopy(self._cached)

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            text = _render(config)
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            tmp_path.write_text(text, encoding="utf-8")
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # Bind-mounted single files in containers cannot be atomically replaced.
                if exc.errno != errno.EBUSY:
                    raise
                self.config_path.write_text(text, encoding="utf-8")
                tmp_path.unlink(missing_ok=True)
            self._cached = AppConfig.from_dict(config.to_dict())
            self._cached_signature = self._signature()

    def update(self, payload: dict[str, Any]) -> AppConfig:
        if not isinstance(payload, dict):
            raise ValueError("config update must be a mapping of sections")
        unknown = sorted(set(payload) - set(CONFIG_SECTIONS))
        if unknown:
            raise ValueError(f"unknown config section(s): {', '.join(unknown)}")
        with self._lock:
            merged = _deep_merge(self.load().to_dict(), payload)
            config = AppConfig.from_dict(merged)
            self.save(config)
            return config
