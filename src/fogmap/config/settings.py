# src/fogmap/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/fogmap/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `FOGMAP_DB_PATH`, `FOGMAP_LOG_LEVEL`)
- an external YAML file via `FOGMAP_CONFIG_PATH`

Design rule:
- Tuning knobs (reveal radius, thresholds, transport pacing) live in YAML, not in business logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from fogmap.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `fogmap.config`."""
    text = resources.files("fogmap.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "FogMap"
    log_level: str = "INFO"


class StorageSettings(BaseModel):
    db_path: str = ".data/fog_of_war.db"


class RevealSettings(BaseModel):
    radius_miles: float = Field(0.1, gt=0)
    steps: int = Field(32, ge=8)


class SignificanceSettings(BaseModel):
    strategy: Literal["last_point", "neighborhood"] = "last_point"
    live_min_distance_miles: float = Field(0.02, ge=0)
    manual_min_distance_miles: float = Field(0.005, ge=0)


class TrackingSettings(BaseModel):
    distance_interval_m: float = Field(10, ge=0)
    time_interval_ms: int = Field(5000, ge=0)
    max_accuracy_m: float | None = Field(default=None, gt=0)
    offset_step_m: float = Field(10, gt=0)
    supervisor_workers: int = Field(1, ge=1)


class TransportSettings(BaseModel):
    service_uuid: str = "12345678-1234-5678-1234-56789abcdef0"
    data_channel_uuid: str = "12345678-1234-5678-1234-56789abcdef1"
    control_channel_uuid: str = "12345678-1234-5678-1234-56789abcdef2"
    chunk_size_bytes: int = Field(180, ge=4)
    chunk_delay_seconds: float = Field(0.05, ge=0)
    poll_interval_seconds: float = Field(0.1, ge=0)
    max_poll_attempts: int = Field(100, ge=1)
    max_reads_per_poll: int = Field(32, ge=1)
    connect_timeout_seconds: float = Field(10, gt=0)
    requested_mtu: int = Field(512, ge=23)
    scan_timeout_seconds: float = Field(30, gt=0)
    write_retries: int = Field(2, ge=0)
    default_device_name: str = "Fog of War User"


class ApiSettings(BaseModel):
    cors_origins: list[str] = Field(default_factory=list)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    reveal: RevealSettings = Field(default_factory=RevealSettings)
    significance: SignificanceSettings = Field(default_factory=SignificanceSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)
    log_level = os.getenv("FOGMAP_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    db_path = os.getenv("FOGMAP_DB_PATH")
    if db_path:
        data.setdefault("storage", {})["db_path"] = db_path

    strategy = os.getenv("FOGMAP_SIGNIFICANCE_STRATEGY")
    if strategy:
        data.setdefault("significance", {})["strategy"] = strategy.strip().lower()

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("FOGMAP_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
