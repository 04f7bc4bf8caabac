"""
Logging setup for the CLI and the API process.

The packaged `config/logging.yaml` holds handlers and formatters. The level comes from an
explicit argument (CLI `--log-level`) or from settings (`FOGMAP_LOG_LEVEL`) and is applied
to the root logger, the `fogmap` logger, and every handler that declares a level.
"""

from __future__ import annotations

import copy
import logging
import logging.config
from typing import Any

from fogmap.config.settings import get_logging_config, get_settings

PACKAGE_LOGGER = "fogmap"
LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def resolve_level(level: str | None = None) -> str:
    name = (level or get_settings().app.log_level).strip().upper()
    if name not in LEVEL_NAMES:
        raise ValueError(f"unknown log level {name!r}; expected one of {', '.join(LEVEL_NAMES)}")
    return name


def build_logging_config(level: str) -> dict[str, Any]:
    # The loaded YAML is cached; work on a copy so repeated calls start clean.
    config = copy.deepcopy(get_logging_config())
    config.setdefault("root", {})["level"] = level
    config.setdefault("loggers", {}).setdefault(PACKAGE_LOGGER, {})["level"] = level
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = level
    return config


def configure_logging(level: str | None = None) -> None:
    logging.config.dictConfig(build_logging_config(resolve_level(level)))
