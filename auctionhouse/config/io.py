from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from auctionhouse.config.models import ProgramConfig, parse_program_config

_config_logger = logging.getLogger("auctionhouse.config")


def load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML file must parse to a mapping: {path}")
    return data


def write_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)


def load_program_config(path: Path) -> ProgramConfig:
    """Parse the program config, writing a healed ``app.log_level`` back to disk."""
    path = path.expanduser()
    if not path.is_file():
        raise ValueError(f"program config not found: {path}")
    raw = load_yaml(path)
    config = parse_program_config(raw)
    if config.app_log_level_was_missing:
        app = raw.get("app")
        if isinstance(app, dict):
            previous = app.get("log_level")
            app["log_level"] = config.app_log_level
            write_yaml(path, raw)
            _config_logger.info(
                "app.log_level %r replaced with %s in %s", previous, config.app_log_level, path
            )
    return config
