from __future__ import annotations

import logging
import os
from pathlib import Path

from concurrent_log_handler import ConcurrentRotatingFileHandler

DEFAULT_LOG_LEVEL_NAME = "INFO"
ALLOWED_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"})
DEFAULT_LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_LOG_FILE = "logs/debug.log"
DEFAULT_LOG_MAX_FILES_ROTATION = 4
DEFAULT_LOG_MAX_BYTES_ROTATION = 25 * 1024 * 1024

_service_handler: ConcurrentRotatingFileHandler | None = None


def normalize_log_level_name(log_level: str | None) -> str:
    normalized = str(log_level or "").strip().upper()
    if normalized not in ALLOWED_LOG_LEVELS:
        return DEFAULT_LOG_LEVEL_NAME
    return normalized


def cast_log_level(level_name: str) -> int:
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        return logging.INFO
    return level


def coerce_log_level(log_level: str | None) -> int:
    return cast_log_level(normalize_log_level_name(log_level))


def resolve_log_path(home_dir: str | Path) -> Path:
    return (Path(home_dir).expanduser() / DEFAULT_LOG_FILE).resolve()


def create_rotating_file_handler(*, service_name: str, home_dir: str | Path) -> ConcurrentRotatingFileHandler:
    log_path = resolve_log_path(home_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    name_width = max(8, 36 - len(service_name))
    formatter = logging.Formatter(
        fmt=f"%(asctime)s.%(msecs)03d {service_name} %(name)-{name_width}s: %(levelname)-8s %(message)s",
        datefmt=DEFAULT_LOG_DATE_FORMAT,
    )
    handler = ConcurrentRotatingFileHandler(
        os.fspath(log_path),
        "a",
        maxBytes=DEFAULT_LOG_MAX_BYTES_ROTATION,
        backupCount=DEFAULT_LOG_MAX_FILES_ROTATION,
        use_gzip=False,
    )
    handler.setFormatter(formatter)
    return handler


def configure_service_logging(*, service_name: str, home_dir: str | Path, log_level: str | None) -> int:
    """Attach the rotating file handler to the root logger once per process.

    Later calls only re-apply the level, so a reloaded config can change
    verbosity without duplicating handlers.
    """
    global _service_handler
    root_logger = logging.getLogger()
    effective_level = coerce_log_level(log_level)
    if _service_handler is None:
        _service_handler = create_rotating_file_handler(service_name=service_name, home_dir=home_dir)
        root_logger.addHandler(_service_handler)
    _service_handler.setLevel(effective_level)
    root_logger.setLevel(effective_level)
    logging.getLogger("auctionhouse").setLevel(effective_level)
    return effective_level


def reset_service_logging() -> None:
    global _service_handler
    if _service_handler is None:
        return
    logging.getLogger().removeHandler(_service_handler)
    _service_handler.close()
    _service_handler = None
