"""Centralized logging utilities.

Records go to a rich console handler and to a rotating file under
``<data_dir>/logs``. Both handlers share a :class:`CategoryLevelFilter`, so a
noisy area (HTTP traffic, APScheduler job bookkeeping) can be held to a
higher level than the rest, e.g. in ``config.toml``::

    [general.log_overrides]
    http = "DEBUG"
    sync = "WARNING"
"""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Mapping

from rich.console import Console
from rich.logging import RichHandler

from gyazobridge.core.config import AppConfig

_LEVEL_MAP: Mapping[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# Category -> logger name prefixes belonging to it
LOG_CATEGORIES: Mapping[str, tuple[str, ...]] = {
    "http": ("httpx", "httpcore"),
    "scheduler": ("apscheduler",),
    "gyazo": ("gyazobridge.sources.gyazo",),
    "notes": ("gyazobridge.sources.notes",),
    "sync": ("gyazobridge.core",),
}

# Applied unless log_overrides says otherwise
DEFAULT_CATEGORY_LEVELS: Mapping[str, str] = {
    "http": "WARNING",
    "scheduler": "WARNING",
}

FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _parse_level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    level_name = str(value).upper()
    if level_name not in _LEVEL_MAP:
        raise ValueError(f"Unsupported log level: {value}")
    return _LEVEL_MAP[level_name]


def category_for(logger_name: str) -> str | None:
    """Return the category a logger belongs to, if any."""
    for category, prefixes in LOG_CATEGORIES.items():
        for prefix in prefixes:
            if logger_name == prefix or logger_name.startswith(prefix + "."):
                return category
    return None


class CategoryLevelFilter(logging.Filter):
    """Drop records below the minimum level configured for their category."""

    def __init__(self, category_levels: Mapping[str, str]):
        super().__init__()
        self.thresholds = {
            category: _parse_level(level) for category, level in category_levels.items()
        }

    def filter(self, record: logging.LogRecord) -> bool:
        threshold = self.thresholds.get(category_for(record.name))
        return threshold is None or record.levelno >= threshold


def setup_logging(
    config: AppConfig,
    *,
    level_name: str | None = None,
    console: Console | None = None,
) -> Path:
    """Configure root logging handlers.

    Args:
        config: Application config (log level, file settings, overrides)
        level_name: Console level overriding ``general.log_level`` (``--log-level``)
        console: Rich console to log to (the CLI shares its own)

    Returns:
        Path of the log file
    """
    console_level = _parse_level(level_name or config.general.log_level)
    category_filter = CategoryLevelFilter({**DEFAULT_CATEGORY_LEVELS, **config.general.log_overrides})

    log_dir = config.general.data_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / config.general.log_file_name

    console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    # The file keeps DEBUG detail whatever the console shows
    file_handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=config.general.log_file_max_bytes,
        backupCount=config.general.log_file_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG)
    for handler in (console_handler, file_handler):
        handler.addFilter(category_filter)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return log_path
