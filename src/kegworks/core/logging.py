"""Structured logging for kegworks.

Every module logs through `get_logger(__name__)` with a snake_case event name
and key/value context. Events go to a rotating JSON log under
`$KEGWORKS_HOME/logs`; console rendering is opt-in.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator

import structlog
from structlog.types import FilteringBoundLogger, Processor

from kegworks.core.config import KegworksENV, discover_env

LOG_FILE_NAME = "kegworks.log"
LOG_MAX_BYTES = 2_000_000
LOG_BACKUPS = 2

_CONFIGURED = False


def sanitise_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Drop None values and make paths and errors JSON friendly.

    Args:
        logger: The logger instance.
        method_name: The name of the method called on the logger.
        event_dict: The event dictionary to sanitize.

    Returns:
        The sanitized event dictionary.
    """
    sanitised = {}
    for key, value in event_dict.items():
        if value is None:
            continue
        if isinstance(value, (Path, BaseException)):
            value = str(value)
        sanitised[key] = value
    return sanitised


def log_dir_for(config: KegworksENV) -> Path:
    """Directory holding the rotating log file."""
    return config.home / "logs"


def _processors() -> list[Processor]:
    return [
        sanitise_context,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_logging(
    config: KegworksENV | None = None,
    *,
    level: str | None = None,
    log_file: Path | None = None,
    enable_console: bool = False,
) -> None:
    """Configure structlog over the stdlib root logger, once per process.

    Args:
        config: Active configuration, discovered from the environment if omitted.
        level: Overrides `config.log_level` (e.g. "DEBUG").
        log_file: Overrides `<home>/logs/kegworks.log`.
        enable_console: Also render events, coloured, to stderr.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    config = config or discover_env()
    numeric = getattr(logging, (level or config.log_level).upper(), logging.INFO)

    if log_file is None:
        log_dir = log_dir_for(config)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / LOG_FILE_NAME

    file_handler = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS)
    file_handler.setLevel(numeric)
    logging.root.addHandler(file_handler)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(console_handler)
        renderers: list[Processor] = [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=_processors() + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.root.setLevel(numeric)

    _CONFIGURED = True


@contextmanager
def bind_transaction(root: str) -> Iterator[str]:
    """Tag every event logged inside the block with a transaction id.

    Yields:
        The short transaction id.
    """
    txn = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(transaction=txn, request=root):
        yield txn


def get_logger(name: str = "kegworks") -> FilteringBoundLogger:
    """Get a structlog logger, configuring logging on first use.

    Usage:
        log = get_logger(__name__)
        log.info("keg_linked", package="foo", version="1.0", links=12)

    Standard context keys:
        - package (str): Formula name
        - version (str): Formula or keg version
        - path (str): Prefix-relative or absolute path involved
        - duration_ms (int): Operation duration in milliseconds
        - error (str): Error message if applicable
        - transaction (str): Install transaction id, bound by `bind_transaction`
    """
    if not _CONFIGURED:
        configure_logging()
    return structlog.get_logger(name)
