"""Route stdlib logging through structlog.

Modules log with ``logging.getLogger(__name__)`` and a dotted event name, e.g.
``LOGGER.info("reasoning.flushed", extra={"event": "reasoning.flushed", ...})``.
With ``structured = true`` every record is rendered as one JSON object whose
keys include the ``extra`` fields.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import structlog

APP_LOGGER_PREFIX = "chat_reconciler"
QUIET_LIBRARIES = ("httpx", "httpcore", "ollama")
PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_TIMESTAMP = structlog.processors.TimeStamper(fmt="iso", utc=True)


def _from_app(record: logging.LogRecord) -> bool:
    return record.name.startswith(APP_LOGGER_PREFIX)


def _json_formatter() -> logging.Formatter:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _TIMESTAMP,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(
            ensure_ascii=False, separators=(",", ":")
        ),
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ExtraAdder(),
            _TIMESTAMP,
        ],
    )


def _attach(
    root: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    return handler


def _open_private_log(path_value: str) -> logging.FileHandler:
    path = Path(path_value).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    if os.name == "posix":
        try:
            path.chmod(0o600)
        except OSError:
            logging.getLogger(__name__).warning(
                "logging.permissions.failed",
                extra={"event": "logging.permissions.failed", "path": str(path)},
            )
    return handler


def configure_logging(logging_config: dict[str, Any]) -> None:
    """Install root handlers from the ``[logging]`` section.

    stderr only shows warnings from ``chat_reconciler`` loggers; the optional
    log file receives everything at the configured level.
    """
    level = getattr(
        logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO
    )
    formatter = (
        _json_formatter()
        if logging_config.get("structured", True)
        else logging.Formatter(PLAIN_FORMAT)
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    console = _attach(
        root, logging.StreamHandler(), max(level, logging.WARNING), formatter
    )
    console.addFilter(_from_app)

    if logging_config.get("log_to_file", False):
        log_file = str(
            logging_config.get(
                "log_file_path", "~/.local/state/chat-reconciler/app.log"
            )
        )
        _attach(root, _open_private_log(log_file), level, formatter)

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)
