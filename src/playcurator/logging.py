"""Structured logging for playcurator commands and the foreground scheduler.

Every command that talks to Spotify calls :func:`setup_logging` once. Events
go to two rotating files under ``~/.playcurator/logs``:

``curator.log``
    Everything, rendered for people reading ``playcurator logs``.
``curation.log``
    JSON lines for the ``playcurator.curation`` loggers only, one per
    stage of a run (fetch, clean, suggestions, reconcile, outcome).

``playcurator run`` also echoes events to stderr while it sits in the
foreground.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

CURATOR_LOG = "curator.log"
CURATION_LOG = "curation.log"

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5
_CURATION_LOGGER = "playcurator.curation"
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")

# Applied to structlog events and to records from plain stdlib loggers alike.
_pre_chain: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_pre_chain)


def _rotating(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _log_unhandled(exc_type: type[BaseException], exc_value: BaseException, exc_tb: object) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logging.getLogger("playcurator").critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def setup_logging(log_level: str = "info", log_dir: Path | None = None, *, console: bool = False) -> None:
    """Route structlog through stdlib logging and (re)install the handlers.

    Calling it again replaces the previous handlers, so ``run`` can switch
    the console echo on after the shared config loader set up the files.
    With *log_dir* ``None`` no files are written.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[*_pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    readable = _formatter(structlog.dev.ConsoleRenderer(colors=False))

    handlers: list[logging.Handler] = []
    if console:
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setFormatter(readable)
        handlers.append(stderr)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating(log_dir / CURATOR_LOG, readable))

        curation = _rotating(log_dir / CURATION_LOG, _formatter(structlog.processors.JSONRenderer()))
        curation.addFilter(logging.Filter(_CURATION_LOGGER))
        handlers.append(curation)

    root = logging.getLogger()
    for old in root.handlers:
        if isinstance(old, RotatingFileHandler):
            old.close()
    root.handlers = handlers
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    sys.excepthook = _log_unhandled  # type: ignore[assignment]
