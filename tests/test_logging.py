"""Tests for the structured logging configuration."""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
import structlog

from playcurator.logging import setup_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging state between tests."""
    hook = sys.excepthook
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()
    sys.excepthook = hook


# -- File creation ----------------------------------------------------------


def test_setup_creates_log_dir_and_files(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("playcurator.test").info("hello")

    assert (log_dir / "curator.log").exists()
    assert (log_dir / "curation.log").exists()


# -- curator.log format -----------------------------------------------------


def test_curator_log_human_readable(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("playcurator.cli").info("test_event", key="value")

    content = (log_dir / "curator.log").read_text()
    assert "test_event" in content
    assert "key=value" in content
    with pytest.raises(json.JSONDecodeError):
        json.loads(content.strip())


# -- curation.log format ----------------------------------------------------


def test_curation_log_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("playcurator.curation.orchestrator").info("curation_start", playlist_id="spotify:playlist:x")

    data = json.loads((log_dir / "curation.log").read_text().strip())
    assert data["event"] == "curation_start"
    assert data["playlist_id"] == "spotify:playlist:x"
    assert data["level"] == "info"
    assert "timestamp" in data


def test_curation_log_excludes_other_events(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("playcurator.storage.database").info("storage_event")
    structlog.get_logger("playcurator.curation.reconcile").info("reconcile_event")

    curation = (log_dir / "curation.log").read_text()
    curator = (log_dir / "curator.log").read_text()
    assert "reconcile_event" in curation
    assert "storage_event" not in curation
    assert "storage_event" in curator
    assert "reconcile_event" in curator


# -- Levels -----------------------------------------------------------------


def test_level_filtering_suppresses_lower(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="warning", log_dir=log_dir)

    log = structlog.get_logger("playcurator.test")
    log.info("should_not_appear")
    log.warning("should_appear")

    content = (log_dir / "curator.log").read_text()
    assert "should_not_appear" not in content
    assert "should_appear" in content


def test_noisy_http_loggers_quieted(tmp_path: Path):
    setup_logging(log_level="debug", log_dir=tmp_path / "logs")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


# -- Handlers ---------------------------------------------------------------


def test_rotation_parameters(tmp_path: Path):
    setup_logging(log_level="info", log_dir=tmp_path / "logs")

    rotating = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    assert len(rotating) == 2
    for handler in rotating:
        assert handler.maxBytes == 10 * 1024 * 1024
        assert handler.backupCount == 5


def test_no_log_dir_no_handlers():
    setup_logging(log_level="info", log_dir=None)
    assert logging.getLogger().handlers == []


def test_console_adds_stream_handler():
    setup_logging(log_level="info", log_dir=None, console=True)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.StreamHandler)


# -- Context variables ------------------------------------------------------


def test_context_variables_in_curation_log(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run_id="r-1")
    structlog.get_logger("playcurator.curation.scheduler").info("with_context")
    structlog.contextvars.clear_contextvars()

    data = json.loads((log_dir / "curation.log").read_text().strip())
    assert data["run_id"] == "r-1"


def test_second_setup_replaces_handlers(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)
    setup_logging(log_level="info", log_dir=log_dir, console=True)

    handlers = logging.getLogger().handlers
    assert len(handlers) == 3
    assert sum(isinstance(h, RotatingFileHandler) for h in handlers) == 2
