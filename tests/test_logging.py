"""Tests for logging setup"""
import logging

import pytest

import logging_config
from audio_sync import matcher


@pytest.fixture
def fresh_logging(tmp_path, monkeypatch):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    monkeypatch.setattr(logging_config, "LOGS_DIR", tmp_path)
    monkeypatch.setattr(logging_config, "_logging_initialized", False)
    yield tmp_path
    for handler in root.handlers:
        handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    logging.getLogger(matcher.__name__).setLevel(logging.NOTSET)


def test_setup_creates_rotating_log_file(fresh_logging):
    logging_config.setup_logging(console=False, log_file="session.log", max_bytes=2048, backup_count=3)

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert handlers[0].maxBytes == 2048
    assert handlers[0].backupCount == 3
    assert (fresh_logging / "session.log").exists()


def test_quiet_loggers_limited_to_warning(fresh_logging):
    logging_config.setup_logging(console=False, quiet_loggers=[matcher.__name__])

    assert logging.getLogger(matcher.__name__).level == logging.WARNING


def test_setup_runs_once(fresh_logging):
    logging_config.setup_logging(console=False)
    logging_config.setup_logging(console=True)

    assert len(logging.getLogger().handlers) == 1
