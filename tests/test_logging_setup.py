"""Tests for io/logging_setup.py."""

import logging
import logging.handlers

import pytest

import streamcall.io.logging_setup as logging_setup


@pytest.fixture
def fresh_logging(monkeypatch, tmp_path):
    """Reset the module runtime and restore the streamcall logger afterwards."""
    logger = logging.getLogger(logging_setup.ROOT_LOGGER)
    saved = (logger.level, logger.propagate, list(logger.handlers))
    monkeypatch.setattr(logging_setup, "_RUNTIME", None)
    monkeypatch.setenv("STREAMCALL_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("STREAMCALL_LOG_FILE", raising=False)
    monkeypatch.delenv("STREAMCALL_LOG_LEVEL", raising=False)
    yield tmp_path
    for handler in logger.handlers:
        if handler not in saved[2]:
            handler.close()
    logger.setLevel(saved[0])
    logger.propagate = saved[1]
    logger.handlers[:] = saved[2]
    logging.captureWarnings(False)


def test_configure_creates_log_file_under_log_dir(fresh_logging):
    runtime = logging_setup.configure("my session!")
    assert runtime.level_name == "INFO"
    assert runtime.file_path.startswith(str(fresh_logging / "logs"))
    assert "my-session" in runtime.file_path
    logging.getLogger("streamcall.test").info("hello file")
    for handler in logging.getLogger("streamcall").handlers:
        handler.flush()
    with open(runtime.file_path, encoding="utf-8") as f:
        assert "hello file" in f.read()


def test_configure_is_idempotent(fresh_logging):
    first = logging_setup.configure("a")
    assert logging_setup.configure("b") is first
    assert logging_setup.get_runtime() is first


def test_stderr_handler_optional(fresh_logging):
    logging_setup.configure("tui", stderr=False)
    handlers = logging.getLogger("streamcall").handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.handlers.RotatingFileHandler)


def test_env_level_and_file(fresh_logging, monkeypatch):
    target = fresh_logging / "explicit" / "run.log"
    monkeypatch.setenv("STREAMCALL_LOG_LEVEL", "debug")
    monkeypatch.setenv("STREAMCALL_LOG_FILE", str(target))
    runtime = logging_setup.configure()
    assert runtime.level == logging.DEBUG
    assert runtime.file_path == str(target)
    assert target.parent.is_dir()


def test_unknown_level_falls_back_to_info(fresh_logging, monkeypatch):
    monkeypatch.setenv("STREAMCALL_LOG_LEVEL", "chatty")
    assert logging_setup.configure().level == logging.INFO
