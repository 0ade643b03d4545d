"""Tests for centralized logging bootstrap."""

import logging
import os
from logging.handlers import RotatingFileHandler

from rich.logging import RichHandler

import prometheus_chat.io.logging_setup as logging_setup


def test_configure_writes_to_log_dir(isolated_dirs):
    runtime = logging_setup.configure("cli")
    assert runtime.level_name == "INFO"
    assert runtime.file_path.startswith(str(isolated_dirs / "logs"))
    assert "cli-" in runtime.file_path

    logging.getLogger("prometheus_chat.tests").info("hello log")
    for handler in logging.getLogger(logging_setup.ROOT_LOGGER).handlers:
        handler.flush()
    with open(runtime.file_path, encoding="utf-8") as f:
        assert "hello log" in f.read()


def test_configure_is_idempotent():
    first = logging_setup.configure("one")
    assert logging_setup.configure("two") is first
    assert logging_setup.get_runtime() is first


def test_level_and_file_from_env(monkeypatch, tmp_path):
    log_file = tmp_path / "custom" / "app.log"
    monkeypatch.setenv("PROMETHEUS_LOG_LEVEL", "debug")
    monkeypatch.setenv("PROMETHEUS_LOG_FILE", str(log_file))
    runtime = logging_setup.configure()
    assert runtime.level == logging.DEBUG
    assert runtime.file_path == str(log_file)
    assert log_file.parent.is_dir()


def test_unknown_level_falls_back_to_info(monkeypatch):
    monkeypatch.setenv("PROMETHEUS_LOG_LEVEL", "chatty")
    assert logging_setup.configure().level == logging.INFO


def test_stderr_handler_optional():
    logging_setup.configure(stderr=False)
    handlers = logging.getLogger(logging_setup.ROOT_LOGGER).handlers
    assert [type(h) for h in handlers] == [RotatingFileHandler]


def test_reset_detaches_handlers():
    logging_setup.configure()
    logging_setup.reset()
    logger = logging.getLogger(logging_setup.ROOT_LOGGER)
    assert logger.handlers == []
    assert logger.propagate
    assert logging_setup.get_runtime() is None


def test_session_name_sanitized(isolated_dirs):
    runtime = logging_setup.configure("my session/../x")
    assert "/../" not in runtime.file_path[len(str(isolated_dirs)):]


def test_stderr_handler_is_rich_at_warning():
    runtime = logging_setup.configure()
    assert runtime.stderr_level == logging.WARNING
    handlers = logging.getLogger(logging_setup.ROOT_LOGGER).handlers
    (rich_handler,) = [h for h in handlers if isinstance(h, RichHandler)]
    assert rich_handler.level == logging.WARNING


def test_old_session_logs_pruned(isolated_dirs):
    directory = isolated_dirs / "logs"
    directory.mkdir()
    for i in range(25):
        path = directory / f"old-{i:02d}.log"
        path.write_text("x")
        os.utime(path, (1000 + i, 1000 + i))
    logging_setup.configure()
    remaining = sorted(p.name for p in directory.glob("old-*.log"))
    assert remaining == [f"old-{i:02d}.log" for i in range(6, 25)]
