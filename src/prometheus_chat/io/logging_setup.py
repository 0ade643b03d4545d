"""Centralized logging bootstrap for prometheus.

Every session writes a rotating log file under the log directory; the CLI
additionally mirrors warnings to stderr through rich. The TUI owns the
terminal, so it logs to the file only.

Environment:
  PROMETHEUS_LOG_DIR           directory for session logs
  PROMETHEUS_LOG_FILE          exact log file path (overrides the directory)
  PROMETHEUS_LOG_LEVEL         file level, default INFO
  PROMETHEUS_LOG_STDERR_LEVEL  stderr level, default WARNING

// [LAW:single-enforcer] Logger handler wiring is enforced in this module only.
// [LAW:one-source-of-truth] Runtime log path/levels are resolved here and returned to callers.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "prometheus_chat"
KEEP_SESSION_LOGS = 20
_MAX_LOG_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class LoggingRuntime:
    level_name: str
    level: int
    stderr_level: int | None
    file_path: str


_RUNTIME: LoggingRuntime | None = None


def _level_from_env(var: str, default: str) -> int:
    level = logging.getLevelName(os.environ.get(var, default).strip().upper())
    return level if isinstance(level, int) else logging.getLevelName(default)


def log_dir() -> Path:
    return Path(os.environ.get("PROMETHEUS_LOG_DIR") or os.path.expanduser("~/.local/share/prometheus/logs"))


def _session_log_path(session_name: str) -> Path:
    slug = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in session_name).strip("-_") or "session"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return log_dir() / f"{slug}-{stamp}-{os.getpid()}.log"


def prune_session_logs(directory: Path, keep: int = KEEP_SESSION_LOGS) -> list[Path]:
    """Delete all but the newest `keep` session logs. Returns what was removed."""
    logs = sorted(directory.glob("*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    removed = []
    for path in logs[keep:]:
        try:
            path.unlink()
        except OSError:
            continue
        removed.append(path)
    return removed


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=_MAX_LOG_BYTES, backupCount=2, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s [%(threadName)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    return handler


def _stderr_handler(level: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def configure(session_name: str = "chat", *, stderr: bool = True) -> LoggingRuntime:
    """Attach file (and optionally stderr) handlers to the package logger.

    Idempotent: later calls return the first runtime unchanged until reset().
    """
    global _RUNTIME
    if _RUNTIME is not None:
        return _RUNTIME

    level = _level_from_env("PROMETHEUS_LOG_LEVEL", "INFO")
    stderr_level = _level_from_env("PROMETHEUS_LOG_STDERR_LEVEL", "WARNING") if stderr else None

    explicit = os.environ.get("PROMETHEUS_LOG_FILE")
    path = Path(explicit) if explicit else _session_log_path(session_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not explicit:
        prune_session_logs(path.parent, keep=KEEP_SESSION_LOGS - 1)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(_file_handler(path, level))
    if stderr_level is not None:
        logger.addHandler(_stderr_handler(stderr_level))
    logger.setLevel(min(level, stderr_level if stderr_level is not None else level))
    logging.captureWarnings(True)

    _RUNTIME = LoggingRuntime(
        level_name=logging.getLevelName(level),
        level=level,
        stderr_level=stderr_level,
        file_path=str(path),
    )
    return _RUNTIME


def get_runtime() -> LoggingRuntime | None:
    return _RUNTIME


def reset() -> None:
    """Detach and close handlers so configure() can run again (tests, re-exec)."""
    global _RUNTIME
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logging.captureWarnings(False)
    _RUNTIME = None
