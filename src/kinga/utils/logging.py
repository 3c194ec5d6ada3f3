"""Logging setup for the Kinga assistant.

Two files are written under the log directory:

* ``kinga.log`` receives every record at or above the configured level.
* ``tool_runs.log`` receives only the one-line ``tool=... gateway_tool=...``
  records emitted for each gateway tool run, at INFO even when the main
  log is quieter.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = [
    "TOOL_RUN_LOGGER",
    "get_log_path",
    "get_logger",
    "get_tool_log_path",
    "reset_tool_run_handler",
    "setup_logging",
]

TOOL_RUN_LOGGER = "kinga.tool_runs"

_DEFAULT_LOG_DIR = Path.home() / ".kinga" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_MAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_TOOL_RUN_FORMAT = "%(asctime)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONFIGURED = False
_LOG_PATH: Path | None = None
_TOOL_HANDLER: logging.Handler | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    tool_runs: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the root handlers and, optionally, the tool-run audit file.

    Returns the path of the main log. Repeated calls are no-ops unless
    ``force`` is set, in which case previous handlers are replaced.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "kinga.log"

    formatter = logging.Formatter(fmt=_MAIN_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        _rotating_handler(log_path, level, formatter, max_bytes=max_bytes, backup_count=backup_count)
    ]
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _tune_external_loggers(level)
    _install_tool_run_handler(
        target_dir / "tool_runs.log" if tool_runs else None,
        max_bytes=max_bytes,
        backup_count=backup_count,
    )

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the main log file, or None before :func:`setup_logging`."""

    return _LOG_PATH


def get_tool_log_path() -> Path | None:
    if isinstance(_TOOL_HANDLER, logging.FileHandler):
        return Path(_TOOL_HANDLER.baseFilename)
    return None


def reset_tool_run_handler() -> None:
    """Detach and close the tool-run file handler, if one is installed."""

    global _TOOL_HANDLER
    if _TOOL_HANDLER is None:
        return
    logger = logging.getLogger(TOOL_RUN_LOGGER)
    logger.removeHandler(_TOOL_HANDLER)
    _TOOL_HANDLER.close()
    logger.setLevel(logging.NOTSET)
    _TOOL_HANDLER = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _rotating_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    *,
    max_bytes: int,
    backup_count: int,
) -> logging.handlers.RotatingFileHandler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _install_tool_run_handler(path: Path | None, *, max_bytes: int, backup_count: int) -> None:
    global _TOOL_HANDLER
    reset_tool_run_handler()
    if path is None:
        return
    _TOOL_HANDLER = _rotating_handler(
        path,
        logging.INFO,
        logging.Formatter(fmt=_TOOL_RUN_FORMAT, datefmt=_DATE_FORMAT),
        max_bytes=max_bytes,
        backup_count=backup_count,
    )
    logger = logging.getLogger(TOOL_RUN_LOGGER)
    logger.addHandler(_TOOL_HANDLER)
    # Records still propagate to kinga.log when the root level allows them.
    logger.setLevel(logging.INFO)


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("KINGA_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(root_level: int) -> None:
    quiet_level = logging.WARNING if root_level < logging.WARNING else root_level
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
