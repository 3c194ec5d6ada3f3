"""Tests for the logging helpers and the per-run tool log line."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from kinga.ai.tools.runners import log_tool_run
from kinga.utils import logging as logging_utils


def test_setup_logging_writes_rotating_file(tmp_path: Path, restore_root_logging) -> None:
    log_path = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False, force=True)

    logging_utils.get_logger("kinga.test").info("hello from test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == tmp_path / "kinga.log"
    assert logging_utils.get_log_path() == log_path
    assert "hello from test" in log_path.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_is_idempotent_without_force(tmp_path: Path, restore_root_logging) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False, force=True)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)

    assert first == second


def test_log_dir_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, restore_root_logging) -> None:
    monkeypatch.setenv("KINGA_LOG_DIR", str(tmp_path / "env-logs"))

    log_path = logging_utils.setup_logging(console=False, force=True)

    assert log_path.parent == tmp_path / "env-logs"


def test_log_tool_run_line_format(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger=logging_utils.TOOL_RUN_LOGGER):
        log_tool_run("email_finder", "email_finder_v2", 153.7, "ok")
        log_tool_run("search", None, 0, "error", error="timeout")

    assert caplog.messages[0] == "tool=email_finder gateway_tool=email_finder_v2 duration_ms=153 status=ok"
    assert caplog.messages[1] == "tool=search gateway_tool=- duration_ms=0 status=error error='timeout'"


def test_tool_runs_get_their_own_file(tmp_path: Path, restore_root_logging) -> None:
    log_path = logging_utils.setup_logging(logging.WARNING, log_dir=tmp_path, console=False, force=True)

    log_tool_run("crm", "crm_upsert", 42, "ok")
    logging.getLogger("kinga.ai.orchestration.router").warning("unrelated warning")
    for handler in [*logging.getLogger().handlers, *logging.getLogger(logging_utils.TOOL_RUN_LOGGER).handlers]:
        handler.flush()

    tool_log = logging_utils.get_tool_log_path()
    assert tool_log == tmp_path / "tool_runs.log"
    tool_lines = tool_log.read_text(encoding="utf-8")
    assert "tool=crm gateway_tool=crm_upsert duration_ms=42 status=ok" in tool_lines
    assert "unrelated warning" not in tool_lines
    main_lines = log_path.read_text(encoding="utf-8")
    assert "unrelated warning" in main_lines
    assert "tool=crm" not in main_lines


def test_tool_run_file_can_be_disabled(tmp_path: Path, restore_root_logging) -> None:
    logging_utils.setup_logging(log_dir=tmp_path, console=False, tool_runs=False, force=True)

    assert logging_utils.get_tool_log_path() is None
    assert not (tmp_path / "tool_runs.log").exists()


def test_forced_setup_replaces_tool_run_handler(tmp_path: Path, restore_root_logging) -> None:
    logging_utils.setup_logging(log_dir=tmp_path / "a", console=False, force=True)
    logging_utils.setup_logging(log_dir=tmp_path / "b", console=False, force=True)

    handlers = logging.getLogger(logging_utils.TOOL_RUN_LOGGER).handlers
    assert len(handlers) == 1
    assert logging_utils.get_tool_log_path() == tmp_path / "b" / "tool_runs.log"
