"""Shared pytest fixtures."""

from __future__ import annotations

import logging
import os

import pytest

from kinga.ai.tools.budget import InvocationBudget
from kinga.services.settings import Settings
from tests.helpers import FakeClock


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    for name in list(os.environ):
        if name.startswith("KINGA_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("KINGA_LOG_DIR", str(tmp_path_factory.mktemp("logs")))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def budget(clock: FakeClock) -> InvocationBudget:
    return InvocationBudget(clock=clock)


@pytest.fixture
def gateway_settings() -> Settings:
    return Settings(
        api_key="sk-test",
        gateway_url="https://gateway.example.com/mcp/sse",
        gateway_auth_header="kinga_key",
        gateway_auth_value="secret-value",
        gateway_timeout=5.0,
    )


@pytest.fixture
def restore_root_logging():
    from kinga.utils import logging as logging_utils

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)
    logging_utils._CONFIGURED = False
    logging_utils._LOG_PATH = None
    logging_utils.reset_tool_run_handler()
