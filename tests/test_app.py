"""Tests covering the command-line entry point."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest

from kinga import app
from kinga.ai.orchestration.chat_service import ChatRequest, ChatResult
from kinga.ai.tools.reuse_blocks import render_ctx
from kinga.documents.artifacts import Artifact, ArtifactVersion
from kinga.services.settings import Settings, SettingsStore


class _StubService:
    def __init__(self, settings: Settings, document_store: Any, result: ChatResult) -> None:
        self.settings = settings
        self.document_store = document_store
        self.result = result
        self.requests: list[ChatRequest] = []
        self.closed = False

    async def handle(self, request: ChatRequest) -> ChatResult:
        self.requests.append(request)
        self.document = await self.document_store.read(request.conversation_id)
        return self.result

    async def aclose(self) -> None:
        self.closed = True


def _install_stub(monkeypatch: pytest.MonkeyPatch, result: ChatResult) -> list[_StubService]:
    created: list[_StubService] = []

    class _Factory:
        @staticmethod
        def from_settings(settings: Settings, *, document_store: Any = None, **_kwargs: Any) -> _StubService:
            service = _StubService(settings, document_store, result)
            created.append(service)
            return service

    monkeypatch.setattr(app, "ChatService", _Factory)
    return created


@pytest.fixture(autouse=True)
def _logging(restore_root_logging):
    yield


# =============================================================================
# Settings inspection
# =============================================================================


def test_dump_settings_redacts_secrets(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(api_key="sk-abcdef123", gateway_url="https://g"))

    exit_code = app.main(["--settings-path", str(path), "--set", "model=gpt-test", "--dump-settings"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["settings"]["api_key"] == "sk********23"
    assert payload["settings"]["model"] == "gpt-test"
    assert payload["meta"]["path"] == str(path)
    assert payload["meta"]["secret_backend"] == "fernet"
    assert payload["meta"]["cli_overrides"] == ["model"]
    assert payload["meta"]["gateway_ready"] is False
    assert payload["meta"]["gateway_reason"] == "gateway_auth_value missing"
    assert "KINGA_LOG_DIR" in payload["meta"]["environment_variables"]


def test_invalid_override_exits_with_usage_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings-path", str(tmp_path / "s.json"), "--set", "no_such_field=1", "--dump-settings"])

    assert exit_code == 2
    assert "Unknown setting 'no_such_field'" in capsys.readouterr().err


def test_missing_command_prints_help(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings-path", str(tmp_path / "s.json")])

    assert exit_code == 1
    assert "usage: kinga" in capsys.readouterr().out


# =============================================================================
# Ask
# =============================================================================


def test_ask_prints_reply_without_blocks(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    output = "Found it. Email: ada@example.com.\n" + render_ctx("email_finder", {"email": "ada@example.com"})
    created = _install_stub(monkeypatch, ChatResult(output=output, tool="email_finder"))

    exit_code = app.main(
        [
            "--settings-path",
            str(tmp_path / "s.json"),
            "--set",
            "block_repeat_argument=true",
            "ask",
            "find the email for https://www.linkedin.com/in/ada/",
            "--allow",
            "email_finder, crm",
        ]
    )

    assert exit_code == 0
    assert capsys.readouterr().out == "Found it. Email: ada@example.com.\n"
    service = created[0]
    request = service.requests[0]
    assert request.permissions.allowed_tools() == ("email_finder", "crm")
    assert request.document_context is None
    assert request.current_artifact_id is None
    assert service.settings.block_repeat_argument is True
    assert service.closed


def test_ask_with_document_and_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    document = tmp_path / "invite.txt"
    document.write_text("Subject: Join us", encoding="utf-8")
    history = tmp_path / "history.json"
    history.write_text(json.dumps([{"role": "user", "content": "earlier"}]), encoding="utf-8")
    artifact = Artifact(id="cli-document", title="invite", versions=(ArtifactVersion("Subject: Join us today", 5),))
    created = _install_stub(
        monkeypatch,
        ChatResult(output="I've updated the document for you (version 2).", artifact=artifact, version_number=2),
    )

    exit_code = app.main(
        [
            "--settings-path",
            str(tmp_path / "s.json"),
            "ask",
            "make the subject more urgent",
            "--document",
            str(document),
            "--history",
            str(history),
            "--json",
        ]
    )

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["versionNumber"] == 2
    assert payload["artifact"]["versions"][0]["content"] == "Subject: Join us today"
    service = created[0]
    request = service.requests[0]
    assert request.document_context == "Subject: Join us"
    assert request.current_artifact_id == "cli-document"
    assert request.current_artifact_title == "invite"
    assert request.history == [{"role": "user", "content": "earlier"}]
    assert service.document["artifacts"][0]["versions"][0]["content"] == "Subject: Join us"


def test_ask_failure_sets_exit_code(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _install_stub(monkeypatch, ChatResult(output="nope", error_code="provider_error"))

    assert app.main(["--settings-path", str(tmp_path / "s.json"), "ask", "hello"]) == 1


def test_missing_document_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings-path", str(tmp_path / "s.json"), "ask", "hi", "--document", str(tmp_path / "none.txt")])

    assert exit_code == 2
    assert "Cannot read document" in capsys.readouterr().err


# =============================================================================
# Helpers
# =============================================================================


def test_coerce_cli_overrides_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "debug_logging=yes",
            "gateway_timeout=12.5",
            "history_limit=4",
            "organization=acme",
            'default_headers={"X-A": "1"}',
        ]
    )

    assert overrides == {
        "debug_logging": True,
        "gateway_timeout": 12.5,
        "history_limit": 4,
        "organization": "acme",
        "default_headers": {"X-A": "1"},
    }


@pytest.mark.parametrize("entry", ["novalue", "=1", "debug_logging=maybe", "history_limit=four"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_print_result_renders_artifact() -> None:
    artifact = Artifact(id="a", title="Memo", versions=(ArtifactVersion("v1"), ArtifactVersion("v2")))
    stream = io.StringIO()

    app._print_result(ChatResult(output="Done.", artifact=artifact), as_json=False, stream=stream)

    assert stream.getvalue() == "Done.\n\n--- Memo (version 2) ---\nv2\n"


def test_undecodable_document_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    document = tmp_path / "binary.txt"
    document.write_bytes(b"\xff\xfe\x00broken")

    exit_code = app.main(["--settings-path", str(tmp_path / "s.json"), "ask", "hi", "--document", str(document)])

    assert exit_code == 2
    assert "Cannot read document" in capsys.readouterr().err
