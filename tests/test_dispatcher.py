"""Tests for the model decision point."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import cast

import pytest
from openai import AsyncOpenAI

from kinga.ai.client import AIClient, ClientSettings
from kinga.ai.orchestration.dispatcher import LLMDispatcher, TextReply, ToolCallReply, parse_tool_arguments
from kinga.ai.prompts import DOCUMENT_CONTEXT_HEADER
from kinga.ai.tools.catalog import EMAIL_FINDER, INTERNAL_TOOLS
from kinga.ai.tools.errors import ConfigurationError
from tests.helpers import fake_openai

FIXED_NOW = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


def _dispatcher(replies, **kwargs) -> tuple[LLMDispatcher, list]:
    fake = fake_openai(replies)
    client = AIClient(
        ClientSettings(base_url="http://local", api_key="test", model="stub", retry_min_seconds=0, retry_max_seconds=0),
        client=cast(AsyncOpenAI, fake),
    )
    return LLMDispatcher(client, now=lambda: FIXED_NOW, **kwargs), fake.chat.completions.calls


# =============================================================================
# Tool choice
# =============================================================================


class TestToolChoice:
    @pytest.mark.asyncio
    async def test_compose_request_forces_create_document(self):
        dispatcher, calls = _dispatcher([("create_document", '{"title": "Pricing", "content": "Hi Bob"}')])

        result = await dispatcher.dispatch("Write an email to Bob about pricing", [], None)

        assert result == ToolCallReply(tool_name="create_document", tool_args={"title": "Pricing", "content": "Hi Bob"})
        request = calls[0]
        assert request["tool_choice"] == {"type": "function", "function": {"name": "create_document"}}
        assert request["temperature"] == 0
        assert request["parallel_tool_calls"] is False
        assert [tool["function"]["name"] for tool in request["tools"]] == ["create_document", "update_document"]

    @pytest.mark.asyncio
    async def test_edit_request_with_open_document_forces_update(self):
        dispatcher, calls = _dispatcher([("update_document", '{"content": "new"}')])

        await dispatcher.dispatch("Please tweak the closing line", [], "Subject: Hi\nBody")

        assert calls[0]["tool_choice"] == {"type": "function", "function": {"name": "update_document"}}

    @pytest.mark.asyncio
    async def test_neutral_message_uses_auto(self):
        dispatcher, calls = _dispatcher(["Sure, happy to help."])

        result = await dispatcher.dispatch("What can you do?", [], None)

        assert result == TextReply(content="Sure, happy to help.")
        assert calls[0]["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_nudges_can_be_disabled(self):
        dispatcher, calls = _dispatcher(["ok"], nudges=False)

        await dispatcher.dispatch("Write an email to Bob", [], None)

        assert calls[0]["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_external_tools_are_offered_when_in_catalog(self):
        dispatcher, calls = _dispatcher([("email_finder", '{"linkedin_url": "https://www.linkedin.com/in/x"}')])

        result = await dispatcher.dispatch("who is this?", [], None, INTERNAL_TOOLS + (EMAIL_FINDER,))

        assert result.tool_name == "email_finder"
        assert "email_finder" in [tool["function"]["name"] for tool in calls[0]["tools"]]


# =============================================================================
# Safety net
# =============================================================================


class TestCoercion:
    @pytest.mark.asyncio
    async def test_plain_text_edit_is_coerced_into_update(self):
        dispatcher, _ = _dispatcher(["Subject: Hi\n\nShorter body."])

        result = await dispatcher.dispatch("Please fix the typo", [], "Subject: Hi\n\nLong body.")

        assert result == ToolCallReply(
            tool_name="update_document",
            tool_args={"content": "Subject: Hi\n\nShorter body."},
            coerced=True,
        )

    @pytest.mark.asyncio
    async def test_document_shaped_text_is_coerced(self):
        dispatcher, _ = _dispatcher(["Subject: Follow-up\n\nBody"])

        result = await dispatcher.dispatch("thanks, looks good", [], "Subject: Hi")

        assert isinstance(result, ToolCallReply)
        assert result.coerced

    @pytest.mark.asyncio
    async def test_no_coercion_without_open_document(self):
        dispatcher, _ = _dispatcher(["Subject: Follow-up\n\nBody"])

        result = await dispatcher.dispatch("thanks", [], None)

        assert isinstance(result, TextReply)

    @pytest.mark.asyncio
    async def test_empty_reply_is_not_coerced(self):
        dispatcher, _ = _dispatcher([""])

        result = await dispatcher.dispatch("Please update the intro", [], "Subject: Hi")

        assert result == TextReply(content=None)


# =============================================================================
# Messages and failures
# =============================================================================


class TestMessages:
    def test_message_order(self):
        dispatcher, _ = _dispatcher([])
        history = [{"role": "user", "content": "earlier"}, {"role": "system", "content": "skip"}]

        messages = dispatcher.build_messages("now", history, "DOC")

        assert [m["role"] for m in messages] == ["system", "user", "system", "user"]
        assert messages[0]["content"].endswith("Current date and time (UTC): 2026-05-04T09:00:00+00:00")
        assert messages[2]["content"].startswith(DOCUMENT_CONTEXT_HEADER)
        assert messages[-1] == {"role": "user", "content": "now"}

    def test_history_limit_is_applied(self):
        dispatcher, _ = _dispatcher([], history_limit=2)
        history = [{"role": "user", "content": str(i)} for i in range(5)]

        messages = dispatcher.build_messages("now", history, None)

        assert [m["content"] for m in messages[1:-1]] == ["3", "4"]

    @pytest.mark.asyncio
    async def test_complete_text_disables_tools(self):
        dispatcher, calls = _dispatcher(["  A title  "])

        text = await dispatcher.complete_text("title please")

        assert text == "A title"
        assert "tools" not in calls[0]
        assert "tool_choice" not in calls[0]

    @pytest.mark.asyncio
    async def test_missing_key_propagates_configuration_error(self):
        dispatcher = LLMDispatcher(AIClient(ClientSettings(base_url="http://local", api_key="", model="stub")))

        with pytest.raises(ConfigurationError):
            await dispatcher.dispatch("hello", [], None)


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"content": "x"}', {"content": "x"}),
        ("not json", {"raw": "not json"}),
        ("[1, 2]", {"raw": "[1, 2]"}),
        ("", {}),
        (None, {}),
    ],
)
def test_parse_tool_arguments(text, expected) -> None:
    assert parse_tool_arguments(text) == expected
