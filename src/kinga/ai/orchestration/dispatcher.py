"""Model decision point: plain text reply or a tool call."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Literal, Sequence, Union

from .. import prompts
from ..client import AIClient
from ..tools.catalog import INTERNAL_TOOLS, ToolSpec
from .history import DEFAULT_HISTORY_LIMIT, build_conversation_history

__all__ = [
    "CREATE_RE",
    "DispatchResult",
    "LLMDispatcher",
    "LOOKS_LIKE_DOC_TEXT_RE",
    "TextReply",
    "ToolCallReply",
    "UPDATE_RE",
    "parse_tool_arguments",
]

LOGGER = logging.getLogger(__name__)

CREATE_RE = re.compile(
    r"\b(write|create|draft|generate|compose|make|produce)\b.*\b(email|document|letter|note|proposal|plan|report)\b",
    re.IGNORECASE,
)
UPDATE_RE = re.compile(
    r"\b(update|revise|edit|change|modify|append|add|tweak|replace|fix|adjust|remove)\b",
    re.IGNORECASE,
)
LOOKS_LIKE_DOC_TEXT_RE = re.compile(r"^(subject\s*:|content\s*:)", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class TextReply:
    content: str | None
    type: Literal["text"] = "text"


@dataclass(slots=True, frozen=True)
class ToolCallReply:
    tool_name: str
    tool_args: dict[str, Any] = field(default_factory=dict)
    coerced: bool = False
    type: Literal["tool_call"] = "tool_call"


DispatchResult = Union[TextReply, ToolCallReply]


def parse_tool_arguments(text: str | None) -> dict[str, Any]:
    """Decode tool-call arguments; undecodable text is kept under ``raw``."""

    if not text:
        return {}
    try:
        value = json.loads(text)
    except ValueError:
        return {"raw": text}
    return value if isinstance(value, dict) else {"raw": text}


def wants_create(message: str, has_open_document: bool) -> bool:
    return not has_open_document and CREATE_RE.search(message) is not None


def wants_update(message: str, has_open_document: bool) -> bool:
    return has_open_document and UPDATE_RE.search(message) is not None


class LLMDispatcher:
    """Builds the decision request and classifies the model's reply.

    Args:
        client: Chat-completions client. Missing credentials raise
            :class:`~kinga.ai.tools.errors.ConfigurationError`; provider
            failures raise :class:`~kinga.ai.tools.errors.ProviderError`.
        history_limit: Number of prior turns sent with each request.
        nudges: Force ``create_document``/``update_document`` when the
            message clearly asks for it and the tool is offered.
        now: Clock used for the datetime line of the system prompt.
    """

    def __init__(
        self,
        client: AIClient,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        nudges: bool = True,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._history_limit = history_limit
        self._nudges = nudges
        self._now = now

    @property
    def client(self) -> AIClient:
        return self._client

    async def dispatch(
        self,
        message: str,
        history: Iterable[Any] | None = None,
        document_context: str | None = None,
        tool_catalog: Sequence[ToolSpec] = INTERNAL_TOOLS,
    ) -> DispatchResult:
        has_open_document = bool(document_context)
        update_expected = wants_update(message, has_open_document)
        create_expected = wants_create(message, has_open_document)

        messages = self.build_messages(message, history, document_context)
        tools = [spec.to_openai_tool() for spec in tool_catalog]
        tool_choice = self._tool_choice(tool_catalog, update_expected, create_expected)
        LOGGER.debug(
            "Dispatching message (open_document=%s, tools=%s, tool_choice=%s)",
            has_open_document,
            [spec.name for spec in tool_catalog],
            tool_choice,
        )

        reply = await self._client.complete_chat(
            messages,
            tools=tools,
            tool_choice=tool_choice,
            temperature=0,
            parallel_tool_calls=False,
        )

        if reply.tool_calls:
            call = reply.tool_calls[0]
            return ToolCallReply(tool_name=call.name, tool_args=parse_tool_arguments(call.arguments))

        raw = (reply.content or "").strip()
        if has_open_document and raw and (update_expected or LOOKS_LIKE_DOC_TEXT_RE.search(raw)):
            LOGGER.info("Coercing plain-text reply into update_document for the open document")
            return ToolCallReply(tool_name="update_document", tool_args={"content": raw}, coerced=True)
        return TextReply(content=raw or None)

    async def complete_text(
        self,
        prompt: str,
        *,
        history: Iterable[Any] | None = None,
        document_context: str | None = None,
    ) -> str | None:
        """Tools-disabled completion used for synthesis and titles."""

        messages = self.build_messages(prompt, history, document_context)
        reply = await self._client.complete_chat(messages, temperature=0)
        text = (reply.content or "").strip()
        return text or None

    def build_messages(
        self,
        message: str,
        history: Iterable[Any] | None,
        document_context: str | None,
    ) -> list[dict[str, str]]:
        now = self._now() if self._now is not None else None
        messages = [{"role": "system", "content": prompts.system_prompt(now=now)}]
        messages.extend(turn.to_message() for turn in build_conversation_history(history, self._history_limit))
        if document_context:
            messages.append({"role": "system", "content": prompts.document_context_message(document_context)})
        messages.append({"role": "user", "content": message})
        return messages

    def _tool_choice(
        self,
        catalog: Sequence[ToolSpec],
        update_expected: bool,
        create_expected: bool,
    ) -> str | dict[str, Any]:
        if self._nudges:
            available = {spec.name for spec in catalog}
            if update_expected and "update_document" in available:
                return _forced("update_document")
            if create_expected and "create_document" in available:
                return _forced("create_document")
        return "auto"


def _forced(name: str) -> dict[str, Any]:
    return {"type": "function", "function": {"name": name}}
