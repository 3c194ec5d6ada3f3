"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Iterable

from kinga.ai.gateway.client import RPCResult


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRPCClient:
    """Stands in for :class:`StreamingRPCClient`.

    Replays queued responses in order; the last one repeats once the queue
    is down to a single item. Exceptions in the queue are raised.
    """

    def __init__(self, responses: Iterable[Any] = ()) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def call(self, base_url, headers, tool_name, args, timeout=None):
        self.calls.append(
            {
                "base_url": base_url,
                "headers": dict(headers or {}),
                "tool_name": tool_name,
                "args": dict(args),
                "timeout": timeout,
            }
        )
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


def envelope_payload(
    *,
    tool_id: str = "email_finder",
    status: str = "ok",
    summary: str = "Found an email for Ada Lovelace.",
    data: Any = None,
    card: bool = True,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "toolId": tool_id,
        "status": status,
        "summary": summary,
        "data": data
        if data is not None
        else {"full_name": "Ada Lovelace", "email": "ada@example.com", "company": "Analytical Engines"},
    }
    if card:
        payload["ui"] = {"mime": "application/kinga.card+json", "content": {"title": "Ada Lovelace"}}
    return payload


def rpc_success(envelope: dict[str, Any], correlation_id: str = "kinga-1") -> RPCResult:
    result = {"content": [{"type": "text", "text": json.dumps(envelope)}]}
    return RPCResult(id=correlation_id, result=result, raw={"jsonrpc": "2.0", "id": correlation_id, "result": result})


def fake_openai(replies: Iterable[Any]) -> SimpleNamespace:
    """Minimal AsyncOpenAI stand-in whose completions replay ``replies``.

    Each reply is a string (plain content), a ``(name, arguments)`` tuple for a
    single tool call, or an exception to raise. Requests land on
    ``client.chat.completions.calls``.
    """

    queue = list(replies)
    calls: list[dict[str, Any]] = []

    async def create(**kwargs: Any) -> SimpleNamespace:
        calls.append(kwargs)
        reply = queue.pop(0) if queue else ""
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, tuple):
            name, arguments = reply
            call = SimpleNamespace(id="call_1", function=SimpleNamespace(name=name, arguments=arguments))
            message = SimpleNamespace(content=None, tool_calls=[call])
            finish = "tool_calls"
        else:
            message = SimpleNamespace(content=reply, tool_calls=None)
            finish = "stop"
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish)])

    completions = SimpleNamespace(create=create, calls=calls)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))
