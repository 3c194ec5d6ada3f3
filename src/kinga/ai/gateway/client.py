"""Streaming JSON-RPC client for the remote workflow gateway.

One invocation opens a long-lived event stream, waits for the ``endpoint``
event announcing a session-scoped submission path, posts a single
``tools/call`` request there, and keeps reading the stream until a
``message`` event carries the same correlation id. The whole exchange runs
under one timeout; the stream is closed on every exit path.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping

import httpx

from ..tools.errors import (
    GatewayError,
    GatewaySessionError,
    GatewayStreamClosedError,
    GatewaySubmitError,
    GatewayTimeoutError,
)
from .sse import ServerSentEvent, aiter_events

__all__ = ["RPCResult", "StreamingRPCClient", "ToolInvocation", "new_correlation_id"]

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20.0
_STREAM_ACCEPT = "text/event-stream, application/json"
_SUBMIT_ACCEPT = "application/json, text/event-stream"
_ERROR_BODY_LIMIT = 500


def new_correlation_id(prefix: str = "kinga") -> str:
    """Return a fresh id; logically identical retries still get a new one."""

    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class ToolInvocation:
    """A single physical request to a gateway tool. Never persisted."""

    tool_name: str
    args: Mapping[str, Any]
    correlation_id: str = field(default_factory=new_correlation_id)

    def to_request(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self.correlation_id,
            "method": "tools/call",
            "params": {"name": self.tool_name, "arguments": dict(self.args)},
        }


@dataclass(slots=True)
class RPCResult:
    """JSON-RPC response matched to an invocation."""

    id: str
    result: Any = None
    error: Mapping[str, Any] | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        return str(self.error.get("message") or "Gateway returned an error")


class StreamingRPCClient:
    """Issues correlated ``tools/call`` requests over an event-stream session.

    Args:
        http_client: Optional shared :class:`httpx.AsyncClient`. When omitted,
            a client is created per call and closed afterwards.
        default_timeout: Overall time budget in seconds for one call.
        id_prefix: Prefix for generated correlation ids.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        id_prefix: str = "kinga",
    ) -> None:
        self._http_client = http_client
        self._default_timeout = default_timeout
        self._id_prefix = id_prefix

    async def call(
        self,
        base_url: str,
        headers: Mapping[str, str] | None,
        tool_name: str,
        args: Mapping[str, Any],
        timeout: float | None = None,
    ) -> RPCResult:
        """Invoke ``tool_name`` and wait for its correlated response.

        Raises:
            GatewaySessionError: The stream could not be opened.
            GatewaySubmitError: The submission was rejected.
            GatewayStreamClosedError: The stream ended without a match.
            GatewayTimeoutError: The overall timeout elapsed.
            GatewayError: Any other transport failure.
        """

        budget = self._default_timeout if timeout is None else timeout
        invocation = ToolInvocation(
            tool_name=tool_name,
            args=dict(args),
            correlation_id=new_correlation_id(self._id_prefix),
        )
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self._exchange(base_url, dict(headers or {}), invocation, budget), budget)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Gateway call %s (%s) timed out after %.1fs", tool_name, invocation.correlation_id, budget)
            raise GatewayTimeoutError(timeout_seconds=budget, details={"tool": tool_name}) from exc
        LOGGER.debug(
            "Gateway call %s (%s) resolved in %.0fms",
            tool_name,
            invocation.correlation_id,
            (time.monotonic() - started) * 1000,
        )
        return result

    async def _exchange(
        self,
        base_url: str,
        headers: dict[str, str],
        invocation: ToolInvocation,
        timeout: float,
    ) -> RPCResult:
        async with contextlib.AsyncExitStack() as stack:
            client = self._http_client
            if client is None:
                client = await stack.enter_async_context(httpx.AsyncClient(timeout=timeout))
            try:
                response = await stack.enter_async_context(
                    client.stream(
                        "GET",
                        base_url,
                        headers={"Accept": _STREAM_ACCEPT, **headers},
                        timeout=httpx.Timeout(timeout),
                    )
                )
            except httpx.TimeoutException as exc:
                raise GatewayTimeoutError(timeout_seconds=timeout) from exc
            except httpx.HTTPError as exc:
                raise GatewaySessionError(message=f"Failed to open session: {exc}") from exc

            if not response.is_success:
                body = await _read_body(response)
                raise GatewaySessionError(
                    message=f"Failed to open session ({response.status_code}): {body}",
                    status_code=response.status_code,
                )

            events = aiter_events(response.aiter_lines())
            try:
                session_url = await self._await_endpoint(events, base_url)
                await self._submit(client, session_url, invocation, headers, timeout)
                return await self._await_match(events, invocation)
            except httpx.TimeoutException as exc:
                raise GatewayTimeoutError(timeout_seconds=timeout) from exc
            except httpx.HTTPError as exc:
                raise GatewayError(message=f"Gateway stream failed: {exc}") from exc
            finally:
                await events.aclose()

    async def _await_endpoint(self, events: AsyncIterator[ServerSentEvent], base_url: str) -> str:
        async for event in events:
            if event.event == "endpoint" and event.data:
                session_url = str(httpx.URL(base_url).join(event.data))
                LOGGER.debug("Gateway session endpoint: %s", session_url)
                return session_url
            if event.event == "error":
                raise GatewaySessionError(message=f"Gateway refused the session: {event.data or 'unknown error'}")
        raise GatewaySessionError(message="No session endpoint received from the event stream")

    async def _submit(
        self,
        client: httpx.AsyncClient,
        session_url: str,
        invocation: ToolInvocation,
        headers: Mapping[str, str],
        timeout: float,
    ) -> None:
        request_headers = {"Content-Type": "application/json", "Accept": _SUBMIT_ACCEPT, **headers}
        response = await client.post(
            session_url,
            json=invocation.to_request(),
            headers=request_headers,
            timeout=httpx.Timeout(timeout),
        )
        # An empty acknowledgement is normal; the result arrives on the stream.
        if not response.is_success:
            raise GatewaySubmitError(
                message=f"tools/call {invocation.tool_name} failed ({response.status_code}): {response.text[:_ERROR_BODY_LIMIT]}",
                status_code=response.status_code,
            )

    async def _await_match(self, events: AsyncIterator[ServerSentEvent], invocation: ToolInvocation) -> RPCResult:
        async for event in events:
            if event.event == "done":
                break
            if event.event == "error":
                raise GatewayError(message=f"Gateway reported an error: {event.data or 'unknown error'}")
            if event.event != "message" or not event.data:
                continue
            try:
                payload = json.loads(event.data)
            except ValueError:
                LOGGER.debug("Skipping non-JSON stream message: %.120s", event.data)
                continue
            if not isinstance(payload, Mapping) or payload.get("id") != invocation.correlation_id:
                continue
            error = payload.get("error")
            return RPCResult(
                id=invocation.correlation_id,
                result=payload.get("result"),
                error=error if isinstance(error, Mapping) else None,
                raw=payload,
            )
        raise GatewayStreamClosedError()


async def _read_body(response: httpx.Response) -> str:
    try:
        body = await response.aread()
    except httpx.HTTPError:
        return ""
    return body.decode("utf-8", errors="replace")[:_ERROR_BODY_LIMIT]
