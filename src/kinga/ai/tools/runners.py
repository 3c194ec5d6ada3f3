"""Gateway tool runners.

A runner performs one gateway call for a catalog tool and always returns a
:class:`ToolRunResult`; gateway exceptions stop here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ...services.settings import Settings
from ...utils.logging import TOOL_RUN_LOGGER
from ..gateway.client import RPCResult, StreamingRPCClient
from .envelope import OK_STATUSES, Card, Envelope, EnvelopeShape, build_context, extract, get_card
from .errors import ConfigurationError, ErrorCode, MalformedEnvelopeError, ToolError, ToolFailedError

__all__ = ["CRM_TOOL_IDS", "ToolRunResult", "ToolRunner", "fallback_text", "log_tool_run"]

LOGGER = logging.getLogger(__name__)
RUN_LOGGER = logging.getLogger(TOOL_RUN_LOGGER)

CRM_TOOL_IDS: frozenset[str] = frozenset({"crm", "crm_upsert"})


def log_tool_run(
    tool: str,
    gateway_tool: str | None,
    duration_ms: float,
    status: str,
    *,
    error: str | None = None,
) -> None:
    """Emit the single structured line recorded for every tool run."""

    if error:
        RUN_LOGGER.info(
            "tool=%s gateway_tool=%s duration_ms=%d status=%s error=%r",
            tool,
            gateway_tool or "-",
            duration_ms,
            status,
            error,
        )
    else:
        RUN_LOGGER.info(
            "tool=%s gateway_tool=%s duration_ms=%d status=%s",
            tool,
            gateway_tool or "-",
            duration_ms,
            status,
        )


@dataclass(slots=True)
class ToolRunResult:
    """Outcome of one tool run. ``ok`` is False for every failure mode."""

    tool: str
    ok: bool
    envelope: Envelope | None = None
    card: Card | None = None
    ctx: dict[str, str] = field(default_factory=dict)
    shape: EnvelopeShape | None = None
    raw: Any = None
    error: str | None = None
    error_code: str | None = None
    duration_ms: float = 0.0
    cached: bool = False
    escalated: bool = False

    @property
    def timed_out(self) -> bool:
        return self.error_code == ErrorCode.TIMEOUT

    @property
    def result_status(self) -> str | None:
        return self.envelope.status if self.envelope is not None else None

    @classmethod
    def failure(cls, tool: str, error: ToolError, *, duration_ms: float = 0.0, envelope: Envelope | None = None) -> "ToolRunResult":
        return cls(
            tool=tool,
            ok=False,
            envelope=envelope,
            error=error.message,
            error_code=error.error_code,
            duration_ms=duration_ms,
        )


def fallback_text(result: Any) -> str | None:
    """Raw text carried by ``result.content[0].text`` or a bare string result."""

    if isinstance(result, str):
        return result
    if not isinstance(result, Mapping):
        return None
    content = result.get("content")
    if isinstance(content, list) and content and isinstance(content[0], Mapping):
        text = content[0].get("text")
        if isinstance(text, str):
            return text
    return None


class ToolRunner:
    """Runs external catalog tools through the workflow gateway."""

    def __init__(
        self,
        settings: Settings,
        *,
        rpc_client: StreamingRPCClient | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._settings = settings
        self._client = rpc_client or StreamingRPCClient(default_timeout=settings.gateway_timeout)
        self._clock = clock or time.monotonic

    @property
    def settings(self) -> Settings:
        return self._settings

    def gateway_tool_id(self, tool: str) -> str:
        ids = {
            "email_finder": self._settings.email_finder_tool_id,
            "search": self._settings.search_tool_id,
            "crm": self._settings.crm_tool_id,
        }
        return ids.get(tool) or tool

    async def run(self, tool: str, args: Mapping[str, Any]) -> ToolRunResult:
        gateway_tool = self.gateway_tool_id(tool)
        ready, reason = self._settings.gateway_ready()
        if not ready:
            LOGGER.warning("[%s] gateway not configured: %s", tool, reason)
            result = ToolRunResult.failure(tool, ConfigurationError(message="The workflow gateway is not configured", reason=reason))
            log_tool_run(tool, gateway_tool, 0, "error", error=reason)
            return result

        started = self._clock()
        try:
            rpc = await self._client.call(
                self._settings.gateway_url,
                self._settings.gateway_headers(),
                gateway_tool,
                args,
                timeout=self._settings.gateway_timeout,
            )
        except ToolError as exc:
            duration_ms = self._elapsed_ms(started)
            log_tool_run(tool, gateway_tool, duration_ms, "error", error=str(exc))
            return ToolRunResult.failure(tool, exc, duration_ms=duration_ms)

        duration_ms = self._elapsed_ms(started)
        result = self._interpret(tool, rpc, duration_ms)
        log_tool_run(tool, gateway_tool, duration_ms, "ok" if result.ok else "error", error=result.error)
        return result

    def _interpret(self, tool: str, rpc: RPCResult, duration_ms: float) -> ToolRunResult:
        if not rpc.ok:
            return ToolRunResult.failure(
                tool,
                ToolFailedError(message=rpc.error_message, details={"error": dict(rpc.error or {})}),
                duration_ms=duration_ms,
            )

        extraction = extract(rpc.raw or {"result": rpc.result}, fallback_text(rpc.result))
        if extraction.envelope is None:
            return ToolRunResult.failure(tool, MalformedEnvelopeError(), duration_ms=duration_ms)

        envelope = extraction.envelope.with_latency(round(duration_ms))
        if tool == "crm" and not self._crm_accepted(envelope):
            return ToolRunResult.failure(
                tool,
                ToolFailedError(message=envelope.summary or "crm failed", status=envelope.status),
                duration_ms=duration_ms,
                envelope=envelope,
            )
        return ToolRunResult(
            tool=tool,
            ok=True,
            envelope=envelope,
            card=get_card(envelope),
            ctx=build_context(envelope),
            shape=extraction.shape,
            raw=rpc.result,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _crm_accepted(envelope: Envelope) -> bool:
        return envelope.tool_id in CRM_TOOL_IDS and envelope.status.strip().lower() in OK_STATUSES

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000
