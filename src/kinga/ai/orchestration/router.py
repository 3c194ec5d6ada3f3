"""Hard-routing of deterministic tool requests ahead of any model call.

Only the email lookup is hard-routed: a lookup phrase plus a LinkedIn
profile URL maps to ``email_finder`` without asking the model. Compose
requests such as "write an email to ..." never match.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ...services.permissions import ToolPermissions
from ..tools.budget import InvocationBudget, get_invocation_budget, tool_key, wants_retry
from ..tools.envelope import Card, Envelope
from ..tools.errors import ErrorCode
from ..tools.reuse_blocks import render_ctx, render_tool_json
from ..tools.runners import ToolRunner, ToolRunResult, log_tool_run
from .history import ConversationTurn, previous_turn
from .titles import email_title

__all__ = [
    "COMPOSE_INTENT_RE",
    "LINKEDIN_IN_RE",
    "LOOKUP_INTENT_RE",
    "RouterResult",
    "ToolInvocationRouter",
    "extract_linkedin_url",
    "failure_message",
    "is_compose_request",
    "is_lookup_request",
]

LOGGER = logging.getLogger(__name__)

LINKEDIN_IN_RE = re.compile(r"https?://(?:www\.)?linkedin\.com/in/[^\s)]+", re.IGNORECASE)
LOOKUP_INTENT_RE = re.compile(
    r"\b(find|lookup|look\s*up|get|fetch|discover|pull|what(?:'s| is))\b[^\n]{0,40}"
    r"\b(e[-\s]?mail|email|contact(?:\s*(?:info|information)?)?)\b"
    r"|\b(e[-\s]?mail|email)\s*address\b",
    re.IGNORECASE,
)
COMPOSE_INTENT_RE = re.compile(r"\b(send|draft|write|compose)\b.*\be[-\s]?mail\b", re.IGNORECASE | re.DOTALL)

EMAIL_FINDER = "email_finder"

CLARIFY_MESSAGE = (
    "Please paste the LinkedIn profile URL (e.g., https://www.linkedin.com/in/username/) "
    "so I can look up the email."
)
DENIED_MESSAGE = "You don't have access to the Email Finder tool."
UNAVAILABLE_MESSAGE = "The email finder isn't available right now. I can still draft an outreach email if you'd like."
REPEAT_MESSAGE = (
    "I already looked up that profile in my previous reply. "
    'Say "try again" if you want me to run the lookup again.'
)

_ERROR_MARKERS = ("had a problem", "took too long", "appears unavailable", "isn't available")


def is_compose_request(text: str | None) -> bool:
    return COMPOSE_INTENT_RE.search(text or "") is not None


def is_lookup_request(text: str | None) -> bool:
    """Lookup phrasing that is not a request to write an email."""
    if is_compose_request(text):
        return False
    return LOOKUP_INTENT_RE.search(text or "") is not None


def extract_linkedin_url(text: str | None) -> str | None:
    match = LINKEDIN_IN_RE.search(text or "")
    return match.group(0) if match else None


def failure_message(result: ToolRunResult, label: str, alternative: str = "") -> str:
    """User-facing wording for a failed run: escalated, timeout, or transient."""

    if result.escalated:
        text = f"The {label} appears unavailable right now. Please try again later."
        return f"{text} Meanwhile, {alternative}." if alternative else text
    lead = f"The {label} took too long to respond." if result.timed_out else f"The {label} had a problem."
    tail = f"You can ask me to try again, or {alternative}." if alternative else "You can ask me to try again."
    return f"{lead} {tail}"


@dataclass(slots=True)
class RouterResult:
    """Outcome of :meth:`ToolInvocationRouter.route`."""

    handled: bool
    output: str = ""
    card: Card | None = None
    suggested_title: str | None = None
    envelope: Envelope | None = None
    tool: str | None = None
    cached: bool = False
    error_code: str | None = None

    @classmethod
    def not_handled(cls) -> "RouterResult":
        return cls(handled=False)


class ToolInvocationRouter:
    """Routes lookup requests to ``email_finder`` and guards every gateway call.

    Args:
        runner: Gateway tool runner.
        budget: Dedup cache and failure counters; defaults to the shared one.
        block_repeat_argument: Decline a lookup whose URL equals the one in the
            immediately preceding user turn unless a retry was requested or
            the preceding assistant turn reported an error.
        failure_threshold: Failures that switch wording to "appears unavailable".
    """

    def __init__(
        self,
        runner: ToolRunner,
        *,
        budget: InvocationBudget | None = None,
        block_repeat_argument: bool = False,
        failure_threshold: int | None = None,
    ) -> None:
        self._runner = runner
        self._budget = budget or get_invocation_budget()
        self._block_repeat_argument = block_repeat_argument
        self._failure_threshold = failure_threshold

    @property
    def budget(self) -> InvocationBudget:
        return self._budget

    @property
    def runner(self) -> ToolRunner:
        return self._runner

    async def route(
        self,
        message: str,
        prior_turns: Iterable[Any] | None = None,
        permissions: ToolPermissions | None = None,
    ) -> RouterResult:
        text = message or ""
        if not is_lookup_request(text):
            return RouterResult.not_handled()

        linkedin_url = extract_linkedin_url(text)
        if not linkedin_url:
            return RouterResult(handled=True, output=CLARIFY_MESSAGE, tool=EMAIL_FINDER, error_code=ErrorCode.MISSING_PARAMETER)

        if permissions is None or not permissions.is_allowed(EMAIL_FINDER):
            return RouterResult(handled=True, output=DENIED_MESSAGE, tool=EMAIL_FINDER, error_code=ErrorCode.PERMISSION_DENIED)

        ready, reason = self._runner.settings.gateway_ready()
        if not ready:
            LOGGER.warning("[%s] not configured: %s", EMAIL_FINDER, reason)
            return RouterResult(handled=True, output=UNAVAILABLE_MESSAGE, tool=EMAIL_FINDER, error_code=ErrorCode.CONFIGURATION_ERROR)

        force_retry = wants_retry(text)
        if self._block_repeat_argument and not force_retry:
            turns = [turn for turn in map(ConversationTurn.coerce, prior_turns or ()) if turn is not None]
            if self._is_repeat(linkedin_url, turns):
                log_tool_run(EMAIL_FINDER, self._runner.gateway_tool_id(EMAIL_FINDER), 0, "skipped-duplicate")
                return RouterResult(handled=True, output=REPEAT_MESSAGE, tool=EMAIL_FINDER)

        result = await self.invoke(EMAIL_FINDER, {"linkedin_url": linkedin_url}, force_retry=force_retry)
        if not result.ok:
            LOGGER.warning("[%s] runner failed: %s", EMAIL_FINDER, result.error or "unknown error")
            return RouterResult(
                handled=True,
                output=failure_message(result, "email lookup tool", "I can draft an outreach email instead"),
                tool=EMAIL_FINDER,
                error_code=result.error_code,
            )
        return self._format_lookup(result)

    async def invoke(self, tool: str, args: Mapping[str, Any], *, force_retry: bool = False) -> ToolRunResult:
        """Run ``tool`` through the budget: reuse a fresh result or call the gateway."""

        key = tool_key(tool, args)
        entry = self._budget.should_skip(key, force_retry=force_retry)
        if entry is not None:
            log_tool_run(tool, self._runner.gateway_tool_id(tool), 0, "skipped-duplicate")
            return ToolRunResult(
                tool=tool,
                ok=True,
                envelope=entry.envelope,
                card=entry.card,
                ctx=dict(entry.ctx),
                cached=True,
            )

        result = await self._runner.run(tool, args)
        if result.ok:
            self._budget.record_success(
                key,
                ctx=result.ctx,
                card=result.card,
                result_status=result.result_status,
                envelope=result.envelope,
            )
        elif result.error_code != ErrorCode.CONFIGURATION_ERROR:
            self._budget.record_failure(key)
            result.escalated = self._budget.too_many_failures(key, self._failure_threshold)
        return result

    def _is_repeat(self, linkedin_url: str, turns: list[ConversationTurn]) -> bool:
        last_user = previous_turn(turns, "user")
        if last_user is None or extract_linkedin_url(last_user.content) != linkedin_url:
            return False
        last_assistant = turns[-1] if turns and turns[-1].role == "assistant" else None
        if last_assistant is not None and any(marker in last_assistant.content for marker in _ERROR_MARKERS):
            return False
        return True

    @staticmethod
    def _format_lookup(result: ToolRunResult) -> RouterResult:
        envelope = result.envelope
        ctx = result.ctx
        summary = (envelope.summary if envelope is not None else "") or "Email lookup result."
        email = ctx.get("email")
        if email and email not in summary:
            summary = f"{summary} Email: {email}."

        parts = [f"{summary}{' See the card below.' if result.card else ''}"]
        if envelope is not None:
            parts.append(render_tool_json(EMAIL_FINDER, envelope.to_dict()))
        if ctx:
            parts.append(render_ctx(EMAIL_FINDER, ctx))
        return RouterResult(
            handled=True,
            output="\n".join(parts),
            card=result.card,
            suggested_title=email_title(ctx.get("name"), ctx.get("company")),
            envelope=envelope,
            tool=EMAIL_FINDER,
            cached=result.cached,
        )
