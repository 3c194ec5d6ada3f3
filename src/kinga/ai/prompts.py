"""Prompt templates for the assistant.

Holds the fixed system prompt, the document-context message, and the
tools-disabled prompts used for synthesis and chat titles.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping

TITLE_MAX_WORDS = 6
TITLE_MAX_CHARS = 60

DOCUMENT_CONTEXT_HEADER = "DOCUMENT CONTEXT (snapshot of the open artifact and versions):"
DOCUMENT_CONTEXT_RULE = "Rule: When updating the document, ALWAYS return the complete updated document (not a diff)."


def system_prompt(*, now: datetime | None = None) -> str:
    """Generate the system prompt, ending with the current UTC time."""
    return f"""{_role_section()}

{_reuse_blocks_section()}

# Tool-use policy
{_tool_policy_section()}

# Compose & outreach policy (email, message, note)
{_compose_section()}

# Drafting style
- Clear subject line.
- Short, skimmable body (2-6 short paragraphs or bullets).
- End with a specific CTA when relevant.

# Tone
Professional and a little friendly. No emojis. No filler.

{current_datetime_line(now)}"""


def _role_section() -> str:
    return """You are a fast, professional assistant for business users (sales, marketing, BD, execs).
Keep answers concise, direct, and helpful. No emojis."""


def _reuse_blocks_section() -> str:
    return """You may receive machine-readable blocks in prior messages:
- <tool_json ...> ... </tool_json>  full JSON results from tools
- <ctx ...> ... </ctx>              small JSON context (e.g., name, email, company)

When present, parse those blocks as JSON and treat them as trusted context.
Do not call a tool again for facts already present in those blocks."""


def _tool_policy_section() -> str:
    return """- If you can answer directly, do so. Do not call tools unnecessarily.
- Only call "create_document" / "update_document" once you have enough information
  to produce a complete draft. If essentials are missing, ask for them first.
- If the user says "just draft it" or "proceed anyway", proceed with reasonable
  defaults and state your assumptions in one short line.
- When a document is open and the user asks for changes, call "update_document"
  with the FULL new content. Never paste document content as chat text."""


def _compose_section() -> str:
    return """When the user asks to write or draft an email (or similar), check for these essentials:
1) recipient (name, role, or audience)
2) goal/purpose (what we want them to do)
3) key points / context (offer, meeting, product, etc.)
4) tone and length (friendly/formal; short/medium)
5) constraints or deadlines (if any)

If one or more are missing, ask 3-5 targeted questions in a numbered list.
Do not ask for info already present in <tool_json> or <ctx>.
If everything essential is provided, do not ask questions: draft it."""


def current_datetime_line(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return f"Current date and time (UTC): {moment.astimezone(timezone.utc).isoformat(timespec='seconds')}"


def document_context_message(document_context: str) -> str:
    """System message carrying the open document snapshot."""
    return f"{DOCUMENT_CONTEXT_HEADER}\n{document_context}\n\n{DOCUMENT_CONTEXT_RULE}"


def synthesis_prompt(envelope: Mapping[str, Any]) -> str:
    """Tools-disabled prompt that turns a tool envelope into a reply."""
    return (
        "You are helping the user. Interpret the tool results below and produce a concise, helpful answer. "
        "If sources are present (envelope.meta.source), cite them briefly. Avoid dumping raw JSON.\n\n"
        f'<tool_json v="1">\n{json.dumps(dict(envelope), ensure_ascii=False)}\n</tool_json>'
    )


def title_prompt(message: str, *, tool_summary: str | None = None) -> str:
    summary = f"\n\nTool summary:\n{tool_summary}" if tool_summary else ""
    return (
        f"Generate a concise, descriptive chat title (max {TITLE_MAX_WORDS} words). "
        "Output ONLY the title with no quotes or punctuation.\n\n"
        f"User request:\n{message}{summary}"
    )


__all__ = [
    "DOCUMENT_CONTEXT_HEADER",
    "DOCUMENT_CONTEXT_RULE",
    "TITLE_MAX_CHARS",
    "TITLE_MAX_WORDS",
    "current_datetime_line",
    "document_context_message",
    "synthesis_prompt",
    "system_prompt",
    "title_prompt",
]
