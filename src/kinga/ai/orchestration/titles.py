"""Chat title helpers."""

from __future__ import annotations

import re

from ..prompts import TITLE_MAX_CHARS

__all__ = ["auto_title_from", "clip_title", "email_title", "crm_title", "search_title"]

_URL_RE = re.compile(r"https?://\S+")
_WHITESPACE_RE = re.compile(r"\s+")
_ELLIPSIS = "…"


def clip_title(text: str, limit: int = TITLE_MAX_CHARS) -> str:
    """Truncate to ``limit`` characters, ending with an ellipsis when clipped."""

    if len(text) <= limit:
        return text
    return text[: limit - 3] + _ELLIPSIS


def auto_title_from(text: str | None) -> str:
    """Fallback title derived from the latest user message."""

    cleaned = _WHITESPACE_RE.sub(" ", _URL_RE.sub("", text or "")).strip()
    if not cleaned:
        return "New chat"
    return clip_title(cleaned)


def email_title(name: str | None, company: str | None) -> str:
    if not name:
        return "Email result"
    return f"Email · {name} — {company}" if company else f"Email · {name}"


def crm_title(entity: str | None) -> str:
    return f"CRM · {(entity or 'CRM').replace('_', ' ')}"


def search_title(query: str | None) -> str:
    return clip_title((query or "").strip()) or "Search"
