"""Machine-readable ``<tool_json>`` and ``<ctx>`` blocks embedded in replies.

A later turn recovers structured tool context from these blocks instead of
calling the tool again. Parsing is tolerant: a block whose body is not JSON
is skipped.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

__all__ = [
    "ReuseBlock",
    "find_latest_block",
    "parse_reuse_blocks",
    "render_ctx",
    "render_tool_json",
    "strip_reuse_blocks",
]

LOGGER = logging.getLogger(__name__)

_BLOCK_RE = re.compile(r"<(?P<kind>tool_json|ctx)(?P<attrs>[^>]*)>(?P<body>.*?)</(?P=kind)>", re.DOTALL)
_ATTR_RE = re.compile(r'(\w+)\s*=\s*"([^"]*)"')
_STRIP_RE = re.compile(r"\n?<(tool_json|ctx)[^>]*>.*?</\1>", re.DOTALL)


@dataclass(slots=True, frozen=True)
class ReuseBlock:
    kind: str
    tool: str | None
    version: str | None
    payload: Any


def _render(kind: str, tool: str | None, payload: Any, version: str) -> str:
    attrs = f' tool="{tool}"' if tool else ""
    body = json.dumps(payload, ensure_ascii=False)
    return f'<{kind}{attrs} v="{version}">\n{body}\n</{kind}>'


def render_tool_json(tool: str | None, payload: Any, version: str = "1") -> str:
    return _render("tool_json", tool, payload, version)


def render_ctx(tool: str | None, ctx: Mapping[str, Any], version: str = "1") -> str:
    return _render("ctx", tool, dict(ctx), version)


def parse_reuse_blocks(text: str | None) -> list[ReuseBlock]:
    """Return every well-formed block in ``text`` in document order."""

    blocks: list[ReuseBlock] = []
    for match in _BLOCK_RE.finditer(text or ""):
        try:
            payload = json.loads(match.group("body"))
        except ValueError:
            LOGGER.debug("Skipping malformed <%s> block", match.group("kind"))
            continue
        attrs = dict(_ATTR_RE.findall(match.group("attrs")))
        blocks.append(
            ReuseBlock(
                kind=match.group("kind"),
                tool=attrs.get("tool"),
                version=attrs.get("v"),
                payload=payload,
            )
        )
    return blocks


def find_latest_block(
    turns: Iterable[Mapping[str, Any]],
    *,
    tool: str | None = None,
    kind: str = "tool_json",
) -> ReuseBlock | None:
    """Most recent block of ``kind`` (optionally for ``tool``) across ``turns``."""

    for turn in reversed(list(turns)):
        content = turn.get("content")
        if not isinstance(content, str):
            continue
        for block in reversed(parse_reuse_blocks(content)):
            if block.kind == kind and (tool is None or block.tool == tool):
                return block
    return None


def strip_reuse_blocks(text: str | None) -> str:
    return _STRIP_RE.sub("", text or "").strip()
