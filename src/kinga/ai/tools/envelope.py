"""Extraction of canonical tool envelopes from gateway responses.

Gateway workflows answer in several shapes: a JSON-RPC ``result`` holding a
``content`` array, a list of ``{"json": ...}`` items, a ``{"json": ...}``
wrapper, or an object that already is the envelope. :func:`extract` tries
the explicit shapes in a fixed priority order and only then falls back to a
bounded breadth-first scan for a card-bearing node.
"""

from __future__ import annotations

import copy
import json
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, NamedTuple, Sequence

__all__ = [
    "CARD_MIME",
    "MAX_SCAN_NODES",
    "OK_STATUSES",
    "Card",
    "Envelope",
    "EnvelopeMeta",
    "EnvelopeShape",
    "EnvelopeUI",
    "Extraction",
    "build_context",
    "extract",
    "get_card",
]

LOGGER = logging.getLogger(__name__)

CARD_MIME = "application/kinga.card+json"
MAX_SCAN_NODES = 400
OK_STATUSES: frozenset[str] = frozenset({"ok", "success"})

Card = Mapping[str, Any]


class EnvelopeShape(str, Enum):
    """Response shapes recognized by :func:`extract`, in priority order."""

    CONTENT_ARRAY_JSON = "content[].json"
    CONTENT_ARRAY_TEXT = "content[].text(JSON)"
    ARRAY_OF_JSON = "array[0]"
    JSON_WRAPPER = "result.json"
    SELF_DESCRIBING = "result.self"
    RAW_TEXT = "rawText.parse"
    DEEP_SCAN = "deep-scan"


@dataclass(slots=True, frozen=True)
class EnvelopeUI:
    mime: str
    content: Any = None


@dataclass(slots=True, frozen=True)
class EnvelopeMeta:
    latency_ms: float | None = None
    source: tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Any) -> "EnvelopeMeta | None":
        if not isinstance(value, Mapping):
            return None
        extra = {k: copy.deepcopy(v) for k, v in value.items() if k not in {"latencyMs", "source"}}
        latency = value.get("latencyMs")
        if not isinstance(latency, (int, float)) or isinstance(latency, bool):
            latency = None
        raw_source = value.get("source")
        if isinstance(raw_source, str):
            source: tuple[str, ...] = (raw_source,)
        elif isinstance(raw_source, Sequence):
            source = tuple(str(item) for item in raw_source if item)
        else:
            source = ()
        return cls(latency_ms=latency, source=source, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = copy.deepcopy(dict(self.extra))
        if self.latency_ms is not None:
            payload["latencyMs"] = self.latency_ms
        if self.source:
            payload["source"] = list(self.source)
        return payload


@dataclass(slots=True, frozen=True)
class Envelope:
    """Canonical, tool-agnostic result record.

    Built from a deep copy of the source payload, so later changes to the
    response object are never observed and the source is never mutated.
    """

    tool_id: str = ""
    status: str = ""
    summary: str = ""
    data: Any = None
    version: str | None = None
    ui: EnvelopeUI | None = None
    meta: EnvelopeMeta | None = None

    @property
    def ok(self) -> bool:
        return self.status.strip().lower() in OK_STATUSES

    @property
    def not_found(self) -> bool:
        return self.status.strip().lower() == "not_found"

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Envelope":
        raw_ui = payload.get("ui")
        ui = None
        if isinstance(raw_ui, Mapping):
            ui = EnvelopeUI(mime=str(raw_ui.get("mime") or ""), content=copy.deepcopy(raw_ui.get("content")))
        version = payload.get("version")
        return cls(
            tool_id=_as_text(payload.get("toolId")),
            status=_as_text(payload.get("status")),
            summary=_as_text(payload.get("summary")),
            data=copy.deepcopy(payload.get("data")),
            version=str(version) if version is not None else None,
            ui=ui,
            meta=EnvelopeMeta.from_value(payload.get("meta")),
        )

    def with_latency(self, latency_ms: float) -> "Envelope":
        """Return a copy carrying ``meta.latencyMs``."""

        meta = self.meta or EnvelopeMeta()
        return replace(self, meta=replace(meta, latency_ms=latency_ms))

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the wire schema (camelCase keys)."""

        payload: dict[str, Any] = {
            "toolId": self.tool_id,
            "status": self.status,
            "summary": self.summary,
            "data": copy.deepcopy(self.data),
        }
        if self.version is not None:
            payload["version"] = self.version
        if self.ui is not None:
            payload["ui"] = {"mime": self.ui.mime, "content": copy.deepcopy(self.ui.content)}
        if self.meta is not None:
            payload["meta"] = self.meta.to_dict()
        return payload


class Extraction(NamedTuple):
    envelope: Envelope | None
    shape: EnvelopeShape | None


_UNMATCHED = Extraction(None, None)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def extract(raw_response: Any, fallback_text: str | None = None) -> Extraction:
    """Extract an :class:`Envelope` from ``raw_response``.

    Args:
        raw_response: Any value returned by the gateway transport. A JSON-RPC
            wrapper is unwrapped to its ``result`` first.
        fallback_text: Optional raw text produced alongside the response; it is
            parsed as JSON when no explicit shape matches.

    Returns:
        ``(envelope, shape)``, or ``(None, None)`` when nothing matched.
    """

    root = raw_response.get("result") if isinstance(raw_response, Mapping) and "result" in raw_response else raw_response

    for attempt in (_from_content_array, _from_item_array, _from_json_wrapper, _from_self_describing):
        match = attempt(root)
        if match.envelope is not None:
            return match

    if isinstance(fallback_text, str) and fallback_text.strip():
        parsed = _safe_parse(fallback_text)
        if parsed is not None:
            if isinstance(parsed, list):
                candidate = _unwrap_json(parsed[0]) if parsed else None
            else:
                candidate = _unwrap_json(parsed)
            envelope = _normalize(candidate)
            if envelope is not None:
                return Extraction(envelope, EnvelopeShape.RAW_TEXT)

    found = _scan_for_envelope(root)
    if found is not None:
        envelope = _normalize(found)
        if envelope is not None:
            return Extraction(envelope, EnvelopeShape.DEEP_SCAN)

    LOGGER.debug("No envelope shape matched response of type %s", type(raw_response).__name__)
    return _UNMATCHED


def get_card(envelope: Envelope | None) -> Card | None:
    """Return the renderable card, only when ``ui.mime`` is the card sentinel."""

    if envelope is None or envelope.ui is None or envelope.ui.mime != CARD_MIME:
        return None
    content = envelope.ui.content
    if not isinstance(content, Mapping):
        return None
    return copy.deepcopy(dict(content))


def build_context(envelope: Envelope | None) -> dict[str, str]:
    """Build the compact identity facts reused by later turns."""

    if envelope is None or not isinstance(envelope.data, Mapping):
        return {}
    data: Mapping[str, Any] = envelope.data

    def first_string(*keys: str) -> str:
        for key in keys:
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""

    joined = " ".join(part for part in (first_string("first_name"), first_string("last_name")) if part)
    facts = {
        "name": first_string("full_name") or joined or first_string("name"),
        "email": first_string("email", "primary_email"),
        "company": first_string("company", "organization", "org"),
        "linkedin": first_string("linkedin_url", "url"),
    }
    return {key: value for key, value in facts.items() if value}


# -----------------------------------------------------------------------------
# Shapes
# -----------------------------------------------------------------------------


def _from_content_array(root: Any) -> Extraction:
    if not isinstance(root, Mapping):
        return _UNMATCHED
    content = root.get("content")
    if not isinstance(content, list):
        return _UNMATCHED
    for part in content:
        if isinstance(part, Mapping) and part.get("json") is not None:
            envelope = _normalize(part["json"])
            if envelope is not None:
                return Extraction(envelope, EnvelopeShape.CONTENT_ARRAY_JSON)
    for part in content:
        if isinstance(part, Mapping) and isinstance(part.get("text"), str):
            parsed = _safe_parse(part["text"])
            envelope = _normalize(parsed)
            if envelope is not None:
                return Extraction(envelope, EnvelopeShape.CONTENT_ARRAY_TEXT)
    return _UNMATCHED


def _from_item_array(root: Any) -> Extraction:
    if not isinstance(root, list) or not root:
        return _UNMATCHED
    envelope = _normalize(_unwrap_json(root[0]))
    if envelope is None:
        return _UNMATCHED
    return Extraction(envelope, EnvelopeShape.ARRAY_OF_JSON)


def _from_json_wrapper(root: Any) -> Extraction:
    if not isinstance(root, Mapping) or root.get("json") is None:
        return _UNMATCHED
    envelope = _normalize(root["json"])
    if envelope is None:
        return _UNMATCHED
    return Extraction(envelope, EnvelopeShape.JSON_WRAPPER)


def _from_self_describing(root: Any) -> Extraction:
    if not isinstance(root, Mapping) or not ("toolId" in root or "ui" in root):
        return _UNMATCHED
    return Extraction(Envelope.from_mapping(root), EnvelopeShape.SELF_DESCRIBING)


def _scan_for_envelope(root: Any) -> Any | None:
    """Breadth-first search for a node whose ``ui.mime`` is the card sentinel.

    Visits at most :data:`MAX_SCAN_NODES` containers and tracks visited
    containers by identity, so self-referential inputs terminate.
    """

    seen: set[int] = set()
    queue: deque[Any] = deque()

    def push(value: Any) -> None:
        if isinstance(value, (Mapping, list)) and id(value) not in seen:
            seen.add(id(value))
            queue.append(value)

    push(root)
    steps = 0
    while queue and steps < MAX_SCAN_NODES:
        steps += 1
        current = queue.popleft()
        if isinstance(current, Mapping):
            ui = current.get("ui")
            if isinstance(ui, Mapping) and ui.get("mime") == CARD_MIME:
                return current
            if "json" in current:
                push(current["json"])
            for key, value in current.items():
                if key == "content" and isinstance(value, list):
                    for part in value:
                        if isinstance(part, Mapping) and part.get("json") is not None:
                            return part["json"]
                        push(part)
                else:
                    push(value)
        else:
            for value in current:
                push(value)
    return None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _normalize(value: Any) -> Envelope | None:
    # Gateways sometimes wrap the envelope in a one-element array.
    if isinstance(value, list):
        value = value[0] if value else None
    if not isinstance(value, Mapping):
        return None
    return Envelope.from_mapping(value)


def _unwrap_json(value: Any) -> Any:
    if isinstance(value, Mapping) and "json" in value:
        return value["json"]
    return value


def _safe_parse(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
