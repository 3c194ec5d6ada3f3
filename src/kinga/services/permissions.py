"""Per-user tool permission flags."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

__all__ = ["TOOL_KEYS", "ToolPermissions", "pick_bool"]

LOGGER = logging.getLogger(__name__)

TOOL_KEYS: tuple[str, ...] = ("email_finder", "search", "crm")
_BOOL_FIELDS: tuple[str, ...] = ("enabled", "allowed", "allow", "value", "on", "active", "isEnabled")


def pick_bool(record: Any) -> bool | None:
    """Return the first boolean found under a known flag name, if any."""

    if isinstance(record, bool):
        return record
    if not isinstance(record, Mapping):
        return None
    for name in _BOOL_FIELDS:
        value = record.get(name)
        if isinstance(value, bool):
            return value
    return None


@dataclass(slots=True, frozen=True)
class ToolPermissions:
    """Immutable ``{tool key: allowed}`` mapping; unknown keys are denied."""

    flags: Mapping[str, bool] = field(default_factory=dict)

    @classmethod
    def deny_all(cls) -> "ToolPermissions":
        return cls({key: False for key in TOOL_KEYS})

    @classmethod
    def allow(cls, tools: Iterable[str]) -> "ToolPermissions":
        requested = {name.strip() for name in tools if name and name.strip()}
        unknown = requested.difference(TOOL_KEYS)
        if unknown:
            LOGGER.warning("Ignoring unknown tool permission(s): %s", ", ".join(sorted(unknown)))
        return cls({key: key in requested for key in TOOL_KEYS})

    @classmethod
    def from_records(cls, records: Mapping[str, Any] | None) -> "ToolPermissions":
        """Normalize raw per-tool permission records.

        Each record may be a bare boolean or a mapping carrying a boolean under
        one of several field names (``enabled``, ``allowed``, ``isEnabled``...).
        Anything unreadable resolves to False.
        """

        flags = {key: False for key in TOOL_KEYS}
        for key, record in (records or {}).items():
            if key not in flags:
                continue
            value = pick_bool(record)
            if value is not None:
                flags[key] = value
        return cls(flags)

    def is_allowed(self, tool: str) -> bool:
        return self.flags.get(tool) is True

    def allowed_tools(self) -> tuple[str, ...]:
        return tuple(key for key in TOOL_KEYS if self.is_allowed(key))

    def to_dict(self) -> dict[str, bool]:
        return {key: self.is_allowed(key) for key in TOOL_KEYS}
