"""Conversation history shaping for model requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

__all__ = ["DEFAULT_HISTORY_LIMIT", "ConversationTurn", "build_conversation_history", "previous_turn"]

DEFAULT_HISTORY_LIMIT = 10

_ROLE_MAP: Mapping[str, str] = {"user": "user", "assistant": "assistant", "ai": "assistant"}


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    role: str
    content: str

    @classmethod
    def coerce(cls, value: Any) -> "ConversationTurn | None":
        """Map a raw turn to the provider vocabulary; None for system/unknown roles."""

        if isinstance(value, ConversationTurn):
            role, content = value.role, value.content
        elif isinstance(value, Mapping):
            role, content = value.get("role"), value.get("content")
        else:
            return None
        mapped = _ROLE_MAP.get(str(role or "").strip().lower())
        if mapped is None:
            return None
        return cls(role=mapped, content="" if content is None else str(content))

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def build_conversation_history(
    turns: Iterable[Any] | None,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[ConversationTurn]:
    """Return the last ``limit`` user/assistant turns, order preserved.

    ``assistant`` and ``ai`` both map to ``assistant``; ``system`` messages and
    unknown roles are dropped before the limit is applied.
    """

    mapped = [turn for turn in (ConversationTurn.coerce(item) for item in turns or ()) if turn is not None]
    if limit <= 0:
        return []
    return mapped[-limit:]


def previous_turn(turns: Sequence[ConversationTurn], role: str) -> ConversationTurn | None:
    for turn in reversed(turns):
        if turn.role == role:
            return turn
    return None
