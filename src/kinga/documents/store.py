"""Conversation document store interface and an in-memory implementation."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Dict, Mapping, Protocol, runtime_checkable

__all__ = ["DocumentStore", "InMemoryDocumentStore"]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class DocumentStore(Protocol):
    """Read/update primitives over one document per conversation.

    ``update`` writes only the given top-level fields and leaves the others
    untouched. There is no transaction: concurrent writers race and the last
    write of a field wins.
    """

    async def read(self, conversation_id: str) -> Mapping[str, Any] | None:
        ...

    async def update(self, conversation_id: str, fields: Mapping[str, Any]) -> None:
        ...


class InMemoryDocumentStore:
    """Process-local :class:`DocumentStore`; reads and writes are deep copies."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {
            key: copy.deepcopy(dict(value)) for key, value in (documents or {}).items()
        }
        self._lock = threading.RLock()

    def create(self, conversation_id: str, document: Mapping[str, Any] | None = None) -> None:
        with self._lock:
            self._documents[conversation_id] = copy.deepcopy(dict(document or {"messages": [], "artifacts": []}))

    def __contains__(self, conversation_id: object) -> bool:
        with self._lock:
            return conversation_id in self._documents

    async def read(self, conversation_id: str) -> Mapping[str, Any] | None:
        with self._lock:
            document = self._documents.get(conversation_id)
            return copy.deepcopy(document) if document is not None else None

    async def update(self, conversation_id: str, fields: Mapping[str, Any]) -> None:
        with self._lock:
            document = self._documents.get(conversation_id)
            if document is None:
                raise KeyError(conversation_id)
            document.update(copy.deepcopy(dict(fields)))
        LOGGER.debug("Updated %s field(s) on conversation %s", sorted(fields), conversation_id)
