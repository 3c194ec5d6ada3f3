"""Versioned document artifacts and their merge rules.

An artifact keeps an append-only list of content versions; version numbers
are 1-based and the current version is always the last element. The store
persists artifacts inside each conversation document and only ever writes
the ``artifacts`` field.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal, Mapping, NamedTuple, Sequence

from .store import DocumentStore

__all__ = [
    "Artifact",
    "ArtifactVersion",
    "ArtifactVersionStore",
    "MergeMode",
    "MergeResult",
    "build_new_artifact",
    "build_update_artifact",
    "merge",
    "now_ms",
]

LOGGER = logging.getLogger(__name__)

MergeMode = Literal["append", "replace"]
DEFAULT_TYPE = "document"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True, frozen=True)
class ArtifactVersion:
    content: str
    created_at: int | None = None

    @property
    def is_blank(self) -> bool:
        return not (self.content or "").strip()

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ArtifactVersion":
        created = payload.get("createdAt")
        return cls(
            content=str(payload.get("content") or ""),
            created_at=int(created) if isinstance(created, (int, float)) and not isinstance(created, bool) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "createdAt": self.created_at}


@dataclass(slots=True, frozen=True)
class Artifact:
    """A document co-edited by the user and the assistant."""

    id: str
    title: str | None = None
    type: str | None = None
    created_at: int | None = None
    updated_at: int | None = None
    versions: tuple[ArtifactVersion, ...] = ()

    @property
    def version_number(self) -> int:
        return len(self.versions)

    @property
    def current(self) -> ArtifactVersion | None:
        return self.versions[-1] if self.versions else None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Artifact":
        raw_versions = payload.get("versions")
        versions: Sequence[Any] = raw_versions if isinstance(raw_versions, (list, tuple)) else ()
        return cls(
            id=str(payload.get("id") or ""),
            title=payload.get("title"),
            type=payload.get("type"),
            created_at=payload.get("createdAt"),
            updated_at=payload.get("updatedAt"),
            versions=tuple(ArtifactVersion.from_mapping(item) for item in versions if isinstance(item, Mapping)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "versions": [version.to_dict() for version in self.versions],
        }


class MergeResult(NamedTuple):
    artifact: Artifact
    version_number: int


# -----------------------------------------------------------------------------
# Merge
# -----------------------------------------------------------------------------


def merge(
    current: Artifact | None,
    incoming: Artifact,
    *,
    mode: MergeMode | None = None,
    now: Callable[[], int] = now_ms,
) -> MergeResult:
    """Merge ``incoming`` into ``current``.

    Args:
        current: Stored artifact with the same id, or None.
        incoming: Artifact produced by a tool or an edit.
        mode: ``"append"`` adds every incoming version, ``"replace"`` swaps
            the whole history. None appends a single version and replaces
            when several are supplied.
        now: Millisecond clock for missing timestamps.

    A single blank incoming version never changes an existing artifact.
    """

    incoming_versions = incoming.versions
    if current is not None and len(incoming_versions) == 1 and incoming_versions[0].is_blank:
        LOGGER.debug("Ignoring blank version for artifact %s", current.id)
        return MergeResult(current, current.version_number)

    if current is None:
        timestamp = now()
        created = replace(
            incoming,
            type=incoming.type or DEFAULT_TYPE,
            created_at=incoming.created_at if incoming.created_at is not None else timestamp,
            updated_at=incoming.updated_at if incoming.updated_at is not None else timestamp,
        )
        return MergeResult(created, created.version_number)

    if not incoming_versions:
        return MergeResult(current, current.version_number)

    effective = mode or ("append" if len(incoming_versions) == 1 else "replace")
    if effective == "append":
        appended = tuple(_stamped(version, now) for version in incoming_versions)
        merged = replace(
            current,
            title=incoming.title if incoming.title is not None else current.title,
            type=current.type or DEFAULT_TYPE,
            versions=current.versions + appended,
            updated_at=incoming.updated_at if incoming.updated_at is not None else now(),
        )
    elif effective == "replace":
        merged = Artifact(
            id=current.id,
            title=incoming.title if incoming.title is not None else current.title,
            type=incoming.type or current.type or DEFAULT_TYPE,
            created_at=incoming.created_at if incoming.created_at is not None else current.created_at,
            updated_at=incoming.updated_at if incoming.updated_at is not None else now(),
            versions=incoming_versions,
        )
    else:
        raise ValueError(f"Unknown merge mode: {mode!r}")
    return MergeResult(merged, merged.version_number)


def _stamped(version: ArtifactVersion, now: Callable[[], int]) -> ArtifactVersion:
    if version.created_at is not None and version.created_at > 0:
        return version
    return replace(version, created_at=now())


# -----------------------------------------------------------------------------
# Builders for the document tools
# -----------------------------------------------------------------------------


def build_new_artifact(
    args: Mapping[str, Any],
    *,
    now: Callable[[], int] = now_ms,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> Artifact:
    """Artifact for ``create_document``: title from ``title``, then ``subject``."""

    timestamp = now()
    title = _clean(args.get("title")) or _clean(args.get("subject")) or "Document"
    content = args.get("content")
    return Artifact(
        id=id_factory(),
        title=title,
        type=DEFAULT_TYPE,
        created_at=timestamp,
        updated_at=timestamp,
        versions=(ArtifactVersion(content="" if content is None else str(content), created_at=timestamp),),
    )


def build_update_artifact(
    artifact_id: str,
    args: Mapping[str, Any],
    *,
    now: Callable[[], int] = now_ms,
) -> Artifact:
    """Single-version incoming artifact for ``update_document``."""

    timestamp = now()
    content = args.get("content")
    return Artifact(
        id=artifact_id,
        updated_at=timestamp,
        versions=(ArtifactVersion(content="" if content is None else str(content), created_at=timestamp),),
    )


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ArtifactVersionStore:
    """Applies :func:`merge` against the conversation document store.

    Every save re-reads the conversation first, then writes back only the
    ``artifacts`` field. Two concurrent saves can still race; the last
    write of the collection wins.
    """

    store: DocumentStore
    now: Callable[[], int] = field(default=now_ms)

    async def list_artifacts(self, conversation_id: str) -> list[Artifact]:
        document = await self.store.read(conversation_id)
        return _artifacts_of(document)

    async def get(self, conversation_id: str, artifact_id: str) -> Artifact | None:
        for artifact in await self.list_artifacts(conversation_id):
            if artifact.id == artifact_id:
                return artifact
        return None

    async def save(
        self,
        conversation_id: str,
        incoming: Artifact,
        *,
        mode: MergeMode | None = None,
    ) -> MergeResult | None:
        """Merge ``incoming`` into the conversation; None if the conversation is unknown."""

        document = await self.store.read(conversation_id)
        if document is None:
            LOGGER.warning("Cannot save artifact %s: conversation %s not found", incoming.id, conversation_id)
            return None

        artifacts = _artifacts_of(document)
        index = next((i for i, item in enumerate(artifacts) if item.id == incoming.id), None)
        current = artifacts[index] if index is not None else None
        result = merge(current, incoming, mode=mode, now=self.now)
        if current is not None and result.artifact is current:
            return result

        if index is None:
            artifacts.append(result.artifact)
        else:
            artifacts[index] = result.artifact
        await self.store.update(conversation_id, {"artifacts": [item.to_dict() for item in artifacts]})
        LOGGER.debug(
            "Saved artifact %s on %s at version %s",
            result.artifact.id,
            conversation_id,
            result.version_number,
        )
        return result


def _artifacts_of(document: Mapping[str, Any] | None) -> list[Artifact]:
    if not document:
        return []
    raw = document.get("artifacts")
    if not isinstance(raw, list):
        return []
    return [Artifact.from_mapping(item) for item in raw if isinstance(item, Mapping)]
