"""Versioned document artifacts and the conversation store they live in."""

from .artifacts import (
    Artifact,
    ArtifactVersion,
    ArtifactVersionStore,
    MergeResult,
    build_new_artifact,
    build_update_artifact,
    merge,
)
from .store import DocumentStore, InMemoryDocumentStore

__all__ = [
    "Artifact",
    "ArtifactVersion",
    "ArtifactVersionStore",
    "DocumentStore",
    "InMemoryDocumentStore",
    "MergeResult",
    "build_new_artifact",
    "build_update_artifact",
    "merge",
]
