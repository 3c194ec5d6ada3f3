"""Tool envelope, budget, catalog, and gateway runners."""

from . import budget, catalog, envelope, errors, reuse_blocks, runners

__all__ = [
    "budget",
    "catalog",
    "envelope",
    "errors",
    "reuse_blocks",
    "runners",
]
