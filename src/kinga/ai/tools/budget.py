"""Invocation budget: duplicate suppression and failure tracking for tool calls.

The budget is a best-effort, process-local safety net. It keeps the last
successful result per ``(tool, canonical args)`` key for a short window so a
repeated request can reuse it, and counts consecutive failures per key so
callers can escalate their wording once a tool looks down. Nothing is
persisted; a restart clears all state.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .envelope import OK_STATUSES, Card, Envelope

__all__ = [
    "RETRY_PATTERN",
    "BudgetConfig",
    "BudgetStats",
    "CacheEntry",
    "FailureRecord",
    "InvocationBudget",
    "get_invocation_budget",
    "stable_key",
    "tool_key",
    "wants_retry",
]

LOGGER = logging.getLogger(__name__)

RETRY_PATTERN = re.compile(r"\b(retry|try again|run again|refresh|rerun)\b", re.IGNORECASE)


def wants_retry(text: str | None) -> bool:
    """Return True when the user explicitly asked to run the tool again."""

    return bool(text) and RETRY_PATTERN.search(text or "") is not None


def stable_key(value: Any) -> str:
    """Deterministic, order-insensitive serialization of ``value``."""

    if value is None:
        return "null"
    if isinstance(value, Mapping):
        entries = sorted(value.items(), key=lambda item: str(item[0]))
        body = ",".join(f"{json.dumps(str(key))}:{stable_key(item)}" for key, item in entries)
        return "{" + body + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(stable_key(item) for item in value) + "]"
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return json.dumps(str(value))


def tool_key(tool_name: str, args: Mapping[str, Any] | None) -> str:
    """Build the cache key for a tool invocation."""

    return f"{tool_name}:{stable_key(args or {})}"


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class BudgetConfig:
    """TTL windows for the invocation budget.

    Attributes:
        success_ttl: Seconds a full success may be reused.
        not_found_ttl: Seconds a partial ("not found") result may be reused.
        failure_ttl: Seconds a failure counter stays alive after its last hit.
        failure_threshold: Failures within the window that mark a tool as down.
    """

    success_ttl: float = 120.0
    not_found_ttl: float = 45.0
    failure_ttl: float = 600.0
    failure_threshold: int = 2


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class CacheEntry:
    """Last observed result for a tool key."""

    ctx: dict[str, str]
    timestamp: float
    status: str = "ok"
    result_status: str | None = None
    card: Card | None = None
    envelope: Envelope | None = None

    @property
    def is_full_success(self) -> bool:
        return (self.result_status or "ok").strip().lower() in OK_STATUSES

    def ttl(self, config: BudgetConfig) -> float:
        return config.success_ttl if self.is_full_success else config.not_found_ttl

    def age(self, now: float) -> float:
        return now - self.timestamp


@dataclass(slots=True)
class FailureRecord:
    count: int
    timestamp: float


@dataclass(slots=True)
class BudgetStats:
    hits: int = 0
    misses: int = 0
    forced: int = 0
    expirations: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "forced": self.forced,
            "expirations": self.expirations,
            "failures": self.failures,
        }


# -----------------------------------------------------------------------------
# Budget
# -----------------------------------------------------------------------------


class InvocationBudget:
    """Thread-safe dedup cache and failure counter keyed by :func:`tool_key`.

    Example:
        >>> budget = InvocationBudget()
        >>> key = tool_key("email_finder", {"linkedin_url": url})
        >>> cached = budget.should_skip(key, force_retry=wants_retry(message))
        >>> if cached is None:
        ...     result = await runner.run(...)
    """

    def __init__(
        self,
        config: BudgetConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or BudgetConfig()
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}
        self._failures: dict[str, FailureRecord] = {}
        self._lock = threading.RLock()
        self._stats = BudgetStats()

    @property
    def config(self) -> BudgetConfig:
        return self._config

    @property
    def stats(self) -> BudgetStats:
        return self._stats

    def reconfigure(self, config: BudgetConfig) -> None:
        with self._lock:
            self._config = config

    # ------------------------------------------------------------------
    # Success cache
    # ------------------------------------------------------------------

    def should_skip(self, key: str, force_retry: bool = False) -> CacheEntry | None:
        """Return a cached entry usable instead of a new call, if any.

        Args:
            key: Key built by :func:`tool_key`.
            force_retry: True when the user asked to run the tool again.

        Returns:
            The cached entry when it is a success younger than its TTL,
            otherwise None.
        """

        with self._lock:
            if force_retry:
                self._stats.forced += 1
                return None
            entry = self._entries.get(key)
            if entry is None or entry.status != "ok":
                self._stats.misses += 1
                return None
            if entry.age(self._clock()) >= entry.ttl(self._config):
                self._entries.pop(key, None)
                self._stats.expirations += 1
                self._stats.misses += 1
                return None
            self._stats.hits += 1
            return entry

    def record_success(
        self,
        key: str,
        *,
        ctx: Mapping[str, str] | None = None,
        card: Card | None = None,
        result_status: str | None = None,
        envelope: Envelope | None = None,
    ) -> CacheEntry:
        """Store a successful result and reset the failure counter for ``key``."""

        entry = CacheEntry(
            ctx=dict(ctx or {}),
            timestamp=self._clock(),
            status="ok",
            result_status=result_status,
            card=card,
            envelope=envelope,
        )
        with self._lock:
            self._entries[key] = entry
            self._failures.pop(key, None)
        return entry

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    # ------------------------------------------------------------------
    # Failure counters
    # ------------------------------------------------------------------

    def record_failure(self, key: str) -> FailureRecord:
        """Increment the failure counter, restarting it if its window elapsed."""

        now = self._clock()
        with self._lock:
            previous = self._failures.get(key)
            if previous is not None and now - previous.timestamp < self._config.failure_ttl:
                record = FailureRecord(count=previous.count + 1, timestamp=now)
            else:
                record = FailureRecord(count=1, timestamp=now)
            self._failures[key] = record
            self._entries.pop(key, None)
            self._stats.failures += 1
        LOGGER.debug("Failure %s recorded for %s", record.count, key)
        return record

    def clear_failure(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def failure_count(self, key: str) -> int:
        with self._lock:
            record = self._failures.get(key)
            if record is None or self._clock() - record.timestamp >= self._config.failure_ttl:
                return 0
            return record.count

    def too_many_failures(self, key: str, threshold: int | None = None) -> bool:
        """Whether ``key`` failed at least ``threshold`` times within the window."""

        limit = self._config.failure_threshold if threshold is None else threshold
        return self.failure_count(key) >= limit

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._failures.clear()
            self._stats = BudgetStats()


_SHARED_BUDGET: InvocationBudget | None = None
_SHARED_LOCK = threading.Lock()


def get_invocation_budget(config: BudgetConfig | None = None) -> InvocationBudget:
    """Return the process-wide budget, created on first use.

    A ``config`` passed later replaces the TTL windows of the shared budget
    without dropping its entries.
    """

    global _SHARED_BUDGET
    with _SHARED_LOCK:
        if _SHARED_BUDGET is None:
            _SHARED_BUDGET = InvocationBudget(config)
        elif config is not None:
            _SHARED_BUDGET.reconfigure(config)
        return _SHARED_BUDGET
