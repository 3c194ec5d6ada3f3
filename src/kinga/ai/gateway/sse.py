"""Line-oriented event-stream framing.

Events are separated by a blank line. Each event accumulates ``event:`` and
``data:`` fields; several ``data:`` lines for one event are concatenated.
Lines starting with ``:`` are comments and ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator

__all__ = ["DEFAULT_EVENT", "ServerSentEvent", "EventStreamDecoder", "iter_events", "aiter_events"]

DEFAULT_EVENT = "message"


@dataclass(slots=True, frozen=True)
class ServerSentEvent:
    event: str = DEFAULT_EVENT
    data: str = ""


class EventStreamDecoder:
    """Incremental decoder turning text lines into :class:`ServerSentEvent` objects."""

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []
        self._pending = False

    def decode(self, line: str) -> ServerSentEvent | None:
        """Feed one line (without its terminator); return an event on a blank line."""

        line = line.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        value = value.strip()
        if name == "event":
            self._event = value or None
            self._pending = True
        elif name == "data":
            self._data.append(value)
            self._pending = True
        return None

    def flush(self) -> ServerSentEvent | None:
        """Emit the event accumulated so far, if any."""

        if not self._pending:
            return None
        event = ServerSentEvent(event=self._event or DEFAULT_EVENT, data="".join(self._data))
        self._event = None
        self._data = []
        self._pending = False
        return event


def iter_events(lines: Iterable[str]) -> Iterator[ServerSentEvent]:
    decoder = EventStreamDecoder()
    for line in lines:
        event = decoder.decode(line)
        if event is not None:
            yield event
    tail = decoder.flush()
    if tail is not None:
        yield tail


async def aiter_events(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """Lazily decode events from an async line source until it is exhausted."""

    decoder = EventStreamDecoder()
    async for line in lines:
        event = decoder.decode(line)
        if event is not None:
            yield event
    tail = decoder.flush()
    if tail is not None:
        yield tail
