"""Outbound stream events and the sinks that deliver them to a consumer.

One request writes to one ordered channel.  References, chunks, and the
terminal markers are distinct event types on that channel rather than
mutations of a shared response object.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Protocol, Union, runtime_checkable

from mailsage.storage.models import ThreadReference

NO_RESULTS_MESSAGE = "No results found"


class EventType(str, Enum):
    REFERENCES = "references"
    CHUNK = "chunk"
    NO_RESULTS = "no_results"
    ERROR = "error"
    DONE = "done"


# ── Events ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ReferencesEvent:
    """The ranked thread list, sent before any generated text."""

    type: ClassVar[EventType] = EventType.REFERENCES

    references: tuple[ThreadReference, ...]

    def to_dict(self) -> dict[str, object]:
        return {"type": self.type.value, "references": [r.to_dict() for r in self.references]}


@dataclass(frozen=True)
class ChunkEvent:
    """One fragment of generated text."""

    type: ClassVar[EventType] = EventType.CHUNK

    text: str

    def to_dict(self) -> dict[str, object]:
        return {"type": self.type.value, "text": self.text}


@dataclass(frozen=True)
class NoResultsEvent:
    """Search found nothing relevant; generation was skipped."""

    type: ClassVar[EventType] = EventType.NO_RESULTS

    message: str = NO_RESULTS_MESSAGE

    def to_dict(self) -> dict[str, object]:
        return {"type": self.type.value, "message": self.message}


@dataclass(frozen=True)
class ErrorEvent:
    """The request failed; whatever was emitted before this stays valid."""

    type: ClassVar[EventType] = EventType.ERROR

    message: str

    def to_dict(self) -> dict[str, object]:
        return {"type": self.type.value, "message": self.message}


@dataclass(frozen=True)
class DoneEvent:
    """Always the last event of a request."""

    type: ClassVar[EventType] = EventType.DONE

    def to_dict(self) -> dict[str, object]:
        return {"type": self.type.value}


StreamEvent = Union[ReferencesEvent, ChunkEvent, NoResultsEvent, ErrorEvent, DoneEvent]


# ── Sinks ──────────────────────────────────────────────────────────────────────


class SinkClosedError(Exception):
    """Raised when sending to a sink whose consumer has gone away."""


@runtime_checkable
class StreamSink(Protocol):
    """Delivery channel to one consumer."""

    @property
    def closed(self) -> bool:
        """True once the consumer has disconnected; nothing more may be sent."""
        ...

    async def send(self, event: StreamEvent) -> None:
        """Deliver one event, suspending while the consumer is behind.

        Raises:
            SinkClosedError: if the sink is closed.
        """
        ...


class QueueSink:
    """Bounded asyncio.Queue sink: the producer waits when the consumer lags.

    The consumer iterates the sink and stops after DoneEvent; calling
    ``close()`` signals a disconnect and unblocks a producer stuck on a
    full queue.

    Usage::

        sink = QueueSink()
        task = asyncio.create_task(orchestrator.search("invoice", sink))
        async for event in sink:
            render(event)
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise SinkClosedError(f"Cannot send {event.type.value!r} to a closed sink")
        await self._queue.put(event)

    def close(self) -> None:
        """Mark the consumer as gone and drop anything still queued."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while not self._closed:
            event = await self._queue.get()
            yield event
            if isinstance(event, DoneEvent):
                return
