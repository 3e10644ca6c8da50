"""Per-job event buffer with replay for late subscribers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class QueuedEvent:
    position: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": "queued", "position": self.position}


@dataclass(frozen=True)
class ProgressEvent:
    pct: int
    msg: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "progress", "pct": self.pct, "msg": self.msg}


@dataclass(frozen=True)
class CompleteEvent:
    download_ref: str
    filename: str
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "complete",
            "downloadRef": self.download_ref,
            "filename": self.filename,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


JobEvent = Union[QueuedEvent, ProgressEvent, CompleteEvent, ErrorEvent]


def is_terminal(event: JobEvent) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))


@dataclass
class EventLog:
    """Ordered history of one job's events, fanned out to every subscriber.

    A subscriber joining late first receives the whole history, then live
    events in emission order. Nothing is accepted after the terminal event.
    """

    history: list[JobEvent] = field(default_factory=list)
    _subscribers: set[asyncio.Queue] = field(default_factory=set)

    @property
    def closed(self) -> bool:
        return bool(self.history) and is_terminal(self.history[-1])

    @property
    def terminal(self) -> JobEvent | None:
        return self.history[-1] if self.closed else None

    def publish(self, event: JobEvent) -> bool:
        if self.closed:
            return False
        self.history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)
        return True

    async def subscribe(self) -> AsyncIterator[JobEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        backlog = list(self.history)
        if not (backlog and is_terminal(backlog[-1])):
            self._subscribers.add(queue)
        try:
            for event in backlog:
                yield event
                if is_terminal(event):
                    return
            while True:
                event = await queue.get()
                yield event
                if is_terminal(event):
                    return
        finally:
            self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
