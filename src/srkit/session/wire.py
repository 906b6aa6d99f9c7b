"""Wire protocol — decouples the analysis run from its observers.

The pipeline publishes progress on the wire; the CLI (or any other front
end) subscribes and renders it. The run never waits on a subscriber.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    RUN_BEGIN = "run_begin"
    RUN_END = "run_end"
    STAGE = "stage"
    CATEGORY_DONE = "category_done"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: pipeline -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_error(self, error: str, stage: str = "") -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error, "stage": stage}))

    def send_warning(self, warning: str) -> None:
        self.send(WireEvent(type=EventType.WARNING, data={"warning": warning}))

    def send_run_begin(self, binary_id: str, categories: list[str]) -> None:
        self.send(
            WireEvent(
                type=EventType.RUN_BEGIN,
                data={"binary": binary_id, "categories": categories},
            )
        )

    def send_stage(self, stage: str) -> None:
        self.send(WireEvent(type=EventType.STAGE, data={"stage": stage}))

    def send_category_done(self, category: str, raw_matches: int) -> None:
        self.send(
            WireEvent(
                type=EventType.CATEGORY_DONE,
                data={"category": category, "raw_matches": raw_matches},
            )
        )

    def send_run_end(self, findings: int, risk: float) -> None:
        self.send(
            WireEvent(
                type=EventType.RUN_END,
                data={"findings": findings, "risk": risk},
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
