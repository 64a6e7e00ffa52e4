"""Phase-change event channel.

Each subscriber owns a queue; publishing never blocks the pipeline. The last
event is replayed to late subscribers so a reconnecting client sees the
current phase immediately.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from photobook_schemas import GenerationPhase, PhaseEvent

TERMINAL_PHASES = frozenset({GenerationPhase.DONE, GenerationPhase.FAILED})


class EventChannel:
    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[PhaseEvent]] = []
        self._last: PhaseEvent | None = None
        self.history: list[PhaseEvent] = []

    @property
    def last(self) -> PhaseEvent | None:
        return self._last

    def publish(self, event: PhaseEvent) -> None:
        self._last = event
        self.history.append(event)
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def subscribe(self) -> asyncio.Queue[PhaseEvent]:
        queue: asyncio.Queue[PhaseEvent] = asyncio.Queue()
        if self._last is not None:
            queue.put_nowait(self._last)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[PhaseEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def stream(self, *, until_terminal: bool = True) -> AsyncIterator[PhaseEvent]:
        queue = self.subscribe()
        try:
            while True:
                event = await queue.get()
                yield event
                if until_terminal and event.phase in TERMINAL_PHASES:
                    return
        finally:
            self.unsubscribe(queue)
