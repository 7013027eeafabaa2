from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import AsyncIterator

from groundsearch.models.trace import TraceEvent


class TraceLog:
    """In-memory, append-only trace per job with live subscribers."""

    def __init__(self):
        self._events: dict[str, list[TraceEvent]] = defaultdict(list)
        self._subscribers: dict[str, set[asyncio.Queue[TraceEvent | None]]] = defaultdict(set)

    def append(self, job_id: str, event: TraceEvent) -> None:
        self._events[job_id].append(event)
        for queue in self._subscribers.get(job_id, ()):
            queue.put_nowait(event)

    def events(self, job_id: str) -> list[TraceEvent]:
        return list(self._events.get(job_id, []))

    def latest_for_step(self, job_id: str, step_id: str) -> TraceEvent | None:
        for event in reversed(self._events.get(job_id, [])):
            if event.step_id == step_id:
                return event
        return None

    def clear(self, job_id: str) -> None:
        self._events.pop(job_id, None)
        self.close(job_id)

    def close(self, job_id: str) -> None:
        """End every live subscription for a job."""
        for queue in self._subscribers.get(job_id, ()):
            queue.put_nowait(None)

    async def subscribe(self, job_id: str, *, replay: bool = True) -> AsyncIterator[TraceEvent]:
        queue: asyncio.Queue[TraceEvent | None] = asyncio.Queue()
        if replay:
            for event in self._events.get(job_id, []):
                queue.put_nowait(event)
        self._subscribers[job_id].add(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._subscribers[job_id].discard(queue)
