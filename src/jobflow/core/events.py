from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any

TERMINAL_EVENTS = frozenset({"completed", "failed"})


class EventBus:
    def __init__(self) -> None:
        self._queues: dict[int, list[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    def subscriber_count(self, job_id: int) -> int:
        return len(self._queues.get(job_id, []))

    async def publish(self, job_id: int, event: dict[str, Any]) -> None:
        async with self._lock:
            for queue in list(self._queues.get(job_id, [])):
                await queue.put({"job_id": job_id, **event})

    async def subscribe(self, job_id: int) -> AsyncIterator[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        async with self._lock:
            self._queues[job_id].append(queue)

        try:
            while True:
                event = await queue.get()
                yield event
                if event.get("type") in TERMINAL_EVENTS:
                    return
        finally:
            async with self._lock:
                if queue in self._queues.get(job_id, []):
                    self._queues[job_id].remove(queue)
                if not self._queues.get(job_id):
                    self._queues.pop(job_id, None)
