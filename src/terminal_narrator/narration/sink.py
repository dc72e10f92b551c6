"""
Narration Log
=============

Sink for flush events: logs them, keeps a bounded history and fans each
event out to async subscribers (the API's WebSocket clients).
"""

import asyncio
import logging
from collections import deque
from typing import Deque, List, Set

from terminal_narrator.models.narration import FlushEvent


logger = logging.getLogger(__name__)


class NarrationLog:
    """
    Bounded history of flush events with live subscriptions.

    Example:
        log = NarrationLog(history_size=100)
        queue = log.subscribe()
        await log.publish(event)
        event = await queue.get()
    """

    def __init__(self, history_size: int = 100, subscriber_queue_size: int = 32) -> None:
        self._history: Deque[FlushEvent] = deque(maxlen=history_size)
        self._subscriber_queue_size = subscriber_queue_size
        self._subscribers: Set[asyncio.Queue] = set()
        self.total_published: int = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def history(self, limit: int = 0) -> List[FlushEvent]:
        """Most recent events, oldest first (all of them when limit is 0)."""
        events = list(self._history)
        return events[-limit:] if limit > 0 else events

    def latest(self):
        return self._history[-1] if self._history else None

    async def publish(self, event: FlushEvent) -> None:
        self._history.append(event)
        self.total_published += 1
        logger.info(f"Narration [{event.reason.value}] {event.char_count} chars: {event.text[:60]!r}")

        for queue in list(self._subscribers):
            if queue.full():
                # Slow subscriber: drop its oldest event
                queue.get_nowait()
            queue.put_nowait(event)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._subscriber_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def clear(self) -> None:
        self._history.clear()
