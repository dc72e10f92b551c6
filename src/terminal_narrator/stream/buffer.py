"""
Event Buffer
=============

Async-safe bounded queue between the stream session and the narration
pipeline.

Design Rules:
    - Fixed maximum size (drops oldest on overflow)
    - Single producer (session observer), single consumer (pipeline task)
    - Exposes minimal metrics for observability
    - Does NOT process or modify events
"""

import asyncio
import logging
from typing import Generic, Optional, TypeVar

from terminal_narrator.observability.log_throttle import ThrottledLogger


logger = logging.getLogger(__name__)

T = TypeVar("T")


class FrameBuffer(Generic[T]):
    """
    Bounded drop-oldest queue.

    Dropping the oldest item keeps the consumer working on the freshest
    terminal state when it falls behind; intermediate snapshots are
    redundant because each snapshot is a full grid.

    Attributes:
        maxsize: Maximum number of items to buffer
        dropped_count: Number of items dropped due to overflow

    Example:
        buffer = FrameBuffer(maxsize=50)

        # Producer
        await buffer.put(event)

        # Consumer
        event = await buffer.get(timeout=0.25)
    """

    def __init__(self, maxsize: int = 50) -> None:
        """
        Initialize the buffer.

        Args:
            maxsize: Maximum items to buffer. Must be >= 1.
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._maxsize = maxsize
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._dropped_count: int = 0
        self._total_put: int = 0
        self._overflow_log = ThrottledLogger(logger, interval=5.0)

    @property
    def maxsize(self) -> int:
        """Maximum buffer size."""
        return self._maxsize

    @property
    def size(self) -> int:
        """Current number of items in buffer."""
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        """Number of items dropped due to overflow."""
        return self._dropped_count

    @property
    def total_put(self) -> int:
        """Total items ever put into buffer."""
        return self._total_put

    def put_nowait(self, item: T) -> bool:
        """
        Add an item, dropping the oldest one if full.

        Returns:
            True if added without dropping, False if the oldest was dropped
        """
        self._total_put += 1
        dropped = False

        if self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            else:
                dropped = True
                self._dropped_count += 1
                self._overflow_log.warning(
                    "overflow",
                    f"Buffer full, dropped oldest item. Total dropped: {self._dropped_count}",
                )

        self._queue.put_nowait(item)
        return not dropped

    async def put(self, item: T) -> bool:
        """Async alias of put_nowait for producers running in a coroutine."""
        return self.put_nowait(item)

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Get next item from buffer.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next item, or None if timeout occurred.
        """
        try:
            if timeout is not None:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
            return await self._queue.get()
        except asyncio.TimeoutError:
            return None

    def get_nowait(self) -> Optional[T]:
        """Next item if available, None otherwise."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def clear(self) -> int:
        """
        Clear all items from buffer.

        Returns:
            Number of items cleared.
        """
        cleared = 0
        while self.get_nowait() is not None:
            cleared += 1
        return cleared

    def metrics(self) -> dict:
        """
        Buffer metrics for observability.

        Returns:
            Dict with size, maxsize, dropped_count, total_put
        """
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }
