"""
Throttled Logging
=================

Collapse bursts of identical log messages into periodic summaries.

A decoder fed by a misbehaving server can fail dozens of times per second;
logging every failure would drown everything else. ThrottledLogger emits
the first message for a key, then at most one message per interval with
the number of occurrences suppressed in between.

Example:
    throttle = ThrottledLogger(logger, interval=10.0)
    throttle.warning("decode:TRUNCATED", "Dropped undecodable frame")
"""

import logging
import time
from typing import Callable, Dict


class ThrottledLogger:
    """
    Rate-limited wrapper around a stdlib logger.

    Attributes:
        interval: Minimum seconds between two emitted messages per key
    """

    def __init__(
        self,
        logger: logging.Logger,
        interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self._logger = logger
        self.interval = interval
        self._clock = clock
        self._last_emit: Dict[str, float] = {}
        self._suppressed: Dict[str, int] = {}

    def log(self, level: int, key: str, message: str) -> bool:
        """
        Log ``message`` unless ``key`` was logged within the interval.

        Returns:
            True if the message was emitted, False if it was suppressed
        """
        now = self._clock()
        last = self._last_emit.get(key)

        if last is not None and now - last < self.interval:
            self._suppressed[key] = self._suppressed.get(key, 0) + 1
            return False

        suppressed = self._suppressed.pop(key, 0)
        if suppressed:
            message = f"{message} ({suppressed} similar messages suppressed)"

        self._last_emit[key] = now
        self._logger.log(level, message)
        return True

    def debug(self, key: str, message: str) -> bool:
        return self.log(logging.DEBUG, key, message)

    def info(self, key: str, message: str) -> bool:
        return self.log(logging.INFO, key, message)

    def warning(self, key: str, message: str) -> bool:
        return self.log(logging.WARNING, key, message)

    def suppressed_count(self, key: str) -> int:
        return self._suppressed.get(key, 0)

    def reset(self) -> None:
        self._last_emit.clear()
        self._suppressed.clear()
