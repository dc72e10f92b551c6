"""
Decode Failure Monitor
======================

Tracks snapshot decode failures for one stream.

A single bad frame is expected noise and is only logged (rate-limited).
A failure streak that lasts longer than ``escalation_seconds`` without a
single successful decode means the server speaks a protocol version we
cannot read; the monitor then raises its ``escalated`` flag, which the
session publishes as ``ConnectionStatus.incompatible_server``.
"""

import logging
import time
from collections import Counter
from typing import Callable, Optional

from terminal_narrator.errors import ProtocolError
from terminal_narrator.observability.log_throttle import ThrottledLogger


logger = logging.getLogger(__name__)


class DecodeFailureMonitor:
    """
    Failure streak tracker with rate-limited logging.

    Example:
        monitor = DecodeFailureMonitor(escalation_seconds=30.0)
        try:
            snapshot = decode_snapshot(payload)
        except ProtocolError as e:
            if monitor.record_failure(e):
                publish_incompatible_server()
        else:
            monitor.record_success()
    """

    def __init__(
        self,
        escalation_seconds: float = 30.0,
        summary_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.escalation_seconds = escalation_seconds
        self._clock = clock
        self._throttle = ThrottledLogger(logger, interval=summary_interval, clock=clock)

        self.total_failures: int = 0
        self.by_code: Counter = Counter()
        self._streak_started: Optional[float] = None
        self._streak_failures: int = 0
        self._escalated: bool = False

    @property
    def escalated(self) -> bool:
        """Whether the current failure streak signals an incompatible server."""
        return self._escalated

    @property
    def streak_failures(self) -> int:
        return self._streak_failures

    def record_failure(self, error: ProtocolError) -> bool:
        """
        Record one failed decode.

        Returns:
            True only on the call that raises the escalation flag
        """
        now = self._clock()
        self.total_failures += 1
        self.by_code[error.code.value] += 1

        if self._streak_started is None:
            self._streak_started = now
        self._streak_failures += 1

        self._throttle.warning(
            f"decode:{error.code.value}",
            f"Dropped undecodable frame: {error}",
        )

        if not self._escalated and now - self._streak_started >= self.escalation_seconds:
            self._escalated = True
            logger.error(
                f"No frame decoded for {now - self._streak_started:.1f}s "
                f"({self._streak_failures} failures); server protocol looks incompatible"
            )
            return True

        return False

    def record_success(self) -> bool:
        """
        Record one successful decode, ending any failure streak.

        Returns:
            True if an escalation was cleared
        """
        if self._streak_failures:
            logger.info(f"Decoding recovered after {self._streak_failures} failed frames")

        cleared = self._escalated
        self._streak_started = None
        self._streak_failures = 0
        self._escalated = False
        return cleared

    def reset(self) -> None:
        self._streak_started = None
        self._streak_failures = 0
        self._escalated = False
        self._throttle.reset()

    def to_dict(self) -> dict:
        """Export counters as dict."""
        return {
            "total_failures": self.total_failures,
            "streak_failures": self._streak_failures,
            "escalated": self._escalated,
            "by_code": dict(self.by_code),
        }
