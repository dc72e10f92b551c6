"""
Change Accumulator
==================

Turns a high-frequency snapshot stream into a few narration-sized text
deltas.

Algorithm (per consumed snapshot):
    1. Extract plain text: each row's glyphs, trailing spaces trimmed,
       rows joined with newlines. Colors and attributes are discarded.
    2. Compare line by line, by index, with the previous text. A line that
       was added, removed or changed counts as changed.
    3. Changed characters = sum of the changed lines' lengths (the current
       content, or the previous content for removed lines).
    4. No change: only the previous text is replaced.
       Otherwise: append the changed current lines to the pending batch.
    5. Flush when pending characters >= char_threshold, or when the oldest
       pending change is at least time_threshold seconds old.

This is NOT a general diff. Inserting a line at the top of the screen marks
every line below it as changed; that is acceptable for narration.

Thread Safety:
    All state-mutating methods hold one lock, so the time path (poll) and
    the snapshot path (consume) never interleave.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from terminal_narrator.models.narration import FlushEvent, FlushReason
from terminal_narrator.models.snapshot import Snapshot


logger = logging.getLogger(__name__)


def extract_text(snapshot: Snapshot) -> str:
    """Plain text of a snapshot, one line per row."""
    return "\n".join(snapshot.row_text(index) for index in range(snapshot.rows))


def diff_lines(previous: str, current: str) -> Tuple[List[str], int]:
    """
    Index-wise line comparison.

    Returns:
        (changed current lines in order, changed character count)
    """
    previous_lines = previous.split("\n") if previous else []
    current_lines = current.split("\n") if current else []

    changed: List[str] = []
    char_count = 0

    for index in range(max(len(previous_lines), len(current_lines))):
        before = previous_lines[index] if index < len(previous_lines) else None
        after = current_lines[index] if index < len(current_lines) else None

        if before == after:
            continue
        if after is None:
            char_count += len(before)
            continue

        changed.append(after)
        char_count += len(after)

    return changed, char_count


@dataclass
class AccumulatorState:
    """Mutable accumulator state."""

    previous_text: str = ""
    pending_lines: List[str] = field(default_factory=list)
    pending_char_count: int = 0
    oldest_pending_change_time: Optional[float] = None


class ChangeAccumulator:
    """
    Dual-threshold change batcher.

    Attributes:
        char_threshold: Pending changed characters that trigger a flush
        time_threshold: Age (seconds) of the oldest pending change that
            triggers a flush
        max_chunk_size: Maximum length of a flushed text

    Example:
        accumulator = ChangeAccumulator()
        for snapshot in snapshots:
            event = accumulator.consume(snapshot)
            if event:
                narrate(event.text)
    """

    def __init__(
        self,
        char_threshold: int = 100,
        time_threshold: float = 2.0,
        max_chunk_size: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if char_threshold < 1:
            raise ValueError("char_threshold must be >= 1")
        if time_threshold <= 0:
            raise ValueError("time_threshold must be > 0")
        if max_chunk_size < 1:
            raise ValueError("max_chunk_size must be >= 1")

        self.char_threshold = char_threshold
        self.time_threshold = time_threshold
        self.max_chunk_size = max_chunk_size
        self._clock = clock
        self._lock = threading.Lock()
        self._state = AccumulatorState()

        self.flush_count: int = 0
        self.snapshots_consumed: int = 0

    @property
    def state(self) -> AccumulatorState:
        """Copy of the current state."""
        with self._lock:
            return AccumulatorState(
                previous_text=self._state.previous_text,
                pending_lines=list(self._state.pending_lines),
                pending_char_count=self._state.pending_char_count,
                oldest_pending_change_time=self._state.oldest_pending_change_time,
            )

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._state.pending_lines)

    def consume(self, snapshot: Snapshot, now: Optional[float] = None) -> Optional[FlushEvent]:
        """
        Fold one snapshot into the pending batch.

        Args:
            snapshot: Next snapshot of the active session, in order
            now: Clock reading (defaults to the accumulator clock)

        Returns:
            FlushEvent if a threshold was reached, else None
        """
        text = extract_text(snapshot)
        if now is None:
            now = self._clock()

        with self._lock:
            self.snapshots_consumed += 1
            changed, char_count = diff_lines(self._state.previous_text, text)
            self._state.previous_text = text

            if char_count == 0:
                return None

            self._state.pending_lines.extend(changed)
            self._state.pending_char_count += char_count
            if self._state.pending_lines and self._state.oldest_pending_change_time is None:
                self._state.oldest_pending_change_time = now

            return self._check_thresholds(now)

    def poll(self, now: Optional[float] = None) -> Optional[FlushEvent]:
        """Evaluate the time threshold without a new snapshot."""
        if now is None:
            now = self._clock()
        with self._lock:
            return self._check_thresholds(now)

    def force_flush(self) -> Optional[FlushEvent]:
        """Drain pending lines regardless of thresholds."""
        with self._lock:
            if not self._state.pending_lines:
                return None
            return self._flush(FlushReason.FORCED)

    def reset(self) -> None:
        """Forget everything, including the previous text baseline."""
        with self._lock:
            self._state = AccumulatorState()

    def _check_thresholds(self, now: float) -> Optional[FlushEvent]:
        state = self._state
        if state.pending_char_count >= self.char_threshold:
            return self._flush(FlushReason.SIZE)
        if (
            state.pending_lines
            and state.oldest_pending_change_time is not None
            and now - state.oldest_pending_change_time >= self.time_threshold
        ):
            return self._flush(FlushReason.TIME)
        return None

    def _flush(self, reason: FlushReason) -> Optional[FlushEvent]:
        state = self._state
        text = "\n".join(state.pending_lines)
        line_count = len(state.pending_lines)
        char_count = state.pending_char_count

        state.pending_lines = []
        state.pending_char_count = 0
        state.oldest_pending_change_time = None

        # Changes that only cleared lines leave nothing to narrate
        if not text.strip():
            return None

        truncated = len(text) > self.max_chunk_size
        if truncated:
            text = text[-self.max_chunk_size:]

        self.flush_count += 1
        logger.debug(f"Flush ({reason.value}): {char_count} chars, {line_count} lines")

        return FlushEvent(
            text=text,
            char_count=char_count,
            line_count=line_count,
            reason=reason,
            truncated=truncated,
            created_at=time.time(),
        )
