"""
Narration Module
================

From snapshots to narration-sized text deltas.

Components:
    - ChangeAccumulator: Dual-threshold change batching
    - NarrationPipeline: Single-consumer observer driving the accumulator
    - NarrationLog: Flush event sink with history and subscriptions
"""

from terminal_narrator.narration.accumulator import (
    AccumulatorState,
    ChangeAccumulator,
    diff_lines,
    extract_text,
)
from terminal_narrator.narration.pipeline import NarrationPipeline
from terminal_narrator.narration.sink import NarrationLog


__all__ = [
    "AccumulatorState",
    "ChangeAccumulator",
    "diff_lines",
    "extract_text",
    "NarrationPipeline",
    "NarrationLog",
]
