"""
Observability Module
====================

Logging helpers for noisy failure paths.

Components:
    - ThrottledLogger: Collapses repeated messages into periodic summaries
"""

from terminal_narrator.observability.log_throttle import ThrottledLogger


__all__ = [
    "ThrottledLogger",
]
