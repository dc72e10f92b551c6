"""
terminal-narrator
=================

Terminal mirroring client that turns a live terminal snapshot stream into
short text deltas for narration.

This package subscribes to a terminal server's buffer stream, decodes the
binary grid snapshots, and batches the text that changed between snapshots
into narration-sized chunks.

Components:
    - stream: Snapshot decoding, envelope parsing, connection state machine
    - narration: Change accumulation and flush delivery
    - auth: Bearer token lifecycle and credential handling
    - observability: Throttled logging helpers

Example:
    from terminal_narrator.config import settings
    from terminal_narrator.stream import decode_snapshot

    snapshot = decode_snapshot(payload)
    print(snapshot.cols, snapshot.rows)
"""

__version__ = "0.1.0"
__author__ = "terminal-narrator contributors"

__all__ = [
    "__version__",
]
