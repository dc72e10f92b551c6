"""
Stream Module
=============

Snapshot ingestion: wire decoding, transport sessions and buffering.

This module provides the ingestion layer of the terminal narrator:
    - decode_snapshot / snapshot_from_json / decode_response: Snapshot decoding
    - encode_snapshot: Reference encoder for the binary format
    - parse_envelope / build_envelope: Outer WebSocket framing
    - Frame, SnapshotEvent: Typed units passed downstream
    - FrameBuffer: Async-safe bounded queue (drops oldest on overflow)
    - StreamSession: WebSocket source with reconnection and auth
    - SnapshotPoller: HTTP polling source with the same interface

Example:
    from terminal_narrator.stream import StreamSession

    session = StreamSession(url="ws://localhost:4020/buffers")
    session.add_observer(observer)
    await session.subscribe("a1b2c3")
    await session.connect()
"""

from terminal_narrator.stream.frame import Frame, SnapshotEvent
from terminal_narrator.stream.buffer import FrameBuffer
from terminal_narrator.stream.decoder import decode_response, decode_snapshot, snapshot_from_json
from terminal_narrator.stream.encoder import encode_snapshot
from terminal_narrator.stream.envelope import build_envelope, parse_envelope
from terminal_narrator.stream.backoff import compute_backoff_delay
from terminal_narrator.stream.decode_monitor import DecodeFailureMonitor
from terminal_narrator.stream.source import SessionMetrics, SnapshotObserver, SnapshotSource
from terminal_narrator.stream.session import StreamSession, Transport, WebSocketTransport
from terminal_narrator.stream.poller import SnapshotPoller


__all__ = [
    "Frame",
    "SnapshotEvent",
    "FrameBuffer",
    "decode_response",
    "decode_snapshot",
    "snapshot_from_json",
    "encode_snapshot",
    "build_envelope",
    "parse_envelope",
    "compute_backoff_delay",
    "DecodeFailureMonitor",
    "SessionMetrics",
    "SnapshotObserver",
    "SnapshotSource",
    "StreamSession",
    "Transport",
    "WebSocketTransport",
    "SnapshotPoller",
]
