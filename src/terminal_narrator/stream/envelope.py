"""
Stream Envelope
===============

Outer framing of binary messages on the snapshot WebSocket.

Layout:
    0xBF | session id length (u32 LE) | session id (UTF-8) | snapshot payload

Design Rules:
    - Only strips the envelope; the payload is handed on untouched
    - Malformed envelopes raise ProtocolError(INVALID_ENVELOPE)
"""

import struct
import time
from typing import Optional

from terminal_narrator.errors import ProtocolError
from terminal_narrator.models.error_codes import ProtocolErrorCode
from terminal_narrator.stream.frame import Frame


ENVELOPE_MARKER = 0xBF

_LENGTH = struct.Struct("<I")
_PREFIX_SIZE = 1 + _LENGTH.size


def parse_envelope(data: bytes, received_at: Optional[float] = None) -> Frame:
    """
    Strip the envelope from a binary stream message.

    Args:
        data: Raw binary WebSocket message
        received_at: Arrival timestamp (defaults to now)

    Returns:
        Frame carrying the session id and inner payload

    Raises:
        ProtocolError: INVALID_ENVELOPE if the marker, length or id is bad
    """
    if len(data) < _PREFIX_SIZE:
        raise ProtocolError(
            ProtocolErrorCode.INVALID_ENVELOPE,
            f"envelope too short: {len(data)} bytes",
        )

    if data[0] != ENVELOPE_MARKER:
        raise ProtocolError(
            ProtocolErrorCode.INVALID_ENVELOPE,
            f"unexpected envelope marker 0x{data[0]:02X}",
        )

    (id_length,) = _LENGTH.unpack_from(data, 1)
    payload_start = _PREFIX_SIZE + id_length
    if payload_start > len(data):
        raise ProtocolError(
            ProtocolErrorCode.INVALID_ENVELOPE,
            f"session id length {id_length} exceeds message size {len(data)}",
        )

    try:
        session_id = bytes(data[_PREFIX_SIZE:payload_start]).decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(
            ProtocolErrorCode.INVALID_ENVELOPE,
            "session id is not valid UTF-8",
        ) from e

    return Frame(
        session_id=session_id,
        payload=bytes(data[payload_start:]),
        received_at=received_at if received_at is not None else time.time(),
    )


def build_envelope(session_id: str, payload: bytes) -> bytes:
    """Wrap a snapshot payload for the given session."""
    encoded = session_id.encode("utf-8")
    return bytes([ENVELOPE_MARKER]) + _LENGTH.pack(len(encoded)) + encoded + payload
