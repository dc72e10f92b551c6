"""
Narrator Exceptions
===================

Exception hierarchy shared by the decoder, the stream session and the
auth layer.

Every exception carries a code from ``models.error_codes`` so handlers
can branch on the cause:

    try:
        snapshot = decode_snapshot(payload)
    except ProtocolError as e:
        if e.code == ProtocolErrorCode.TRUNCATED:
            ...
"""

from typing import Optional

from terminal_narrator.models.error_codes import (
    AuthErrorCode,
    ConnectionErrorCode,
    ProtocolErrorCode,
)


class NarratorError(Exception):
    """Base class for all terminal-narrator errors."""

    def __init__(self, code, message: Optional[str] = None) -> None:
        self.code = code
        self.message = message or code.value
        super().__init__(f"{code.value}: {self.message}")


class ProtocolError(NarratorError):
    """Raised when a snapshot frame cannot be decoded. Never fatal to the stream."""

    def __init__(self, code: ProtocolErrorCode, message: Optional[str] = None) -> None:
        super().__init__(code, message)


class StreamConnectionError(NarratorError):
    """Raised when the transport cannot be opened or is lost."""

    def __init__(self, code: ConnectionErrorCode, message: Optional[str] = None) -> None:
        super().__init__(code, message)


class AuthError(NarratorError):
    """Raised when a token cannot be obtained or was rejected."""

    def __init__(self, code: AuthErrorCode, message: Optional[str] = None) -> None:
        super().__init__(code, message)
