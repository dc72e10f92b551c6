"""
Error Codes
===========

Fixed set of machine-readable codes carried by every narrator exception.

Each failure has exactly ONE code that says what went wrong, so callers
branch on the code rather than parsing messages.

Rules:
    - One clear cause per code
    - Codes are stable strings (safe to expose over the HTTP API)
"""

from enum import Enum


class ProtocolErrorCode(str, Enum):
    """
    Per-frame snapshot decoding failures.

    Attributes:
        INVALID_MAGIC: Leading bytes are not 0x5654
        UNSUPPORTED_VERSION: Version byte is not 1
        INVALID_DIMENSIONS: cols/rows outside (0, 1000]
        TRUNCATED: A read would run past the end of the buffer
        INVALID_ENVELOPE: Outer stream frame is malformed
        INVALID_PAYLOAD: Structured (JSON) snapshot does not validate
    """

    INVALID_MAGIC = "INVALID_MAGIC"
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"
    INVALID_DIMENSIONS = "INVALID_DIMENSIONS"
    TRUNCATED = "TRUNCATED"
    INVALID_ENVELOPE = "INVALID_ENVELOPE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"


class ConnectionErrorCode(str, Enum):
    """
    Transport failures, recoverable through reconnect/backoff.

    Attributes:
        UNREACHABLE: Server could not be reached
        HANDSHAKE_FAILED: Server answered but refused the upgrade
        TIMEOUT: Open timed out or the health check saw no traffic
        CONNECTION_LOST: An established stream closed
    """

    UNREACHABLE = "UNREACHABLE"
    HANDSHAKE_FAILED = "HANDSHAKE_FAILED"
    TIMEOUT = "TIMEOUT"
    CONNECTION_LOST = "CONNECTION_LOST"


class AuthErrorCode(str, Enum):
    """
    Authentication failures.

    Attributes:
        EXPIRED: Token is stale or was rejected; a silent refresh is attempted
        INVALID_CREDENTIALS: Stored credentials were refused; re-entry needed
        NOT_REQUIRED: Server runs without auth; auth is already satisfied
        NETWORK: Auth endpoint could not be reached
    """

    EXPIRED = "EXPIRED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    NOT_REQUIRED = "NOT_REQUIRED"
    NETWORK = "NETWORK"
