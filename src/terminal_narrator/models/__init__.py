"""
Data Models
===========

Data models for terminal-narrator.

This module re-exports all data models for convenient access.

Models:
    Snapshot:
        - Snapshot, Cell: Immutable decoded grid
        - PaletteColor, RgbColor: Tagged color union

    Input:
        - SnapshotMessage, CellMessage: Structured (JSON) snapshot schema

    State:
        - ConnectionState: Discrete connection states
        - ConnectionStatus: Published session status

    Auth:
        - AuthToken, Credentials: Token lifecycle and stored credentials
        - AuthConfigResponse, LoginRequest, LoginResponse: Auth API schemas

    Narration:
        - FlushEvent, FlushReason: Accumulator output

    Codes:
        - ProtocolErrorCode, ConnectionErrorCode, AuthErrorCode
"""

from terminal_narrator.models.snapshot import (
    BLANK_CELL,
    Cell,
    Color,
    PaletteColor,
    RgbColor,
    Snapshot,
    color_from_packed,
)
from terminal_narrator.models.input import CellMessage, SnapshotMessage
from terminal_narrator.models.state import ConnectionState, ConnectionStatus
from terminal_narrator.models.auth import (
    AuthConfigResponse,
    AuthToken,
    Credentials,
    LoginRequest,
    LoginResponse,
)
from terminal_narrator.models.narration import FlushEvent, FlushReason
from terminal_narrator.models.error_codes import (
    AuthErrorCode,
    ConnectionErrorCode,
    ProtocolErrorCode,
)

__all__ = [
    # Snapshot
    "BLANK_CELL",
    "Cell",
    "Color",
    "PaletteColor",
    "RgbColor",
    "Snapshot",
    "color_from_packed",
    # Input
    "CellMessage",
    "SnapshotMessage",
    # State
    "ConnectionState",
    "ConnectionStatus",
    # Auth
    "AuthConfigResponse",
    "AuthToken",
    "Credentials",
    "LoginRequest",
    "LoginResponse",
    # Narration
    "FlushEvent",
    "FlushReason",
    # Codes
    "AuthErrorCode",
    "ConnectionErrorCode",
    "ProtocolErrorCode",
]
