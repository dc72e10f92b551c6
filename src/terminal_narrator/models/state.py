"""
Connection State Models
=======================

Externally visible state of the stream session.

Core Concepts:
    - ConnectionState: Discrete connection states
    - ConnectionStatus: Immutable status published to observers on every change

Transitions:
    DISCONNECTED -> CONNECTING -> AUTHENTICATING -> SUBSCRIBING -> STREAMING
    any state    -> RECONNECTING (attempt, next_delay) on transport failure
    RECONNECTING -> CONNECTING after the backoff delay
    RECONNECTING -> DISCONNECTED (fatal) once retries are exhausted

Only the StreamSession creates ConnectionStatus values; everything else
reads them.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ConnectionState(str, Enum):
    """
    Discrete connection states of the stream session.

    Attributes:
        DISCONNECTED: No transport; idle or stopped after a fatal error
        CONNECTING: Opening the transport
        AUTHENTICATING: Obtaining or refreshing the bearer token
        SUBSCRIBING: Transport open, subscribe message being sent
        STREAMING: Receiving snapshots
        RECONNECTING: Waiting out the backoff delay before the next attempt
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AUTHENTICATING = "AUTHENTICATING"
    SUBSCRIBING = "SUBSCRIBING"
    STREAMING = "STREAMING"
    RECONNECTING = "RECONNECTING"


class ConnectionStatus(BaseModel):
    """
    Read-only snapshot of the session's connection state.

    Attributes:
        state: Current connection state
        attempt: Reconnect attempt number (0 when healthy)
        next_delay: Backoff delay before the next attempt, in seconds
        session_id: Session currently subscribed (or to be resubscribed)
        error: Last error message, if any
        fatal: True once the session gave up and needs caller action
        incompatible_server: True when every frame fails to decode
    """

    model_config = ConfigDict(frozen=True)

    state: ConnectionState = Field(
        default=ConnectionState.DISCONNECTED,
        description="Current connection state",
    )
    attempt: int = Field(default=0, ge=0, description="Reconnect attempt number")
    next_delay: Optional[float] = Field(
        default=None,
        ge=0,
        description="Seconds until the next reconnect attempt",
    )
    session_id: Optional[str] = Field(default=None, description="Active session id")
    error: Optional[str] = Field(default=None, description="Last error message")
    fatal: bool = Field(default=False, description="Session stopped, caller action needed")
    incompatible_server: bool = Field(
        default=False,
        description="Sustained decode failures suggest a protocol version mismatch",
    )

    @property
    def is_streaming(self) -> bool:
        return self.state == ConnectionState.STREAMING
