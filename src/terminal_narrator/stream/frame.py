"""
Frame Data Model
=================

Internal frame representations for the ingestion pipeline.

This module defines the two typed units that travel between the stream
session and downstream stages:
    - Frame: one binary transport frame with its envelope stripped
    - SnapshotEvent: one successfully decoded snapshot, ready for observers

Design Rules:
    - These are the ONLY units passed to downstream stages
    - Frame does NOT decode the payload
    - SnapshotEvent carries the stream epoch so consumers can detect
      baseline boundaries (reconnects, session switches) in order
"""

from dataclasses import dataclass

from terminal_narrator.models.snapshot import Snapshot


@dataclass(frozen=True, slots=True)
class Frame:
    """
    Binary stream frame after envelope stripping.

    Attributes:
        session_id: Terminal session the frame belongs to
        payload: Inner snapshot body (NOT decoded)
        received_at: UNIX timestamp when the frame arrived
    """

    session_id: str
    payload: bytes
    received_at: float

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the payload."""
        return (
            f"Frame(session_id={self.session_id!r}, "
            f"payload={len(self.payload)} bytes, "
            f"received_at={self.received_at:.3f})"
        )


@dataclass(frozen=True, slots=True)
class SnapshotEvent:
    """
    Decoded snapshot fanned out to every registered observer.

    Attributes:
        session_id: Terminal session the snapshot belongs to
        snapshot: Decoded grid
        received_at: UNIX timestamp when the source frame arrived
        epoch: Stream epoch; changes on every reconnect or session switch
    """

    session_id: str
    snapshot: Snapshot
    received_at: float
    epoch: int
