"""
Structured Snapshot Schema
==========================

Pydantic models for the JSON form of a buffer snapshot, as returned by the
polling endpoint when it answers with ``application/json``.

Input Contract (from the terminal server):
    {
        "cols": 80,
        "rows": 24,
        "viewportY": 0,
        "cursorX": 3,
        "cursorY": 1,
        "cells": [
            [{"char": "A", "width": 1, "fg": 2, "bg": null, "attributes": null}],
            ...
        ]
    }

Colors use the same packed integers as the binary path: palette indices are
0..255 and RGB values carry 0xFF in the top byte.

Example:
    from terminal_narrator.models.input import SnapshotMessage

    message = SnapshotMessage.model_validate_json(body)
    print(message.cols, message.rows)
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CellMessage(BaseModel):
    """
    Schema for one cell of a structured snapshot.

    Attributes:
        char: Displayed grapheme (empty means space)
        width: Display width
        fg: Packed foreground color
        bg: Packed background color
        attributes: Attribute bitmask
    """

    char: str = Field(default=" ", description="Displayed grapheme")
    width: int = Field(default=1, ge=0, le=2, description="Display width")
    fg: Optional[int] = Field(default=None, ge=0, description="Packed foreground color")
    bg: Optional[int] = Field(default=None, ge=0, description="Packed background color")
    attributes: Optional[int] = Field(
        default=None,
        ge=0,
        le=255,
        description="Attribute bitmask",
    )


class SnapshotMessage(BaseModel):
    """
    Schema for a structured buffer snapshot.

    Dimensions are not range-checked here; the decoder applies the same
    dimension rules to both the binary and the structured path.
    """

    model_config = ConfigDict(populate_by_name=True)

    cols: int = Field(..., description="Grid width in cells")
    rows: int = Field(..., description="Grid height in rows")
    viewport_y: int = Field(default=0, alias="viewportY", description="First visible line")
    cursor_x: int = Field(default=0, alias="cursorX", description="Cursor column")
    cursor_y: int = Field(default=0, alias="cursorY", description="Cursor row")
    cells: List[List[CellMessage]] = Field(
        default_factory=list,
        description="Row-major cell grid (rows may be short)",
    )
