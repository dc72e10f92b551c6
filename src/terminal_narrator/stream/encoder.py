"""
Snapshot Encoder
================

Reference encoder for the binary snapshot format read by
``terminal_narrator.stream.decoder``.

Produces the compact form a terminal server would send: consecutive blank
rows collapse into 0xFE runs, trailing blank cells of a row are trimmed,
and every cell uses the smallest type byte that describes it.

Used to build fixtures for tests and for the watch script's offline mode.
"""

import struct
from typing import List, Sequence

from terminal_narrator.models.snapshot import BLANK_CELL, Cell, Color, RgbColor, Snapshot
from terminal_narrator.stream.decoder import (
    CELL_BLANK,
    HEADER_MIN_SIZE,
    HEADER_STRUCT,
    MAGIC,
    MARKER_CONTENT_ROW,
    MARKER_EMPTY_ROWS,
    SUPPORTED_VERSION,
)


_MAX_RUN = 0xFF
_MAX_ROW_CELLS = 0xFFFF


def encode_snapshot(snapshot: Snapshot, flags: int = 0) -> bytes:
    """
    Encode a Snapshot into the binary wire format.

    Args:
        snapshot: Grid to encode
        flags: Header flags byte (ignored by decoders)

    Returns:
        Snapshot body, padded to the 32-byte minimum when needed
    """
    out = bytearray(
        HEADER_STRUCT.pack(
            MAGIC,
            SUPPORTED_VERSION,
            flags,
            snapshot.cols,
            snapshot.rows,
            snapshot.viewport_y,
            snapshot.cursor_x,
            snapshot.cursor_y,
        )
    )

    blank_run = 0
    for row in snapshot.cells:
        cells = _trim_trailing_blanks(row)
        if not cells:
            blank_run += 1
            continue

        _write_blank_run(out, blank_run)
        blank_run = 0

        if len(cells) > _MAX_ROW_CELLS:
            raise ValueError(f"row too long to encode: {len(cells)} cells")
        out.append(MARKER_CONTENT_ROW)
        out += struct.pack("<H", len(cells))
        for cell in cells:
            out += encode_cell(cell)

    _write_blank_run(out, blank_run)

    # Zero padding reads as an unknown marker and ends the row stream
    if len(out) < HEADER_MIN_SIZE:
        out += bytes(HEADER_MIN_SIZE - len(out))

    return bytes(out)


def encode_cell(cell: Cell) -> bytes:
    """Encode one cell with its minimal type byte."""
    if cell == BLANK_CELL:
        return bytes([CELL_BLANK])

    type_byte = 0
    body = bytearray()

    if cell.glyph == " " and (
        cell.foreground is not None
        or cell.background is not None
        or cell.attributes is not None
    ):
        pass  # char type 0 decodes as a space
    elif len(cell.glyph) == 1 and ord(cell.glyph) < 0x80:
        type_byte |= 0x01
        body.append(ord(cell.glyph))
    else:
        encoded = cell.glyph.encode("utf-8")
        if len(encoded) > 0xFF:
            raise ValueError(f"glyph too long to encode: {len(encoded)} bytes")
        type_byte |= 0x40 | 0x01
        body.append(len(encoded))
        body += encoded

    if cell.foreground is not None:
        type_byte |= 0x20
        if isinstance(cell.foreground, RgbColor):
            type_byte |= 0x08
        body += _color_bytes(cell.foreground)

    if cell.background is not None:
        type_byte |= 0x10
        if isinstance(cell.background, RgbColor):
            type_byte |= 0x04
        body += _color_bytes(cell.background)

    if cell.attributes is not None:
        type_byte |= 0x80
        body.append(cell.attributes)

    return bytes([type_byte]) + bytes(body)


def _color_bytes(color: Color) -> bytes:
    if isinstance(color, RgbColor):
        return bytes([color.red, color.green, color.blue])
    return bytes([color.index])


def _trim_trailing_blanks(row: Sequence[Cell]) -> List[Cell]:
    end = len(row)
    while end > 0 and row[end - 1] == BLANK_CELL:
        end -= 1
    return list(row[:end])


def _write_blank_run(out: bytearray, count: int) -> None:
    while count > 0:
        run = min(count, _MAX_RUN)
        out.append(MARKER_EMPTY_ROWS)
        out.append(run)
        count -= run
