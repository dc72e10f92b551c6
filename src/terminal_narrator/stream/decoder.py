"""
Snapshot Decoder
================

Dedicated module for decoding terminal buffer snapshots into Snapshot grids.

Two wire forms are supported and both end in the same typed Snapshot:
    - Binary ("application/octet-stream"): compact header + row stream
    - Structured ("application/json"): SnapshotMessage document

Binary Layout (little-endian):
    0   magic      u16 = 0x5654 ("VT")
    2   version    u8  = 1
    3   flags      u8  (ignored)
    4   cols       u32
    8   rows       u32
    12  viewportY  i32
    16  cursorX    i32
    20  cursorY    i32
    24  reserved   4 bytes
    28  row stream: 0xFE <n> (n blank rows) | 0xFD <u16 count> <cells...>

Design Rules:
    - This is the ONLY place in the codebase that parses snapshot bytes
    - Pure and deterministic: no I/O, no state, never reads out of bounds
    - Header and cell problems raise ProtocolError; a partial snapshot is
      never returned
    - A row stream that stops early (unknown marker, end of input between
      rows) degrades to a blank tail instead of failing
"""

import logging
import struct
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple, Union

import regex
from pydantic import ValidationError

from terminal_narrator.errors import ProtocolError
from terminal_narrator.models.error_codes import ProtocolErrorCode
from terminal_narrator.models.input import CellMessage, SnapshotMessage
from terminal_narrator.models.snapshot import (
    BLANK_CELL,
    Cell,
    Color,
    PaletteColor,
    RgbColor,
    Snapshot,
    color_from_packed,
)


logger = logging.getLogger(__name__)


MAGIC = 0x5654
SUPPORTED_VERSION = 1

# Named header fields occupy 28 bytes; 32 is the minimum accepted buffer
HEADER_SIZE = 28
HEADER_MIN_SIZE = 32

MAX_DIMENSION = 1000

MARKER_EMPTY_ROWS = 0xFE
MARKER_CONTENT_ROW = 0xFD

CELL_BLANK = 0x00

HEADER_STRUCT = struct.Struct("<HBBIIiii4x")

CONTENT_TYPE_BINARY = "application/octet-stream"
CONTENT_TYPE_JSON = "application/json"

_EMOJI_PRESENTATION = regex.compile(r"\p{Emoji_Presentation}")


# =============================================================================
# Cell Type Flags
# =============================================================================

class GlyphKind(str, Enum):
    """How the glyph of a non-blank cell is encoded."""

    SPACE = "space"
    UNICODE = "unicode"
    ASCII = "ascii"


@dataclass(frozen=True, slots=True)
class CellFlags:
    """
    Validated view of a cell type byte.

    Bit layout:
        bit7 extended attributes, bit6 unicode, bit5 foreground,
        bit4 background, bit3 fg is RGB, bit2 bg is RGB, bits1-0 char type

    Impossible combinations are normalized here so the cell decoder never
    reads a field the flags do not describe: an RGB bit without its color
    bit is dropped, and the unicode bit is meaningless for char type 0.
    """

    glyph: GlyphKind
    has_attributes: bool
    has_foreground: bool
    has_background: bool
    foreground_rgb: bool
    background_rgb: bool

    @classmethod
    def from_byte(cls, type_byte: int) -> "CellFlags":
        has_foreground = bool(type_byte & 0x20)
        has_background = bool(type_byte & 0x10)
        char_type = type_byte & 0x03

        if char_type == 0:
            glyph = GlyphKind.SPACE
        elif type_byte & 0x40:
            glyph = GlyphKind.UNICODE
        else:
            glyph = GlyphKind.ASCII

        return cls(
            glyph=glyph,
            has_attributes=bool(type_byte & 0x80),
            has_foreground=has_foreground,
            has_background=has_background,
            foreground_rgb=has_foreground and bool(type_byte & 0x08),
            background_rgb=has_background and bool(type_byte & 0x04),
        )


# =============================================================================
# Bounded Reader
# =============================================================================

class _Reader:
    """Cursor over a byte buffer; every read is bounds-checked."""

    __slots__ = ("_data", "offset")

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = data
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def _need(self, count: int) -> None:
        if count > self.remaining:
            raise ProtocolError(
                ProtocolErrorCode.TRUNCATED,
                f"need {count} bytes at offset {self.offset}, {self.remaining} left",
            )

    def u8(self) -> int:
        self._need(1)
        value = self._data[self.offset]
        self.offset += 1
        return value

    def u16(self) -> int:
        self._need(2)
        (value,) = struct.unpack_from("<H", self._data, self.offset)
        self.offset += 2
        return value

    def take(self, count: int) -> bytes:
        self._need(count)
        chunk = bytes(self._data[self.offset:self.offset + count])
        self.offset += count
        return chunk


# =============================================================================
# Shared Helpers
# =============================================================================

def glyph_width(glyph: str) -> int:
    """
    Display width of a unicode glyph.

    Width is 2 only when the first scalar has the Emoji_Presentation
    property. East Asian wide characters deliberately report 1.
    """
    if glyph and _EMOJI_PRESENTATION.match(glyph[0]):
        return 2
    return 1


def validate_dimensions(cols: int, rows: int) -> None:
    """
    Check grid dimensions against the protocol limits.

    Raises:
        ProtocolError: INVALID_DIMENSIONS unless 0 < cols, rows <= 1000
    """
    if not (0 < cols <= MAX_DIMENSION and 0 < rows <= MAX_DIMENSION):
        raise ProtocolError(
            ProtocolErrorCode.INVALID_DIMENSIONS,
            f"invalid dimensions {cols}x{rows}",
        )


def fit_row(cells: Sequence[Cell], cols: int) -> Tuple[Cell, ...]:
    """Pad a row with blank cells, or cut it, to exactly ``cols`` cells."""
    if len(cells) >= cols:
        return tuple(cells[:cols])
    return tuple(cells) + (BLANK_CELL,) * (cols - len(cells))


def _fill_rows(grid: List[Tuple[Cell, ...]], cols: int, rows: int) -> None:
    if len(grid) < rows:
        grid.extend([(BLANK_CELL,) * cols] * (rows - len(grid)))


# =============================================================================
# Binary Path
# =============================================================================

def decode_snapshot(data: Union[bytes, bytearray, memoryview]) -> Snapshot:
    """
    Decode a binary snapshot body.

    Args:
        data: Snapshot payload with any transport envelope already stripped

    Returns:
        Snapshot with exactly ``rows`` x ``cols`` cells

    Raises:
        ProtocolError: TRUNCATED, INVALID_MAGIC, UNSUPPORTED_VERSION or
            INVALID_DIMENSIONS, checked in that order
    """
    data = bytes(data)

    if len(data) < HEADER_MIN_SIZE:
        raise ProtocolError(
            ProtocolErrorCode.TRUNCATED,
            f"buffer too small for header: {len(data)} bytes (need {HEADER_MIN_SIZE})",
        )

    (
        magic,
        version,
        _flags,
        cols,
        rows,
        viewport_y,
        cursor_x,
        cursor_y,
    ) = HEADER_STRUCT.unpack_from(data, 0)

    if magic != MAGIC:
        raise ProtocolError(
            ProtocolErrorCode.INVALID_MAGIC,
            f"invalid magic 0x{magic:04X}, expected 0x{MAGIC:04X}",
        )

    if version != SUPPORTED_VERSION:
        raise ProtocolError(
            ProtocolErrorCode.UNSUPPORTED_VERSION,
            f"unsupported version 0x{version:02X}, expected 0x{SUPPORTED_VERSION:02X}",
        )

    validate_dimensions(cols, rows)

    reader = _Reader(data, HEADER_SIZE)
    grid = _decode_rows(reader, cols, rows)

    return Snapshot(
        cols=cols,
        rows=rows,
        viewport_y=viewport_y,
        cursor_x=cursor_x,
        cursor_y=cursor_y,
        cells=tuple(grid),
    )


def _decode_rows(reader: _Reader, cols: int, rows: int) -> List[Tuple[Cell, ...]]:
    grid: List[Tuple[Cell, ...]] = []
    blank_row = (BLANK_CELL,) * cols

    while len(grid) < rows and reader.remaining > 0:
        marker = reader.u8()

        if marker == MARKER_EMPTY_ROWS:
            if reader.remaining < 1:
                logger.debug("Missing count byte for empty-row run")
                break
            count = reader.u8()
            grid.extend([blank_row] * min(count, rows - len(grid)))

        elif marker == MARKER_CONTENT_ROW:
            if reader.remaining < 2:
                logger.debug("Missing cell count for content row")
                break
            count = reader.u16()
            cells = [_decode_cell(reader) for _ in range(count)]
            if len(cells) > cols:
                logger.debug(f"Row {len(grid)} has {len(cells)} cells for {cols} columns")
            grid.append(fit_row(cells, cols))

        else:
            logger.debug(
                f"Unknown row marker 0x{marker:02X} at offset {reader.offset - 1}"
            )
            break

    _fill_rows(grid, cols, rows)
    return grid


def _decode_cell(reader: _Reader) -> Cell:
    """
    Decode one cell.

    Unicode glyphs that are not valid UTF-8 become "?". A zero-length
    unicode glyph becomes " ", since a Cell glyph is never empty.
    """
    type_byte = reader.u8()

    if type_byte == CELL_BLANK:
        return BLANK_CELL

    flags = CellFlags.from_byte(type_byte)

    if flags.glyph == GlyphKind.SPACE:
        glyph, width = " ", 1
    elif flags.glyph == GlyphKind.UNICODE:
        length = reader.u8()
        raw = reader.take(length)
        try:
            glyph = raw.decode("utf-8")
        except UnicodeDecodeError:
            glyph = "?"
        if not glyph:
            glyph = " "
        width = glyph_width(glyph)
    else:
        glyph, width = chr(reader.u8()), 1

    foreground = _read_color(reader, flags.foreground_rgb) if flags.has_foreground else None
    background = _read_color(reader, flags.background_rgb) if flags.has_background else None
    attributes = reader.u8() if flags.has_attributes else None

    return Cell(
        glyph=glyph,
        width=width,
        foreground=foreground,
        background=background,
        attributes=attributes,
    )


def _read_color(reader: _Reader, is_rgb: bool) -> Color:
    if is_rgb:
        red, green, blue = reader.take(3)
        return RgbColor(red=red, green=green, blue=blue)
    return PaletteColor(index=reader.u8())


# =============================================================================
# Structured Path
# =============================================================================

def snapshot_from_json(document: Union[str, bytes, dict]) -> Snapshot:
    """
    Build a Snapshot from the structured (JSON) snapshot form.

    Args:
        document: Raw JSON text/bytes or an already-parsed dict

    Returns:
        Snapshot with exactly ``rows`` x ``cols`` cells

    Raises:
        ProtocolError: INVALID_PAYLOAD for schema errors,
            INVALID_DIMENSIONS for out-of-range grids
    """
    try:
        if isinstance(document, dict):
            message = SnapshotMessage.model_validate(document)
        else:
            message = SnapshotMessage.model_validate_json(document)
    except ValidationError as e:
        raise ProtocolError(
            ProtocolErrorCode.INVALID_PAYLOAD,
            f"structured snapshot failed validation: {e.error_count()} errors",
        ) from e

    validate_dimensions(message.cols, message.rows)

    try:
        grid = [
            fit_row([_cell_from_message(cell) for cell in row], message.cols)
            for row in message.cells[:message.rows]
        ]
    except ValueError as e:
        raise ProtocolError(ProtocolErrorCode.INVALID_PAYLOAD, str(e)) from e

    _fill_rows(grid, message.cols, message.rows)

    return Snapshot(
        cols=message.cols,
        rows=message.rows,
        viewport_y=message.viewport_y,
        cursor_x=message.cursor_x,
        cursor_y=message.cursor_y,
        cells=tuple(grid),
    )


def _cell_from_message(message: CellMessage) -> Cell:
    return Cell(
        glyph=message.char or " ",
        width=2 if message.width == 2 else 1,
        foreground=color_from_packed(message.fg) if message.fg is not None else None,
        background=color_from_packed(message.bg) if message.bg is not None else None,
        attributes=message.attributes,
    )


def decode_response(body: bytes, content_type: str) -> Snapshot:
    """
    Decode a polling-endpoint body according to its content type.

    Args:
        body: Response body
        content_type: Value of the Content-Type header

    Returns:
        Decoded Snapshot

    Raises:
        ProtocolError: On decode failure or an unsupported content type
    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()

    if media_type == CONTENT_TYPE_BINARY:
        return decode_snapshot(body)
    if media_type == CONTENT_TYPE_JSON or media_type.endswith("+json"):
        return snapshot_from_json(body)

    raise ProtocolError(
        ProtocolErrorCode.INVALID_PAYLOAD,
        f"unsupported content type: {content_type!r}",
    )
