"""
Snapshot Decoder Tests
======================

Binary and structured decoding, malformed input handling.
"""

import struct

import pytest

from terminal_narrator.errors import ProtocolError
from terminal_narrator.models.error_codes import ProtocolErrorCode
from terminal_narrator.models.snapshot import BLANK_CELL, Cell, PaletteColor, RgbColor, Snapshot
from terminal_narrator.stream.decoder import (
    CellFlags,
    GlyphKind,
    decode_response,
    decode_snapshot,
    glyph_width,
    snapshot_from_json,
)
from terminal_narrator.stream.encoder import encode_snapshot


def content_row(*cells: bytes) -> bytes:
    return bytes([0xFD]) + struct.pack("<H", len(cells)) + b"".join(cells)


def ascii_cell(ch: str) -> bytes:
    return bytes([0x01, ord(ch)])


def decode_error(data: bytes) -> ProtocolErrorCode:
    with pytest.raises(ProtocolError) as exc_info:
        decode_snapshot(data)
    return exc_info.value.code


class TestHeaderValidation:
    """Length, magic, version and dimension checks."""

    def test_empty_buffer_is_truncated(self):
        assert decode_error(b"") == ProtocolErrorCode.TRUNCATED

    def test_buffer_below_minimum_is_truncated(self, header):
        data = header() + bytes(3)  # 31 bytes
        assert len(data) == 31
        assert decode_error(data) == ProtocolErrorCode.TRUNCATED

    def test_wrong_magic(self, header):
        assert decode_error(header(magic=0x1234) + bytes(4)) == ProtocolErrorCode.INVALID_MAGIC

    def test_magic_checked_before_version(self, header):
        data = header(magic=0x0000, version=9) + bytes(4)
        assert decode_error(data) == ProtocolErrorCode.INVALID_MAGIC

    def test_unsupported_version(self, header):
        assert decode_error(header(version=2) + bytes(4)) == ProtocolErrorCode.UNSUPPORTED_VERSION

    @pytest.mark.parametrize("cols,rows", [(0, 24), (80, 0), (1001, 24), (80, 1001)])
    def test_invalid_dimensions(self, header, cols, rows):
        assert decode_error(header(cols=cols, rows=rows) + bytes(4)) == ProtocolErrorCode.INVALID_DIMENSIONS

    def test_maximum_dimensions_accepted(self, header):
        snapshot = decode_snapshot(header(cols=1000, rows=1000) + bytes([0xFE, 0xFF, 0xFE, 0xFF]))
        assert snapshot.cols == 1000
        assert len(snapshot.cells) == 1000

    def test_flags_byte_ignored(self, header):
        snapshot = decode_snapshot(header(cols=2, rows=1, flags=0xFF) + bytes(4))
        assert snapshot.rows == 1


class TestConcreteScenario:
    """80x24 snapshot with one content row and an empty-row run."""

    def test_decodes_grid(self, sample_snapshot_bytes):
        snapshot = decode_snapshot(sample_snapshot_bytes)

        assert snapshot.cols == 80
        assert snapshot.rows == 24
        assert len(snapshot.cells) == 24
        assert [cell.glyph for cell in snapshot.cells[0][:2]] == ["A", "B"]
        assert all(cell == BLANK_CELL for cell in snapshot.cells[0][2:])
        assert len(snapshot.cells[0]) == 80
        for row in snapshot.cells[1:]:
            assert all(cell.glyph == " " for cell in row)
        assert snapshot.cursor_x == 3
        assert snapshot.cursor_y == 1

    def test_accepts_bytearray_and_memoryview(self, sample_snapshot_bytes):
        expected = decode_snapshot(sample_snapshot_bytes)
        assert decode_snapshot(bytearray(sample_snapshot_bytes)) == expected
        assert decode_snapshot(memoryview(sample_snapshot_bytes)) == expected


class TestRowStream:
    """Row markers and graceful degradation."""

    def test_empty_run_clamped_to_remaining_rows(self, header):
        snapshot = decode_snapshot(header(cols=4, rows=3) + bytes([0xFE, 0xFF]) + bytes(2))
        assert len(snapshot.cells) == 3

    def test_unknown_marker_fills_blank_tail(self, header):
        data = header(cols=4, rows=3) + content_row(ascii_cell("x")) + bytes([0x42, 0x01, 0x02])
        snapshot = decode_snapshot(data)
        assert snapshot.row_text(0) == "x"
        assert snapshot.row_text(1) == ""
        assert snapshot.row_text(2) == ""

    def test_zero_padding_reads_as_blank_rows(self, header):
        snapshot = decode_snapshot(header(cols=4, rows=2) + bytes(4))
        assert all(cell == BLANK_CELL for row in snapshot.cells for cell in row)

    def test_missing_row_header_fills_blank_tail(self, header):
        data = header(cols=4, rows=5) + bytes([0xFE, 1, 0xFE, 1]) + bytes([0xFD, 0x02])
        snapshot = decode_snapshot(data)
        assert len(snapshot.cells) == 5

    def test_short_row_is_padded(self, header):
        data = header(cols=6, rows=1) + content_row(ascii_cell("a")) + bytes(2)
        snapshot = decode_snapshot(data)
        assert len(snapshot.cells[0]) == 6
        assert snapshot.cells[0][1:] == (BLANK_CELL,) * 5

    def test_long_row_is_cut_to_cols(self, header):
        data = header(cols=2, rows=2) + content_row(ascii_cell("a"), ascii_cell("b"), ascii_cell("c"))
        data += content_row(ascii_cell("d"))
        snapshot = decode_snapshot(data)
        assert snapshot.row_text(0) == "ab"
        assert snapshot.row_text(1) == "d"

    def test_truncated_cell_fails_whole_snapshot(self, header):
        data = header(cols=4, rows=1) + bytes([0xFD]) + struct.pack("<H", 2) + ascii_cell("A")
        assert len(data) >= 32
        assert decode_error(data) == ProtocolErrorCode.TRUNCATED

    def test_truncated_color_fails_whole_snapshot(self, header):
        # fg RGB announced, only two color bytes present
        data = header(cols=4, rows=1) + bytes([0xFD]) + struct.pack("<H", 1) + bytes([0x29, ord("A"), 1, 2])
        assert decode_error(data) == ProtocolErrorCode.TRUNCATED


class TestCellDecoding:
    """Type byte flags, glyphs and colors."""

    def decode_cells(self, header, *cells: bytes, cols: int = 4):
        data = header(cols=cols, rows=1) + content_row(*cells) + bytes(4)
        return decode_snapshot(data).cells[0]

    def test_blank_type_byte(self, header):
        row = self.decode_cells(header, b"\x00", ascii_cell("z"))
        assert row[0] == BLANK_CELL
        assert row[1].glyph == "z"

    def test_char_type_zero_is_space(self, header):
        row = self.decode_cells(header, bytes([0x20, 5]))
        assert row[0] == Cell(glyph=" ", foreground=PaletteColor(5))

    def test_colors_and_attributes(self, header):
        cell = bytes([0xB9, ord("X"), 0x10, 0x20, 0x30, 7, 0x03])
        row = self.decode_cells(header, cell)
        assert row[0] == Cell(
            glyph="X",
            width=1,
            foreground=RgbColor(0x10, 0x20, 0x30),
            background=PaletteColor(7),
            attributes=3,
        )
        assert row[0].foreground.packed == 0xFF102030

    def test_rgb_background(self, header):
        row = self.decode_cells(header, bytes([0x15, ord("y"), 1, 2, 3]))
        assert row[0].background == RgbColor(1, 2, 3)
        assert row[0].foreground is None

    def test_unicode_emoji_is_wide(self, header):
        encoded = "\U0001F600".encode("utf-8")
        row = self.decode_cells(header, bytes([0x41, len(encoded)]) + encoded)
        assert row[0].glyph == "\U0001F600"
        assert row[0].width == 2

    def test_east_asian_wide_glyph_reports_width_one(self, header):
        encoded = "漢".encode("utf-8")
        row = self.decode_cells(header, bytes([0x41, len(encoded)]) + encoded)
        assert row[0].glyph == "漢"
        assert row[0].width == 1

    def test_invalid_utf8_becomes_question_mark(self, header):
        row = self.decode_cells(header, bytes([0x41, 2, 0xC3, 0x28]), ascii_cell("k"))
        assert row[0].glyph == "?"
        assert row[1].glyph == "k"

    def test_zero_length_unicode_glyph_becomes_space(self, header):
        row = self.decode_cells(header, bytes([0x41, 0]), ascii_cell("z"))
        assert row[0].glyph == " "
        assert row[0].width == 1
        assert row[1].glyph == "z"

    def test_rgb_bit_without_color_bit_is_ignored(self, header):
        # 0x09: ASCII + fg-RGB bit, but no foreground bit
        row = self.decode_cells(header, bytes([0x09, ord("a")]), ascii_cell("b"))
        assert row[0] == Cell(glyph="a")
        assert row[1].glyph == "b"

    def test_unicode_bit_with_char_type_zero_reads_no_glyph(self, header):
        row = self.decode_cells(header, bytes([0x40]), ascii_cell("q"))
        assert row[0].glyph == " "
        assert row[1].glyph == "q"


class TestCellFlags:
    def test_normalizes_flags(self):
        flags = CellFlags.from_byte(0x4C)  # unicode + both RGB bits, char type 0
        assert flags.glyph == GlyphKind.SPACE
        assert not flags.foreground_rgb
        assert not flags.background_rgb

    def test_full_flags(self):
        flags = CellFlags.from_byte(0xFD)
        assert flags.glyph == GlyphKind.UNICODE
        assert flags.has_attributes
        assert flags.foreground_rgb and flags.background_rgb


class TestGlyphWidth:
    @pytest.mark.parametrize("glyph,width", [("a", 1), ("\U0001F680", 2), ("☃", 1), ("", 1)])
    def test_emoji_presentation_heuristic(self, glyph, width):
        assert glyph_width(glyph) == width


class TestRoundTrip:
    def test_encoded_snapshot_decodes_identically(self, make_snapshot):
        snapshot = make_snapshot(["$ ls -la", "", "total 0", "", ""], cols=12, rows=6, cursor_x=2, cursor_y=3)
        cells = [list(row) for row in snapshot.cells]
        cells[1][0] = Cell(glyph="#", foreground=RgbColor(255, 0, 0), attributes=1)
        cells[1][1] = Cell(glyph=" ", background=PaletteColor(4))
        cells[4][0] = Cell(glyph="\U0001F600", width=2)
        snapshot = Snapshot(
            cols=12,
            rows=6,
            viewport_y=40,
            cursor_x=2,
            cursor_y=3,
            cells=tuple(tuple(row) for row in cells),
        )

        assert decode_snapshot(encode_snapshot(snapshot)) == snapshot

    def test_tiny_blank_snapshot(self, make_snapshot):
        snapshot = make_snapshot([], cols=1, rows=1)
        data = encode_snapshot(snapshot)
        assert len(data) >= 32
        assert decode_snapshot(data) == snapshot


class TestStructuredSnapshot:
    """JSON path shares validation and normalization with the binary path."""

    def test_builds_padded_grid(self):
        snapshot = snapshot_from_json({
            "cols": 4,
            "rows": 3,
            "viewportY": 10,
            "cursorX": 1,
            "cursorY": 2,
            "cells": [
                [{"char": "h", "fg": 0xFF00FF00}, {"char": "i", "bg": 3, "attributes": 1}],
            ],
        })

        assert snapshot.row_text(0) == "hi"
        assert snapshot.cells[0][0].foreground == RgbColor(0, 255, 0)
        assert snapshot.cells[0][1].background == PaletteColor(3)
        assert len(snapshot.cells) == 3
        assert all(len(row) == 4 for row in snapshot.cells)
        assert (snapshot.viewport_y, snapshot.cursor_x, snapshot.cursor_y) == (10, 1, 2)

    def test_accepts_json_text(self):
        snapshot = snapshot_from_json('{"cols": 2, "rows": 1, "cells": [[{"char": "", "width": 0}]]}')
        assert snapshot.cells[0][0] == BLANK_CELL

    def test_extra_rows_dropped(self):
        snapshot = snapshot_from_json({"cols": 1, "rows": 1, "cells": [[{"char": "a"}], [{"char": "b"}]]})
        assert snapshot.rows == 1
        assert snapshot.row_text(0) == "a"

    def test_schema_error(self):
        with pytest.raises(ProtocolError) as exc_info:
            snapshot_from_json({"rows": 2})
        assert exc_info.value.code == ProtocolErrorCode.INVALID_PAYLOAD

    def test_bad_color(self):
        with pytest.raises(ProtocolError) as exc_info:
            snapshot_from_json({"cols": 1, "rows": 1, "cells": [[{"char": "a", "fg": 300}]]})
        assert exc_info.value.code == ProtocolErrorCode.INVALID_PAYLOAD

    def test_invalid_dimensions(self):
        with pytest.raises(ProtocolError) as exc_info:
            snapshot_from_json({"cols": 0, "rows": 2})
        assert exc_info.value.code == ProtocolErrorCode.INVALID_DIMENSIONS


class TestDecodeResponse:
    def test_binary_content_type(self, sample_snapshot_bytes):
        snapshot = decode_response(sample_snapshot_bytes, "application/octet-stream")
        assert snapshot.row_text(0) == "AB"

    def test_json_content_type_with_charset(self):
        body = b'{"cols": 3, "rows": 1, "cells": [[{"char": "o"}, {"char": "k"}]]}'
        snapshot = decode_response(body, "application/json; charset=utf-8")
        assert snapshot.row_text(0) == "ok"

    def test_unsupported_content_type(self):
        with pytest.raises(ProtocolError) as exc_info:
            decode_response(b"<html>", "text/html")
        assert exc_info.value.code == ProtocolErrorCode.INVALID_PAYLOAD
