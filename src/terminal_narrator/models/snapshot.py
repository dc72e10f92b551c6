"""
Snapshot Data Model
===================

Immutable grid representation of one decoded terminal snapshot.

Both the binary decoder and the structured (JSON) path produce these
types, and every downstream stage consumes them.

Design Rules:
    - Snapshot, Cell and Color values are frozen once built
    - A Snapshot always holds exactly ``rows`` rows of exactly ``cols`` cells
    - Colors are a tagged union: palette index OR packed RGB, never ambiguous
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union


# Top byte set on packed RGB values, never on palette indices
RGB_FLAG = 0xFF000000


@dataclass(frozen=True, slots=True)
class PaletteColor:
    """
    Indexed color from the 256-entry terminal palette.

    Attributes:
        index: Palette index in [0, 255]
    """

    index: int

    def __post_init__(self) -> None:
        if not 0 <= self.index <= 0xFF:
            raise ValueError(f"palette index out of range: {self.index}")

    @property
    def packed(self) -> int:
        return self.index


@dataclass(frozen=True, slots=True)
class RgbColor:
    """
    24-bit true color.

    Attributes:
        red: Red channel [0, 255]
        green: Green channel [0, 255]
        blue: Blue channel [0, 255]
    """

    red: int
    green: int
    blue: int

    def __post_init__(self) -> None:
        for channel in (self.red, self.green, self.blue):
            if not 0 <= channel <= 0xFF:
                raise ValueError(f"RGB channel out of range: {channel}")

    @property
    def packed(self) -> int:
        """Packed form ``0xFF000000 | r<<16 | g<<8 | b``."""
        return RGB_FLAG | (self.red << 16) | (self.green << 8) | self.blue


Color = Union[PaletteColor, RgbColor]


def color_from_packed(value: int) -> Color:
    """
    Rebuild a tagged color from its packed integer form.

    Args:
        value: Palette index or packed RGB value

    Returns:
        PaletteColor or RgbColor

    Raises:
        ValueError: If value is neither a palette index nor packed RGB
    """
    if value & RGB_FLAG:
        return RgbColor(
            red=(value >> 16) & 0xFF,
            green=(value >> 8) & 0xFF,
            blue=value & 0xFF,
        )
    return PaletteColor(index=value)


@dataclass(frozen=True, slots=True)
class Cell:
    """
    One grid position.

    Attributes:
        glyph: Displayed grapheme (space when empty)
        width: Display width, 1 or 2 columns
        foreground: Optional foreground color
        background: Optional background color
        attributes: Optional attribute bitmask (bold, underline, ...)
    """

    glyph: str = " "
    width: int = 1
    foreground: Optional[Color] = None
    background: Optional[Color] = None
    attributes: Optional[int] = None

    def __post_init__(self) -> None:
        if self.width not in (1, 2):
            raise ValueError(f"cell width must be 1 or 2, got {self.width}")
        if self.attributes is not None and not 0 <= self.attributes <= 0xFF:
            raise ValueError(f"attributes out of range: {self.attributes}")


BLANK_CELL = Cell()


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    Full decoded terminal grid at one point in time.

    Attributes:
        cols: Grid width in cells
        rows: Grid height in rows
        viewport_y: First visible buffer line
        cursor_x: Cursor column (not clamped to the grid)
        cursor_y: Cursor row (not clamped to the grid)
        cells: ``rows`` tuples of ``cols`` cells each
    """

    cols: int
    rows: int
    viewport_y: int
    cursor_x: int
    cursor_y: int
    cells: Tuple[Tuple[Cell, ...], ...]

    def __post_init__(self) -> None:
        if len(self.cells) != self.rows:
            raise ValueError(
                f"snapshot has {len(self.cells)} rows, expected {self.rows}"
            )
        for index, row in enumerate(self.cells):
            if len(row) != self.cols:
                raise ValueError(
                    f"row {index} has {len(row)} cells, expected {self.cols}"
                )

    def row_text(self, index: int) -> str:
        """Glyphs of one row with trailing spaces trimmed."""
        return "".join(cell.glyph for cell in self.cells[index]).rstrip(" ")

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the whole grid."""
        return (
            f"Snapshot(cols={self.cols}, rows={self.rows}, "
            f"cursor=({self.cursor_x},{self.cursor_y}), "
            f"viewport_y={self.viewport_y})"
        )
