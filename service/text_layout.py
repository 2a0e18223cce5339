"""Caption line wrapping and vertical placement."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

LINE_HEIGHT_RATIO = 1.2
BOTTOM_MARGIN_RATIO = 0.8
TOP_OFFSET_RATIO = 1.6
SIDE_PADDING = 50
EXTRA_SIDE_MARGIN = 40


class MeasuringFont(Protocol):
    """Anything that can report the advance width of a string."""

    def getlength(self, text: str) -> float: ...


@dataclass(frozen=True)
class TextPosition:
    """Baseline of the first line plus the distance between baselines."""

    start_y: float
    line_height: float


@dataclass(frozen=True)
class PlacedLine:
    """A wrapped line with its left edge, baseline and measured width."""

    text: str
    x: float
    baseline_y: float
    width: float


def compute_max_line_width(canvas_width: int) -> float:
    """Return the usable line width for a canvas."""
    return float(canvas_width - SIDE_PADDING * 2 - EXTRA_SIDE_MARGIN)


def measure_text_width(font: MeasuringFont, text_value: str) -> float:
    """Measure text advance width using font metrics."""
    if not text_value:
        return 0.0
    return float(font.getlength(text_value))


def wrap_text(text_value: str, max_width: float, font: MeasuringFont) -> Tuple[str, ...]:
    """Greedily wrap text into lines no wider than max_width.

    Explicit line breaks are kept, blank paragraphs are dropped and a single
    word wider than max_width stays whole on its own line.
    """
    lines: list[str] = []
    for paragraph in text_value.splitlines():
        words = paragraph.split()
        if not words:
            continue
        current_line = ""
        for word in words:
            candidate = f"{current_line} {word}" if current_line else word
            if current_line and measure_text_width(font, candidate) > max_width:
                lines.append(current_line)
                current_line = word
            else:
                current_line = candidate
        lines.append(current_line)
    return tuple(lines)


def compute_text_position(
    canvas_height: int,
    line_count: int,
    font_size: float,
    text_height_percent: float,
) -> TextPosition:
    """Compute the first baseline for a block of lines.

    text_height_percent=100 anchors the block near the top of the frame and
    0 near the bottom.
    """
    line_height = font_size * LINE_HEIGHT_RATIO
    total_text_height = line_count * line_height
    vertical_range = canvas_height - total_text_height - font_size * BOTTOM_MARGIN_RATIO
    inverted_percent = 100 - text_height_percent
    start_y = vertical_range * inverted_percent / 100 + font_size * TOP_OFFSET_RATIO
    return TextPosition(start_y=start_y, line_height=line_height)


def place_lines(
    lines: Sequence[str],
    font: MeasuringFont,
    canvas_width: int,
    position: TextPosition,
) -> Tuple[PlacedLine, ...]:
    """Center each line horizontally and stack baselines from start_y."""
    placed: list[PlacedLine] = []
    for line_index, line in enumerate(lines):
        line_width = measure_text_width(font, line)
        placed.append(
            PlacedLine(
                text=line,
                x=(canvas_width - line_width) / 2.0,
                baseline_y=position.start_y + line_index * position.line_height,
                width=line_width,
            )
        )
    return tuple(placed)


def layout_caption(
    text_value: str,
    font: MeasuringFont,
    font_size: float,
    canvas_width: int,
    canvas_height: int,
    text_height_percent: float,
) -> Tuple[PlacedLine, ...]:
    """Wrap and place a caption for the given canvas."""
    lines = wrap_text(text_value, compute_max_line_width(canvas_width), font)
    position = compute_text_position(
        canvas_height, len(lines), font_size, text_height_percent
    )
    return place_lines(lines, font, canvas_width, position)
