"""Unit tests for caption wrapping and placement."""

from __future__ import annotations

import pytest
from PIL import ImageFont

from service.text_layout import (
    TextPosition,
    compute_max_line_width,
    compute_text_position,
    layout_caption,
    place_lines,
    wrap_text,
)

SAMPLE_TEXT = (
    "the quick brown fox jumps over the lazy dog while seven wizards "
    "quietly box jumping frogs near the old mill"
)


class FixedWidthFont:
    """Every character, spaces included, is ten pixels wide."""

    def getlength(self, text: str) -> float:
        return 10.0 * len(text)


def test_wrapped_lines_fit_max_width() -> None:
    """Only single over-long words may exceed the wrap width."""
    font = ImageFont.load_default(size=40)
    for max_width in (60, 150, 320, 700):
        lines = wrap_text(SAMPLE_TEXT, max_width, font)
        assert lines
        for line in lines:
            if font.getlength(line) > max_width:
                assert " " not in line


def test_wrap_is_greedy() -> None:
    """Words are packed left to right until the next one would overflow."""
    lines = wrap_text("aa bb cc dd", 50, FixedWidthFont())
    assert lines == ("aa bb", "cc dd")


def test_wrap_keeps_explicit_breaks_and_drops_blank_paragraphs() -> None:
    """Newlines force breaks and empty paragraphs disappear."""
    lines = wrap_text("hello\n\n   \nworld", 1000, FixedWidthFont())
    assert lines == ("hello", "world")


def test_wrap_keeps_overlong_word_whole() -> None:
    """A word wider than the limit sits alone on its line."""
    lines = wrap_text("a supercalifragilistic b", 50, FixedWidthFont())
    assert lines == ("a", "supercalifragilistic", "b")


def test_wrap_empty_text() -> None:
    """Whitespace-only text produces no lines."""
    assert wrap_text("  \n ", 100, FixedWidthFont()) == ()


def test_max_line_width_subtracts_padding() -> None:
    """Usable width leaves side padding plus an extra margin."""
    assert compute_max_line_width(1920) == 1780.0


def test_position_formula() -> None:
    """Placement follows the inverted-percentage formula."""
    middle = compute_text_position(1080, 2, 80, 50)
    assert middle.line_height == pytest.approx(96.0)
    assert middle.start_y == pytest.approx(540.0)

    top = compute_text_position(1080, 2, 80, 100)
    assert top.start_y == pytest.approx(128.0)

    bottom = compute_text_position(1080, 2, 80, 0)
    assert bottom.start_y == pytest.approx(952.0)


def test_position_moves_up_as_percent_grows() -> None:
    """A higher text_height_percent never moves the block down."""
    previous = None
    for percent in range(0, 101, 5):
        start_y = compute_text_position(720, 3, 48, percent).start_y
        if previous is not None:
            assert start_y <= previous
        previous = start_y


def test_place_lines_centers_and_stacks() -> None:
    """Lines are centred and baselines advance by line_height."""
    placed = place_lines(
        ("aaaa", "aa"), FixedWidthFont(), 200, TextPosition(start_y=100.0, line_height=12.0)
    )
    assert [line.x for line in placed] == [80.0, 90.0]
    assert [line.baseline_y for line in placed] == [100.0, 112.0]
    assert [line.width for line in placed] == [40.0, 20.0]


def test_layout_caption_matches_wrap_and_position() -> None:
    """layout_caption composes wrap, position and placement."""
    font = FixedWidthFont()
    placed = layout_caption("aaaa bbbb cccc", font, 20, 300, 200, 50)
    lines = wrap_text("aaaa bbbb cccc", compute_max_line_width(300), font)
    position = compute_text_position(200, len(lines), 20, 50)
    assert tuple(line.text for line in placed) == lines
    assert placed[0].baseline_y == pytest.approx(position.start_y)
