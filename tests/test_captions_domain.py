"""Unit tests for subtitle, word and config parsing plus timeline lookups."""

from __future__ import annotations

import json
import logging

import pytest

from domain.captions import (
    EMPTY_TEXT_CODE,
    INVALID_COLOR_CODE,
    INVALID_STYLE_CODE,
    CaptionStyle,
    ConfigurationError,
    RenderConfig,
    Subtitle,
    SubtitleDataError,
    Word,
    parse_caption_style,
    parse_hex_color_to_rgb,
    parse_srt,
    parse_timecode,
    parse_words_json,
)
from service.timeline import SubtitleTimeline

VALID_SRT = """1
00:00:00,000 --> 00:00:01,500
Hello there
second line

2
00:00:02,000 --> 00:00:03,250
General Kenobi
"""


def make_config(**overrides: object) -> RenderConfig:
    values: dict[str, object] = {
        "source_video_file": "in.mp4",
        "output_video_file": "out.mp4",
        "width": 320,
        "height": 180,
        "fps": 30.0,
        "duration_seconds": 2.0,
        "style": CaptionStyle.RAINBOW,
        "font_size": 40,
        "text_height_percent": 50.0,
        "fonts_dir": "fonts",
    }
    values.update(overrides)
    return RenderConfig(**values)  # type: ignore[arg-type]


def test_parse_timecode() -> None:
    """SRT timecodes convert to seconds."""
    assert parse_timecode("01:02:03,456") == pytest.approx(3723.456)
    with pytest.raises(SubtitleDataError):
        parse_timecode("1:02:03.456")


def test_parse_srt_reads_blocks() -> None:
    """Blocks become subtitles; multi-line text keeps its breaks."""
    subtitles = parse_srt("\ufeff" + VALID_SRT.replace("\n", "\r\n"))
    assert subtitles == (
        Subtitle(start_seconds=0.0, end_seconds=1.5, text="Hello there\nsecond line"),
        Subtitle(start_seconds=2.0, end_seconds=3.25, text="General Kenobi"),
    )


def test_parse_srt_skips_malformed_blocks(caplog: pytest.LogCaptureFixture) -> None:
    """Bad timing and reversed intervals are logged and skipped."""
    content = VALID_SRT + (
        "\n3\nnot a timecode\nbroken\n\n"
        "4\n00:00:05,000 --> 00:00:04,000\nbackwards\n"
    )
    with caplog.at_level(logging.WARNING, logger="render_captions"):
        subtitles = parse_srt(content)
    assert len(subtitles) == 2
    assert sum("skipped subtitle block" in message for message in caplog.messages) == 2


def test_parse_srt_without_valid_blocks_fails() -> None:
    """Input with nothing usable is a configuration error."""
    with pytest.raises(ConfigurationError) as excinfo:
        parse_srt("1\nnonsense\n")
    assert excinfo.value.code == EMPTY_TEXT_CODE
    with pytest.raises(ConfigurationError):
        parse_srt("   ")


def test_subtitle_rejects_bad_intervals() -> None:
    """Subtitles need a positive-length interval and some text."""
    with pytest.raises(SubtitleDataError):
        Subtitle(start_seconds=1.0, end_seconds=1.0, text="x")
    with pytest.raises(SubtitleDataError):
        Subtitle(start_seconds=-1.0, end_seconds=1.0, text="x")
    with pytest.raises(SubtitleDataError):
        Subtitle(start_seconds=0.0, end_seconds=float("nan"), text="x")
    with pytest.raises(SubtitleDataError):
        Subtitle(start_seconds=0.0, end_seconds=1.0, text="  ")


def test_parse_words_json_accepts_transcript_objects() -> None:
    """A {"words": [...]} payload prefers punctuated text and sorts by start."""
    payload = {
        "words": [
            {"word": "world", "punctuated_word": "world.", "start": 0.6, "end": 0.9},
            {"word": "hello", "punctuated_word": "Hello,", "start": 0.1, "end": 0.4},
        ]
    }
    words = parse_words_json(json.dumps(payload))
    assert [word.text for word in words] == ["Hello,", "world."]
    assert words[0] == Word(start_seconds=0.1, end_seconds=0.4, text="Hello,")


def test_parse_words_json_skips_bad_records(caplog: pytest.LogCaptureFixture) -> None:
    """Records without text or timing are skipped with a warning."""
    payload = [
        {"text": "ok", "start": 0, "end": 0.5},
        {"text": "late", "start": 1.0, "end": 0.5},
        {"start": 1, "end": 2},
        {"text": "notime"},
        "junk",
    ]
    with caplog.at_level(logging.WARNING, logger="render_captions"):
        words = parse_words_json(json.dumps(payload))
    assert [word.text for word in words] == ["ok"]
    assert sum("skipped word record" in message for message in caplog.messages) == 4


def test_parse_words_json_rejects_non_list() -> None:
    """Anything other than a list of records is a configuration error."""
    with pytest.raises(ConfigurationError):
        parse_words_json("{not json")
    with pytest.raises(ConfigurationError):
        parse_words_json(json.dumps({"results": []}))


def test_parse_caption_style() -> None:
    """Style names are case-insensitive."""
    assert parse_caption_style(" Neon ") == CaptionStyle.NEON
    with pytest.raises(ConfigurationError) as excinfo:
        parse_caption_style("sparkle")
    assert excinfo.value.code == INVALID_STYLE_CODE


def test_parse_hex_color() -> None:
    """#RRGGBB tokens parse; anything else is rejected."""
    assert parse_hex_color_to_rgb("#FF3C00") == (255, 60, 0)
    with pytest.raises(ConfigurationError) as excinfo:
        parse_hex_color_to_rgb("red")
    assert excinfo.value.code == INVALID_COLOR_CODE


@pytest.mark.parametrize(
    "overrides",
    [
        {"width": 0},
        {"height": -5},
        {"fps": 0.0},
        {"fps": float("inf")},
        {"duration_seconds": 0.0},
        {"font_size": 0},
        {"text_height_percent": 101.0},
        {"text_height_percent": -1.0},
        {"particle_count": 0},
        {"tube_rgb": (256, 0, 0)},
        {"style": "rainbow"},
        {"source_video_file": " "},
    ],
)
def test_render_config_rejects_invalid_values(overrides: dict) -> None:
    """Out-of-range settings fail before any rendering."""
    with pytest.raises(ConfigurationError):
        make_config(**overrides)


def test_render_config_defaults() -> None:
    """Neon colours and particle count have defaults."""
    config = make_config()
    assert config.tube_rgb == (255, 60, 200)
    assert config.halo_rgb == (255, 0, 150)
    assert config.particle_count == 30000


def test_timeline_first_match_wins_on_overlap() -> None:
    """Overlapping subtitles resolve to the one listed first."""
    timeline = SubtitleTimeline(
        [
            Subtitle(start_seconds=0.0, end_seconds=2.0, text="A"),
            Subtitle(start_seconds=1.0, end_seconds=3.0, text="B"),
        ]
    )
    assert timeline.active_at(1.5).text == "A"
    assert timeline.active_at(2.0).text == "B"
    assert timeline.active_at(3.0) is None


def test_timeline_keeps_file_order_for_out_of_order_overlaps() -> None:
    """A later-starting subtitle listed first still wins where both are active."""
    timeline = SubtitleTimeline(
        [
            Subtitle(start_seconds=1.0, end_seconds=3.0, text="B"),
            Subtitle(start_seconds=0.0, end_seconds=2.0, text="A"),
        ]
    )
    assert [subtitle.text for subtitle in timeline.subtitles] == ["B", "A"]
    assert timeline.active_at(0.5).text == "A"
    assert timeline.active_at(1.5).text == "B"


def test_timeline_intervals_are_half_open() -> None:
    """Start is inclusive and end is exclusive."""
    timeline = SubtitleTimeline([Subtitle(start_seconds=1.0, end_seconds=2.0, text="x")])
    assert timeline.active_at(0.999) is None
    assert timeline.active_at(1.0) is not None
    assert timeline.active_at(2.0) is None


def test_timeline_words_for_uses_tolerance() -> None:
    """Words centred near the window or mostly inside it count; grazing ones do not."""
    subtitle = Subtitle(start_seconds=1.0, end_seconds=2.0, text="a b c d")
    words = [
        Word(start_seconds=0.3, end_seconds=1.45, text="long"),
        Word(start_seconds=0.5, end_seconds=0.95, text="graze"),
        Word(start_seconds=0.88, end_seconds=0.98, text="early"),
        Word(start_seconds=1.5, end_seconds=1.7, text="inside"),
        Word(start_seconds=1.95, end_seconds=2.6, text="tail"),
        Word(start_seconds=2.0, end_seconds=2.16, text="late"),
        Word(start_seconds=2.5, end_seconds=2.8, text="after"),
    ]
    timeline = SubtitleTimeline([subtitle], words)
    assert [word.text for word in timeline.words_for(subtitle)] == [
        "long",
        "early",
        "inside",
        "late",
    ]


def test_timeline_words_for_back_to_back_subtitles() -> None:
    """Adjacent subtitles do not borrow each other's edge words."""
    first = Subtitle(start_seconds=0.0, end_seconds=1.0, text="hello world")
    second = Subtitle(start_seconds=1.0, end_seconds=2.0, text="foo bar")
    words = [
        Word(start_seconds=0.0, end_seconds=0.4, text="hello"),
        Word(start_seconds=0.5, end_seconds=0.98, text="world"),
        Word(start_seconds=1.05, end_seconds=1.4, text="foo"),
        Word(start_seconds=1.5, end_seconds=1.9, text="bar"),
    ]
    timeline = SubtitleTimeline([first, second], words)
    assert [word.text for word in timeline.words_for(first)] == ["hello", "world"]
    assert [word.text for word in timeline.words_for(second)] == ["foo", "bar"]
