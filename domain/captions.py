"""Domain types and parsing for render_captions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import logging
import math
import re
from typing import Any, Tuple

INVALID_COLOR_CODE = "render_captions.input.invalid_color"
INVALID_CONFIG_CODE = "render_captions.input.invalid_config"
INVALID_SRT_CODE = "render_captions.input.invalid_srt"
INVALID_WORD_CODE = "render_captions.input.invalid_word"
EMPTY_TEXT_CODE = "render_captions.input.empty_text"
INPUT_FILE_CODE = "render_captions.input.file_error"
STYLE_IMAGE_CODE = "render_captions.input.style_image"
FONT_LOAD_CODE = "render_captions.input.font_fallback"
INVALID_STYLE_CODE = "render_captions.input.invalid_style"
ENCODER_PROCESS_CODE = "render_captions.ffmpeg.process_failed"
OUTPUT_FILE_CODE = "render_captions.output.file_error"

SRT_TIME_RANGE_PATTERN = re.compile(
    r"^(?P<start>\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(?P<end>\d{2}:\d{2}:\d{2},\d{3})"
)
SRT_TIMECODE_PATTERN = re.compile(r"^(\d{2}):(\d{2}):(\d{2}),(\d{3})$")
WORD_TEXT_KEYS = ("text", "punctuated_word", "word")

DEFAULT_TUBE_RGB = (255, 60, 200)
DEFAULT_HALO_RGB = (255, 0, 150)

LOGGER = logging.getLogger("render_captions")


class RenderValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(RenderValidationError):
    """Invalid run configuration; raised before the frame loop starts."""

    def __init__(self, message: str, code: str = INVALID_CONFIG_CODE) -> None:
        super().__init__(code, message)


class SubtitleDataError(RenderValidationError):
    """A single malformed subtitle or word record."""

    def __init__(self, message: str, code: str = INVALID_SRT_CODE) -> None:
        super().__init__(code, message)


class EncoderProcessError(RenderPipelineError):
    """The encoder subprocess failed or could not be started."""

    def __init__(self, message: str, code: str = ENCODER_PROCESS_CODE) -> None:
        super().__init__(code, message)


class ResourceError(RenderPipelineError):
    """An intermediate or final file could not be read or written."""

    def __init__(self, message: str, code: str = OUTPUT_FILE_CODE) -> None:
        super().__init__(code, message)


class CaptionStyle(str, Enum):
    """Supported caption effects."""

    HOLOGRAPHIC = "holographic"
    RAINBOW = "rainbow"
    LED = "led"
    NEON = "neon"


@dataclass(frozen=True)
class Subtitle:
    """A caption shown over the half-open interval [start, end)."""

    start_seconds: float
    end_seconds: float
    text: str

    def __post_init__(self) -> None:
        if not math.isfinite(self.start_seconds) or not math.isfinite(
            self.end_seconds
        ):
            raise SubtitleDataError("subtitle times must be finite")
        if self.start_seconds < 0:
            raise SubtitleDataError("subtitle start time must be non-negative")
        if self.end_seconds <= self.start_seconds:
            raise SubtitleDataError("subtitle end time must be after start time")
        if not self.text.strip():
            raise SubtitleDataError("subtitle contains no text", EMPTY_TEXT_CODE)

    def contains(self, timestamp: float) -> bool:
        return self.start_seconds <= timestamp < self.end_seconds


@dataclass(frozen=True)
class Word:
    """A single transcript word with its spoken interval."""

    start_seconds: float
    end_seconds: float
    text: str

    def __post_init__(self) -> None:
        if not math.isfinite(self.start_seconds) or not math.isfinite(
            self.end_seconds
        ):
            raise SubtitleDataError("word times must be finite", INVALID_WORD_CODE)
        if self.end_seconds < self.start_seconds:
            raise SubtitleDataError(
                "word end time precedes start time", INVALID_WORD_CODE
            )
        if not self.text.strip():
            raise SubtitleDataError("word contains no text", INVALID_WORD_CODE)


@dataclass(frozen=True)
class RenderConfig:
    """Validated configuration for a caption render run."""

    source_video_file: str
    output_video_file: str
    width: int
    height: int
    fps: float
    duration_seconds: float
    style: CaptionStyle
    font_size: int
    text_height_percent: float
    fonts_dir: str
    style_image_path: str | None = None
    tube_rgb: Tuple[int, int, int] = DEFAULT_TUBE_RGB
    halo_rgb: Tuple[int, int, int] = DEFAULT_HALO_RGB
    particle_count: int = 30000
    seed: int | None = None

    def __post_init__(self) -> None:
        if not self.source_video_file.strip():
            raise ConfigurationError("source_video_file must be non-empty")
        if not self.output_video_file.strip():
            raise ConfigurationError("output_video_file must be non-empty")
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError("width and height must be positive")
        if not math.isfinite(self.fps) or self.fps <= 0:
            raise ConfigurationError("fps must be positive")
        if not math.isfinite(self.duration_seconds) or self.duration_seconds <= 0:
            raise ConfigurationError("duration_seconds must be positive")
        if not isinstance(self.style, CaptionStyle):
            raise ConfigurationError("style is invalid", INVALID_STYLE_CODE)
        if self.font_size <= 0:
            raise ConfigurationError("font_size must be positive")
        if not 0 <= self.text_height_percent <= 100:
            raise ConfigurationError("text_height_percent must be within 0-100")
        if self.style_image_path is not None and not self.style_image_path.strip():
            raise ConfigurationError("style_image_path must be non-empty")
        if self.particle_count <= 0:
            raise ConfigurationError("particle_count must be positive")
        for rgb in (self.tube_rgb, self.halo_rgb):
            if len(rgb) != 3 or any(channel < 0 or channel > 255 for channel in rgb):
                raise ConfigurationError(
                    "colour channel out of range", INVALID_COLOR_CODE
                )


def parse_caption_style(value: str) -> CaptionStyle:
    """Parse a style name into a CaptionStyle."""
    normalized = value.strip().lower()
    try:
        return CaptionStyle(normalized)
    except ValueError as exc:
        raise ConfigurationError(
            f"invalid caption style: {value!r}", INVALID_STYLE_CODE
        ) from exc


def parse_hex_color_to_rgb(color_value: str) -> Tuple[int, int, int]:
    """Parse a #RRGGBB token into an RGB tuple."""
    match_value = re.fullmatch(r"#([0-9a-fA-F]{6})", color_value.strip())
    if not match_value:
        raise ConfigurationError(
            f"invalid color value: {color_value!r}", INVALID_COLOR_CODE
        )
    rgb_hex = match_value.group(1)
    return (int(rgb_hex[0:2], 16), int(rgb_hex[2:4], 16), int(rgb_hex[4:6], 16))


def parse_timecode(timecode_value: str) -> float:
    """Parse an SRT timecode into seconds."""
    match = SRT_TIMECODE_PATTERN.fullmatch(timecode_value.strip())
    if not match:
        raise SubtitleDataError(f"invalid timecode: {timecode_value!r}")
    hours, minutes, seconds, millis = (int(part) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds + millis / 1000.0


def parse_srt_block(block: str) -> Subtitle:
    """Parse a single SRT block; raises SubtitleDataError when malformed."""
    lines = [line.rstrip() for line in block.splitlines()]
    lines = [line for line in lines if line.strip()]
    if lines and lines[0].strip().isdigit():
        lines = lines[1:]
    if not lines:
        raise SubtitleDataError("SRT block missing timecode")

    match = SRT_TIME_RANGE_PATTERN.match(lines[0].strip())
    if not match:
        raise SubtitleDataError(f"invalid time range: {lines[0]!r}")
    text_lines = [line.strip() for line in lines[1:]]
    if not text_lines:
        raise SubtitleDataError("SRT block missing text", EMPTY_TEXT_CODE)

    return Subtitle(
        start_seconds=parse_timecode(match.group("start")),
        end_seconds=parse_timecode(match.group("end")),
        text="\n".join(text_lines),
    )


def parse_srt(text_value: str) -> Tuple[Subtitle, ...]:
    """Parse SRT content into subtitles, skipping malformed blocks."""
    normalized = text_value.replace("\ufeff", "").replace("\r\n", "\n").strip()
    if not normalized:
        raise ConfigurationError("SRT input is empty", EMPTY_TEXT_CODE)

    subtitles: list[Subtitle] = []
    for block_index, block in enumerate(re.split(r"\n\s*\n", normalized)):
        if not block.strip():
            continue
        try:
            subtitles.append(parse_srt_block(block))
        except SubtitleDataError as exc:
            LOGGER.warning(
                "%s: skipped subtitle block %d (%s)", exc.code, block_index + 1, exc
            )

    if not subtitles:
        raise ConfigurationError("SRT contains no valid subtitles", EMPTY_TEXT_CODE)
    return tuple(subtitles)


def parse_word_record(record: Any) -> Word:
    """Parse one transcript word record."""
    if not isinstance(record, dict):
        raise SubtitleDataError("word record must be an object", INVALID_WORD_CODE)
    text_value = next(
        (record[key] for key in WORD_TEXT_KEYS if isinstance(record.get(key), str)),
        None,
    )
    if text_value is None:
        raise SubtitleDataError("word record has no text", INVALID_WORD_CODE)
    try:
        start_seconds = float(record["start"])
        end_seconds = float(record["end"])
    except (KeyError, TypeError, ValueError) as exc:
        raise SubtitleDataError(
            f"word record has invalid timing: {record!r}", INVALID_WORD_CODE
        ) from exc
    return Word(start_seconds=start_seconds, end_seconds=end_seconds, text=text_value)


def parse_words_json(text_value: str) -> Tuple[Word, ...]:
    """Parse a word-level transcript, skipping malformed records."""
    try:
        payload = json.loads(text_value)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"word transcript is not valid JSON: {exc.msg}", INVALID_WORD_CODE
        ) from exc
    if isinstance(payload, dict):
        payload = payload.get("words")
    if not isinstance(payload, list):
        raise ConfigurationError(
            "word transcript must be a list of words", INVALID_WORD_CODE
        )

    words: list[Word] = []
    for record_index, record in enumerate(payload):
        try:
            words.append(parse_word_record(record))
        except SubtitleDataError as exc:
            LOGGER.warning(
                "%s: skipped word record %d (%s)", exc.code, record_index, exc
            )
    words.sort(key=lambda word: word.start_seconds)
    return tuple(words)
