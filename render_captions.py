#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy>=1.26"
# ]
# ///
"""Burn animated captions (holographic, rainbow, LED, neon) into a video."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
import json
import logging
import os
import shutil
import subprocess
import sys
from typing import Sequence, Tuple

from PIL import Image

from domain.captions import (
    INPUT_FILE_CODE,
    STYLE_IMAGE_CODE,
    CaptionStyle,
    ConfigurationError,
    RenderConfig,
    RenderPipelineError,
    RenderValidationError,
    ResourceError,
    Subtitle,
    Word,
    parse_caption_style,
    parse_hex_color_to_rgb,
    parse_srt,
    parse_words_json,
)
from service.effects import build_effect
from service.encoder import (
    EncoderSettings,
    EncoderStream,
    ensure_ffmpeg_available,
    validate_ffmpeg_capabilities,
)
from service.frame_driver import FrameDriver, RenderSummary
from service.timeline import SubtitleTimeline

LOGGER = logging.getLogger("render_captions")

FFPROBE_NOT_FOUND_CODE = "render_captions.ffprobe.not_found"
FFPROBE_CODE = "render_captions.ffprobe.probe_error"
DEFAULT_FPS = 30.0
DEFAULT_FONT_SIZE = 80
DEFAULT_TEXT_HEIGHT_PERCENT = 50.0


@dataclass(frozen=True)
class VideoProbe:
    """Geometry and timing of the source video stream."""

    width: int
    height: int
    fps: float | None
    duration_seconds: float | None


@dataclass(frozen=True)
class RenderRequest:
    """Parsed CLI request and loaded inputs."""

    config: RenderConfig
    subtitles: Tuple[Subtitle, ...]
    words: Tuple[Word, ...]
    style_image: Image.Image | None


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def read_utf8_text_strict(file_path: str) -> str:
    """Read a UTF-8 file with strict decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise ConfigurationError(
            f"input file not found: {file_path}", INPUT_FILE_CODE
        ) from exc
    except OSError as exc:
        raise ResourceError(
            f"failed to read input file {file_path}: {exc}", INPUT_FILE_CODE
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise ConfigurationError(
            f"input file is not valid UTF-8 at byte offset {exc.start}",
            INPUT_FILE_CODE,
        ) from exc


def parse_frame_rate(rate_value: str | None) -> float | None:
    """Parse an ffprobe rational such as '30000/1001'."""
    if not rate_value:
        return None
    numerator, _, denominator = rate_value.partition("/")
    try:
        rate = float(numerator) / float(denominator or 1)
    except (ValueError, ZeroDivisionError):
        return None
    return rate if rate > 0 else None


def parse_optional_float(value: object) -> float | None:
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def probe_video(video_path: str) -> VideoProbe:
    """Read width, height, frame rate and duration with ffprobe."""
    if not os.path.isfile(video_path):
        raise ConfigurationError(
            f"source video not found: {video_path}", INPUT_FILE_CODE
        )
    ffprobe_path = shutil.which("ffprobe")
    if not ffprobe_path:
        raise RenderPipelineError(FFPROBE_NOT_FOUND_CODE, "ffprobe not on PATH")
    result = subprocess.run(
        [
            ffprobe_path,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height,avg_frame_rate,r_frame_rate,duration:format=duration",
            "-of",
            "json",
            video_path,
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise RenderPipelineError(
            FFPROBE_CODE, f"ffprobe failed for source video: {result.stderr.strip()}"
        )
    try:
        payload = json.loads(result.stdout)
        stream = payload["streams"][0]
        width = int(stream["width"])
        height = int(stream["height"])
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise RenderPipelineError(
            FFPROBE_CODE, f"source video has no readable video stream: {video_path}"
        ) from exc

    duration_seconds = parse_optional_float(stream.get("duration"))
    if duration_seconds is None:
        duration_seconds = parse_optional_float(
            payload.get("format", {}).get("duration")
        )
    fps = parse_frame_rate(stream.get("avg_frame_rate")) or parse_frame_rate(
        stream.get("r_frame_rate")
    )
    return VideoProbe(
        width=width, height=height, fps=fps, duration_seconds=duration_seconds
    )


def load_style_image(image_path: str) -> Image.Image:
    """Load the holographic texture as RGBA."""
    try:
        with Image.open(image_path) as image:
            image.load()
            return image.convert("RGBA")
    except FileNotFoundError as exc:
        raise ConfigurationError(
            f"style image not found: {image_path}", STYLE_IMAGE_CODE
        ) from exc
    except OSError as exc:
        raise ConfigurationError(
            f"failed to read style image: {image_path}", STYLE_IMAGE_CODE
        ) from exc


def ensure_output_directory(output_path: str) -> None:
    directory = os.path.dirname(os.path.abspath(output_path))
    if not os.path.isdir(directory):
        raise ResourceError(f"output directory does not exist: {directory}")
    if not os.access(directory, os.W_OK):
        raise ResourceError(f"output directory is not writable: {directory}")


def parse_args(argv: Sequence[str]) -> RenderRequest:
    """Parse CLI arguments into a RenderRequest."""
    parser = argparse.ArgumentParser(prog="render_captions.py", add_help=True)
    parser.add_argument("--source-video-file", required=True)
    parser.add_argument("--srt-file", required=True)
    parser.add_argument("--words-file", default=None)
    parser.add_argument("--output-video-file", default="captioned.mp4")
    parser.add_argument(
        "--style",
        default=CaptionStyle.HOLOGRAPHIC.value,
        help="holographic (default), rainbow, led or neon",
    )
    parser.add_argument("--style-image", default=None)
    parser.add_argument("--fonts-dir", default="fonts")
    parser.add_argument("--font-size", type=int, default=DEFAULT_FONT_SIZE)
    parser.add_argument(
        "--text-height-percent",
        type=float,
        default=DEFAULT_TEXT_HEIGHT_PERCENT,
        help="0 places captions near the bottom, 100 near the top",
    )
    parser.add_argument("--tube-color", default=None, help="#RRGGBB (neon)")
    parser.add_argument("--halo-color", default=None, help="#RRGGBB (neon)")
    parser.add_argument("--particle-count", type=int, default=30000)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--width", type=int, default=None)
    parser.add_argument("--height", type=int, default=None)
    parser.add_argument("--fps", type=float, default=None)
    parser.add_argument("--duration-seconds", type=float, default=None)

    parsed = parser.parse_args(argv)
    style = parse_caption_style(parsed.style)

    if style == CaptionStyle.HOLOGRAPHIC and not parsed.style_image:
        raise ConfigurationError(
            "holographic style requires --style-image", STYLE_IMAGE_CODE
        )
    if style == CaptionStyle.NEON and not parsed.words_file:
        raise ConfigurationError("neon style requires --words-file")
    if style != CaptionStyle.NEON and (parsed.tube_color or parsed.halo_color):
        raise ConfigurationError("tube-color/halo-color require style neon")

    subtitles = parse_srt(read_utf8_text_strict(parsed.srt_file))
    words: Tuple[Word, ...] = ()
    if parsed.words_file:
        words = parse_words_json(read_utf8_text_strict(parsed.words_file))
    style_image = load_style_image(parsed.style_image) if parsed.style_image else None

    width, height = parsed.width, parsed.height
    fps, duration_seconds = parsed.fps, parsed.duration_seconds
    if None in (width, height, fps, duration_seconds):
        probe = probe_video(parsed.source_video_file)
        width = width if width is not None else probe.width
        height = height if height is not None else probe.height
        if fps is None:
            fps = probe.fps
            if fps is None:
                LOGGER.warning(
                    "%s: source frame rate unknown, using %s",
                    FFPROBE_CODE,
                    DEFAULT_FPS,
                )
                fps = DEFAULT_FPS
        if duration_seconds is None:
            duration_seconds = probe.duration_seconds
            if duration_seconds is None:
                raise ConfigurationError(
                    "source video duration unavailable; pass --duration-seconds"
                )

    extra_colors = {}
    if parsed.tube_color:
        extra_colors["tube_rgb"] = parse_hex_color_to_rgb(parsed.tube_color)
    if parsed.halo_color:
        extra_colors["halo_rgb"] = parse_hex_color_to_rgb(parsed.halo_color)

    config = RenderConfig(
        source_video_file=parsed.source_video_file,
        output_video_file=parsed.output_video_file,
        width=width,
        height=height,
        fps=fps,
        duration_seconds=duration_seconds,
        style=style,
        font_size=parsed.font_size,
        text_height_percent=parsed.text_height_percent,
        fonts_dir=parsed.fonts_dir,
        style_image_path=parsed.style_image,
        particle_count=parsed.particle_count,
        seed=parsed.seed,
        **extra_colors,
    )
    return RenderRequest(
        config=config, subtitles=subtitles, words=words, style_image=style_image
    )


async def render_captions(
    request: RenderRequest, ffmpeg_path: str = "ffmpeg"
) -> RenderSummary:
    """Render every frame of the request into the encoder."""
    timeline = SubtitleTimeline(request.subtitles, request.words)
    effect = build_effect(request.config, timeline, request.style_image)
    driver = FrameDriver(request.config, timeline, effect)
    async with EncoderStream(
        EncoderSettings.from_config(request.config), ffmpeg_path
    ) as encoder:
        return await driver.run(encoder)


def main() -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:])
        ensure_output_directory(request.config.output_video_file)
        ffmpeg_path = ensure_ffmpeg_available()
        validate_ffmpeg_capabilities(ffmpeg_path)
        summary = asyncio.run(render_captions(request, ffmpeg_path))
        LOGGER.info(
            "render_captions.done: %d frames (%d captioned) saved to %s",
            summary.total_frames,
            summary.captioned_frames,
            request.config.output_video_file,
        )
        return 0
    except RenderValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_captions.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
