"""Integration tests for the render_captions CLI."""

from __future__ import annotations

import json
import shutil
import struct
import subprocess
import sys
import zlib
from pathlib import Path
from typing import List

import pytest

WIDTH = 160
HEIGHT = 120
FPS = 10
BYTES_PER_PIXEL = 4

REPO_ROOT = Path(__file__).resolve().parents[1]
SCRIPT_PATH = REPO_ROOT / "render_captions.py"

SRT_CONTENT = """1
00:00:00,000 --> 00:00:01,000
hi there
"""
WORDS = [
    {"word": "hi", "punctuated_word": "hi", "start": 0.1, "end": 0.4},
    {"word": "there", "punctuated_word": "there", "start": 0.4, "end": 0.9},
]

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg and ffprobe are required",
)


def run_render_captions(args: List[str]) -> subprocess.CompletedProcess[str]:
    """Run render_captions.py with the provided arguments."""
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        cwd=REPO_ROOT,
        text=True,
        capture_output=True,
        check=False,
    )


def write_png(
    target_path: Path, width: int, height: int, color: tuple[int, int, int, int]
) -> None:
    """Write a solid-color RGBA PNG using the standard library."""

    def png_chunk(chunk_type: bytes, data: bytes) -> bytes:
        length = struct.pack(">I", len(data))
        crc = struct.pack(">I", zlib.crc32(chunk_type + data) & 0xFFFFFFFF)
        return length + chunk_type + data + crc

    row = bytes([0]) + bytes(color) * width
    compressed = zlib.compress(row * height)
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)
    target_path.write_bytes(
        b"\x89PNG\r\n\x1a\n"
        + png_chunk(b"IHDR", ihdr)
        + png_chunk(b"IDAT", compressed)
        + png_chunk(b"IEND", b"")
    )


def write_source_video(
    target_path: Path, duration_seconds: float = 2.0, audio_codec: str = "aac"
) -> None:
    """Write a solid blue clip with a sine-tone audio track."""
    result = subprocess.run(
        [
            "ffmpeg",
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "lavfi",
            "-i",
            f"color=c=blue:s={WIDTH}x{HEIGHT}:r={FPS}:d={duration_seconds}",
            "-f",
            "lavfi",
            "-i",
            f"sine=frequency=440:duration={duration_seconds}",
            "-c:v",
            "libx264",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            audio_codec,
            "-shortest",
            str(target_path),
        ],
        capture_output=True,
        check=False,
    )
    assert result.returncode == 0, result.stderr.decode("utf-8", errors="replace")


def extract_raw_frame(video_path: Path, time_seconds: float) -> bytes:
    """Extract a raw RGBA frame from a video at the requested time."""
    result = subprocess.run(
        [
            "ffmpeg",
            "-y",
            "-ss",
            f"{time_seconds:.3f}",
            "-i",
            str(video_path),
            "-frames:v",
            "1",
            "-f",
            "rawvideo",
            "-pix_fmt",
            "rgba",
            "-",
        ],
        capture_output=True,
        check=False,
    )
    assert result.returncode == 0, result.stderr.decode("utf-8", errors="replace")
    return result.stdout


def max_channel_difference(first: bytes, second: bytes) -> int:
    """Largest per-channel RGB difference between two equal-size frames."""
    assert len(first) == len(second) == WIDTH * HEIGHT * BYTES_PER_PIXEL
    largest = 0
    for offset in range(0, len(first), BYTES_PER_PIXEL):
        for channel in range(3):
            largest = max(
                largest, abs(first[offset + channel] - second[offset + channel])
            )
    return largest


def stream_codecs(video_path: Path) -> List[tuple[str, str]]:
    """Return (codec_type, codec_name) for every stream in a file."""
    result = subprocess.run(
        [
            "ffprobe",
            "-v",
            "error",
            "-show_entries",
            "stream=codec_type,codec_name",
            "-of",
            "json",
            str(video_path),
        ],
        capture_output=True,
        text=True,
        check=False,
    )
    assert result.returncode == 0, result.stderr
    return [
        (stream["codec_type"], stream["codec_name"])
        for stream in json.loads(result.stdout)["streams"]
    ]


def stream_types(video_path: Path) -> List[str]:
    return [codec_type for codec_type, _ in stream_codecs(video_path)]


def build_inputs(tmp_path: Path) -> dict[str, Path]:
    """Write the SRT, words and style image shared by the tests."""
    srt_path = tmp_path / "captions.srt"
    srt_path.write_text(SRT_CONTENT, encoding="utf-8")
    words_path = tmp_path / "words.json"
    words_path.write_text(json.dumps({"words": WORDS}), encoding="utf-8")
    style_image_path = tmp_path / "style.png"
    write_png(style_image_path, 32, 32, (255, 255, 0, 255))
    return {"srt": srt_path, "words": words_path, "style_image": style_image_path}


STYLE_ARGS = {
    "holographic": lambda inputs: ["--style-image", str(inputs["style_image"])],
    "rainbow": lambda inputs: ["--particle-count", "500", "--seed", "1"],
    "led": lambda inputs: ["--seed", "1"],
    "neon": lambda inputs: [
        "--words-file",
        str(inputs["words"]),
        "--tube-color",
        "#FF3CC8",
    ],
}


@requires_ffmpeg
@pytest.mark.parametrize("style", sorted(STYLE_ARGS))
def test_render_each_style(tmp_path: Path, style: str) -> None:
    """Captions appear while the subtitle is active and vanish afterwards."""
    inputs = build_inputs(tmp_path)
    source_path = tmp_path / "source.mp4"
    write_source_video(source_path)
    output_path = tmp_path / f"{style}.mp4"

    result = run_render_captions(
        [
            "--source-video-file",
            str(source_path),
            "--srt-file",
            str(inputs["srt"]),
            "--output-video-file",
            str(output_path),
            "--style",
            style,
            "--fonts-dir",
            str(tmp_path / "no-fonts"),
            "--font-size",
            "24",
            *STYLE_ARGS[style](inputs),
        ]
    )

    assert result.returncode == 0, result.stderr
    assert output_path.exists()
    assert "render_captions.input.font_fallback" in result.stderr
    assert "render_captions.done: 20 frames (10 captioned)" in result.stderr

    captioned = max_channel_difference(
        extract_raw_frame(source_path, 0.5), extract_raw_frame(output_path, 0.5)
    )
    uncaptioned = max_channel_difference(
        extract_raw_frame(source_path, 1.5), extract_raw_frame(output_path, 1.5)
    )
    assert captioned > 100
    assert uncaptioned < 40
    assert stream_types(output_path) == ["video", "audio"]


@requires_ffmpeg
def test_pcm_audio_source_is_reencoded_for_mp4(tmp_path: Path) -> None:
    """A .mov with PCM audio still renders to mp4, with the audio as AAC."""
    inputs = build_inputs(tmp_path)
    source_path = tmp_path / "source.mov"
    write_source_video(source_path, audio_codec="pcm_s16le")
    output_path = tmp_path / "led.mp4"

    result = run_render_captions(
        [
            "--source-video-file",
            str(source_path),
            "--srt-file",
            str(inputs["srt"]),
            "--output-video-file",
            str(output_path),
            "--style",
            "led",
            "--fonts-dir",
            str(tmp_path / "no-fonts"),
            "--font-size",
            "24",
            "--seed",
            "1",
        ]
    )

    assert result.returncode == 0, result.stderr
    assert ("audio", "pcm_s16le") in stream_codecs(source_path)
    assert ("audio", "aac") in stream_codecs(output_path)


def test_holographic_requires_style_image(tmp_path: Path) -> None:
    """The holographic style fails fast without --style-image."""
    inputs = build_inputs(tmp_path)
    result = run_render_captions(
        [
            "--source-video-file",
            str(tmp_path / "missing.mp4"),
            "--srt-file",
            str(inputs["srt"]),
            "--style",
            "holographic",
        ]
    )
    assert result.returncode == 1
    assert "render_captions.input.style_image" in result.stderr


def test_neon_requires_words_file(tmp_path: Path) -> None:
    """The neon style needs word-level timing."""
    inputs = build_inputs(tmp_path)
    result = run_render_captions(
        [
            "--source-video-file",
            str(tmp_path / "missing.mp4"),
            "--srt-file",
            str(inputs["srt"]),
            "--style",
            "neon",
        ]
    )
    assert result.returncode == 1
    assert "render_captions.input.invalid_config" in result.stderr


def test_unknown_style_is_rejected(tmp_path: Path) -> None:
    """An unknown style name reports the invalid-style code."""
    inputs = build_inputs(tmp_path)
    result = run_render_captions(
        [
            "--source-video-file",
            str(tmp_path / "missing.mp4"),
            "--srt-file",
            str(inputs["srt"]),
            "--style",
            "sparkle",
        ]
    )
    assert result.returncode == 1
    assert "render_captions.input.invalid_style" in result.stderr


def test_neon_colors_require_neon_style(tmp_path: Path) -> None:
    """Tube and halo colours are rejected for other styles."""
    inputs = build_inputs(tmp_path)
    result = run_render_captions(
        [
            "--source-video-file",
            str(tmp_path / "missing.mp4"),
            "--srt-file",
            str(inputs["srt"]),
            "--style",
            "led",
            "--halo-color",
            "#00FF00",
        ]
    )
    assert result.returncode == 1
    assert "render_captions.input.invalid_config" in result.stderr


def test_missing_srt_file(tmp_path: Path) -> None:
    """A missing subtitle file is reported before any probing."""
    result = run_render_captions(
        [
            "--source-video-file",
            str(tmp_path / "missing.mp4"),
            "--srt-file",
            str(tmp_path / "missing.srt"),
            "--style",
            "led",
        ]
    )
    assert result.returncode == 1
    assert "render_captions.input.file_error" in result.stderr


def test_missing_output_directory(tmp_path: Path) -> None:
    """Output into a directory that does not exist fails before encoding."""
    inputs = build_inputs(tmp_path)
    result = run_render_captions(
        [
            "--source-video-file",
            str(tmp_path / "missing.mp4"),
            "--srt-file",
            str(inputs["srt"]),
            "--output-video-file",
            str(tmp_path / "nowhere" / "out.mp4"),
            "--style",
            "led",
            "--width",
            str(WIDTH),
            "--height",
            str(HEIGHT),
            "--fps",
            str(FPS),
            "--duration-seconds",
            "2",
        ]
    )
    assert result.returncode == 1
    assert "render_captions.output.file_error" in result.stderr
