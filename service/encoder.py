"""ffmpeg subprocess that overlays raw RGBA caption frames onto a source video."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import os
import shutil
import subprocess
from types import TracebackType
from typing import Any, Awaitable, Callable, Tuple, Type

from domain.captions import OUTPUT_FILE_CODE, EncoderProcessError, RenderConfig

FFMPEG_NOT_FOUND_CODE = "render_captions.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_captions.ffmpeg.exec_error"
FFMPEG_UNSUPPORTED_CODE = "render_captions.ffmpeg.unsupported"
FFMPEG_BROKEN_PIPE_CODE = "render_captions.ffmpeg.broken_pipe"
FRAME_SIZE_CODE = "render_captions.ffmpeg.frame_size"
INPUT_PIXEL_FORMAT = "rgba"
BYTES_PER_PIXEL = 4
OUTPUT_CODEC = "libx264"
OUTPUT_PIXEL_FORMAT = "yuv420p"
COLOR_STANDARD = "bt709"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
OVERLAY_FILTER = "[0:v][1:v]overlay=0:0:format=auto[captioned]"
STDERR_TAIL_BYTES = 4000
STDERR_CHUNK_BYTES = 4096

LOGGER = logging.getLogger("render_captions")

ProcessFactory = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class EncoderSettings:
    """Fixed stream geometry for one encoder run."""

    source_video_file: str
    output_video_file: str
    width: int
    height: int
    fps: float

    @classmethod
    def from_config(cls, config: RenderConfig) -> "EncoderSettings":
        return cls(
            source_video_file=config.source_video_file,
            output_video_file=config.output_video_file,
            width=config.width,
            height=config.height,
            fps=config.fps,
        )

    @property
    def frame_size(self) -> int:
        return self.width * self.height * BYTES_PER_PIXEL


def format_frame_rate(fps: float) -> str:
    """Render fps for the command line without float noise."""
    if float(fps).is_integer():
        return str(int(fps))
    return f"{fps:.6f}".rstrip("0").rstrip(".")


def build_ffmpeg_command(
    settings: EncoderSettings, ffmpeg_path: str = "ffmpeg"
) -> Tuple[str, ...]:
    """Source video as input 0, raw frames on stdin as input 1."""
    return (
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        settings.source_video_file,
        "-f",
        "rawvideo",
        "-pix_fmt",
        INPUT_PIXEL_FORMAT,
        "-s",
        f"{settings.width}x{settings.height}",
        "-r",
        format_frame_rate(settings.fps),
        "-i",
        "-",
        "-filter_complex",
        OVERLAY_FILTER,
        "-map",
        "[captioned]",
        "-map",
        "0:a?",
        "-c:v",
        OUTPUT_CODEC,
        "-color_primaries",
        COLOR_STANDARD,
        "-color_trc",
        COLOR_STANDARD,
        "-colorspace",
        COLOR_STANDARD,
        "-pix_fmt",
        OUTPUT_PIXEL_FORMAT,
        "-c:a",
        AUDIO_CODEC,
        "-b:a",
        AUDIO_BITRATE,
        settings.output_video_file,
    )


def ensure_ffmpeg_available() -> str:
    """Return the ffmpeg path, failing when it is missing or broken."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise EncoderProcessError("ffmpeg not on PATH", FFMPEG_NOT_FOUND_CODE)
    try:
        subprocess.run(
            [ffmpeg_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise EncoderProcessError(
            "ffmpeg exists but could not be executed", FFMPEG_EXEC_CODE
        ) from exc
    return ffmpeg_path


def validate_ffmpeg_capabilities(ffmpeg_path: str) -> None:
    """Check that ffmpeg offers the output encoder and pixel format."""
    encoders_result = subprocess.run(
        [ffmpeg_path, "-hide_banner", "-encoders"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if encoders_result.returncode != 0 or OUTPUT_CODEC not in encoders_result.stdout:
        raise EncoderProcessError(
            f"ffmpeg does not support {OUTPUT_CODEC} encoder", FFMPEG_UNSUPPORTED_CODE
        )
    pixfmts_result = subprocess.run(
        [ffmpeg_path, "-hide_banner", "-pix_fmts"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if (
        pixfmts_result.returncode != 0
        or OUTPUT_PIXEL_FORMAT not in pixfmts_result.stdout
    ):
        raise EncoderProcessError(
            f"ffmpeg does not support {OUTPUT_PIXEL_FORMAT} pixel format",
            FFMPEG_UNSUPPORTED_CODE,
        )


def remove_partial_output(output_path: str) -> None:
    """Best-effort removal of an incomplete output file."""
    try:
        os.remove(output_path)
    except FileNotFoundError:
        return
    except OSError as exc:
        LOGGER.warning(
            "%s: could not remove partial output %s (%s)",
            OUTPUT_FILE_CODE,
            output_path,
            str(exc).strip(),
        )
        return
    LOGGER.info("render_captions.output.removed_partial: %s", output_path)


class EncoderStream:
    """Owns one ffmpeg process and feeds it frames in order.

    write_frame() suspends on drain() whenever the pipe to ffmpeg is above its
    high-water mark, so a slow encoder throttles frame production instead of
    letting buffered frames pile up in memory. There is no timeout.
    """

    def __init__(
        self,
        settings: EncoderSettings,
        ffmpeg_path: str = "ffmpeg",
        process_factory: ProcessFactory | None = None,
    ) -> None:
        self.settings = settings
        self.ffmpeg_path = ffmpeg_path
        self.frames_written = 0
        self._process_factory = process_factory or asyncio.create_subprocess_exec
        self._process: Any = None
        self._stderr_task: asyncio.Task[bytes] | None = None

    async def __aenter__(self) -> "EncoderStream":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.abort()
            remove_partial_output(self.settings.output_video_file)

    async def start(self) -> None:
        command = build_ffmpeg_command(self.settings, self.ffmpeg_path)
        LOGGER.info("render_captions.ffmpeg.start: %s", " ".join(command))
        try:
            self._process = await self._process_factory(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise EncoderProcessError("ffmpeg not found", FFMPEG_NOT_FOUND_CODE) from exc
        except OSError as exc:
            raise EncoderProcessError(
                f"ffmpeg could not be started: {exc}", FFMPEG_EXEC_CODE
            ) from exc
        if self._process.stdin is None:
            raise EncoderProcessError("ffmpeg stdin unavailable")
        self._stderr_task = asyncio.ensure_future(self._collect_stderr())

    async def write_frame(self, frame_bytes: bytes) -> None:
        """Queue one frame and wait until ffmpeg's pipe has room again."""
        if self._process is None:
            raise EncoderProcessError("encoder has not been started")
        if len(frame_bytes) != self.settings.frame_size:
            raise EncoderProcessError(
                f"frame has {len(frame_bytes)} bytes, "
                f"expected {self.settings.frame_size}",
                FRAME_SIZE_CODE,
            )
        stdin = self._process.stdin
        try:
            stdin.write(frame_bytes)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            stderr_text = await self._stderr_text()
            raise EncoderProcessError(
                f"ffmpeg stopped accepting frames after {self.frames_written}. "
                f"{stderr_text}",
                FFMPEG_BROKEN_PIPE_CODE,
            ) from exc
        self.frames_written += 1

    async def finish(self) -> None:
        """Close the frame stream and wait for ffmpeg to exit cleanly."""
        if self._process is None:
            raise EncoderProcessError("encoder has not been started")
        stdin = self._process.stdin
        try:
            stdin.close()
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            LOGGER.warning("%s: ffmpeg closed its input early", FFMPEG_BROKEN_PIPE_CODE)
        return_code = await self._process.wait()
        stderr_text = await self._stderr_text()
        if return_code != 0:
            raise EncoderProcessError(
                f"ffmpeg failed with exit code {return_code}. {stderr_text}"
            )
        LOGGER.info(
            "render_captions.ffmpeg.done: %d frames encoded to %s",
            self.frames_written,
            self.settings.output_video_file,
        )

    async def abort(self) -> None:
        """Kill ffmpeg if it is still running."""
        if self._process is None:
            return
        if self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            await self._process.wait()
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()

    async def _collect_stderr(self) -> bytes:
        stderr = self._process.stderr
        if stderr is None:
            return b""
        tail = b""
        while True:
            chunk = await stderr.read(STDERR_CHUNK_BYTES)
            if not chunk:
                return tail
            tail = (tail + chunk)[-STDERR_TAIL_BYTES:]

    async def _stderr_text(self) -> str:
        if self._stderr_task is None:
            return ""
        stderr_bytes = await self._stderr_task
        return stderr_bytes.decode("utf-8", errors="replace").strip()
