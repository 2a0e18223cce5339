"""Frame loop: pick the active caption, draw it, stream the frame."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Callable, Protocol

from domain.captions import ConfigurationError, RenderConfig
from service.effects import CaptionEffect, CaptionFrame, EffectStates
from service.raster import Surface
from service.timeline import SubtitleTimeline

PROGRESS_INTERVAL_FRAMES = 30

LOGGER = logging.getLogger("render_captions")


class FrameSink(Protocol):
    """Consumer of raw RGBA frames in timestamp order."""

    async def write_frame(self, frame_bytes: bytes) -> None: ...

    async def finish(self) -> None: ...


@dataclass(frozen=True)
class RenderSummary:
    """Counts reported after a completed run."""

    total_frames: int
    captioned_frames: int
    elapsed_seconds: float


def compute_total_frames(duration_seconds: float, fps: float) -> int:
    """Compute total frames for a video duration."""
    total_frames = int(round(duration_seconds * fps))
    if total_frames <= 0:
        raise ConfigurationError("duration and fps produce zero frames")
    return total_frames


def format_elapsed_time(seconds: float) -> str:
    """Format a duration as '1h 2m 3s', '2m 3s' or '3s'."""
    whole_seconds = int(max(0.0, seconds))
    minutes, secs = divmod(whole_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class FrameDriver:
    """Renders frames 0..total_frames-1 strictly in order.

    Effect state is mutated once per frame in timestamp order, so frames are
    produced one at a time and handed to the sink before the next is drawn.
    """

    def __init__(
        self,
        config: RenderConfig,
        timeline: SubtitleTimeline,
        effect: CaptionEffect,
        states: EffectStates | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.timeline = timeline
        self.effect = effect
        self.states = states if states is not None else EffectStates()
        self.total_frames = compute_total_frames(config.duration_seconds, config.fps)
        self.surface = Surface(config.width, config.height)
        self.captioned_frames = 0
        self._clock = clock

    def render_frame(self, frame_index: int) -> bytes:
        """Draw one frame and return its raw RGBA buffer."""
        timestamp = frame_index / self.config.fps
        self.surface.clear()
        state = self.states.state_for(self.effect)
        subtitle = self.timeline.active_at(timestamp)
        if subtitle is None:
            self.states.reset_text_caches()
            self.effect.idle(timestamp, state)
        else:
            self.captioned_frames += 1
            self.effect.render(
                self.surface,
                CaptionFrame(subtitle=subtitle, timestamp=timestamp),
                state,
            )
        return self.surface.to_bytes()

    async def run(self, sink: FrameSink) -> RenderSummary:
        """Stream every frame to sink, then signal end of stream."""
        LOGGER.info(
            "render_captions.render.start: %d frames at %sfps, style %s",
            self.total_frames,
            self.config.fps,
            self.effect.style.value,
        )
        started = self._clock()
        for frame_index in range(self.total_frames):
            await sink.write_frame(self.render_frame(frame_index))
            if frame_index and frame_index % PROGRESS_INTERVAL_FRAMES == 0:
                self._log_progress(frame_index, self._clock() - started)

        await sink.finish()
        elapsed = self._clock() - started
        LOGGER.info(
            "render_captions.render.done: %d frames in %s",
            self.total_frames,
            format_elapsed_time(elapsed),
        )
        return RenderSummary(
            total_frames=self.total_frames,
            captioned_frames=self.captioned_frames,
            elapsed_seconds=elapsed,
        )

    def _log_progress(self, frame_index: int, elapsed: float) -> None:
        frames_per_second = frame_index / elapsed if elapsed > 0 else 0.0
        remaining = self.total_frames - frame_index
        eta = remaining / frames_per_second if frames_per_second > 0 else 0.0
        LOGGER.info(
            "render_captions.progress: %d/%d frames (%.1f%%) - %.1f fps - ETA: %s",
            frame_index,
            self.total_frames,
            frame_index / self.total_frames * 100.0,
            frames_per_second,
            format_elapsed_time(eta),
        )
