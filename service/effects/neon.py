"""Neon captions: each word lights up as it is spoken and then fades."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import List, Sequence, Tuple

from PIL import ImageChops, ImageFilter, ImageFont

from domain.captions import CaptionStyle, RenderConfig, Word
from service.effects.base import CaptionFrame, LayoutCache
from service.raster import CompositeMode, Surface, glyph_mask, outline_mask
from service.text_layout import PlacedLine, measure_text_width
from service.timeline import SubtitleTimeline

ALPHA_FLOOR = 0.05
ATTACK_SECONDS = 0.15
RELEASE_SECONDS = 0.3
VISIBLE_ALPHA = 0.01
FILAMENT_ALPHA = 0.5
EXTRA_FILAMENT_ALPHA = 0.9
OFF_RGB = (40, 30, 48)
FILAMENT_RGB = (255, 255, 255)
HALO_BLUR_RATIO = 0.3
TUBE_BLUR_RATIO = 0.08
TUBE_WIDTH_RATIO = 0.06
FILAMENT_WIDTH_RATIO = 0.025


def compute_word_alpha(word: Word, timestamp: float) -> float:
    """Brightness envelope for a word: floor, attack, hold, release, floor."""
    attack = ALPHA_FLOOR + (1.0 - ALPHA_FLOOR) * (
        (timestamp - word.start_seconds) / ATTACK_SECONDS
    )
    release = 1.0
    if timestamp > word.end_seconds:
        release = 1.0 - (1.0 - ALPHA_FLOOR) * (
            (timestamp - word.end_seconds) / RELEASE_SECONDS
        )
    return min(1.0, max(ALPHA_FLOOR, min(attack, release)))


def split_line_words(
    lines: Sequence[PlacedLine], font: ImageFont.FreeTypeFont
) -> Tuple[PlacedLine, ...]:
    """Break wrapped lines back into words, advancing by word plus space width."""
    space_width = measure_text_width(font, " ")
    placed: list[PlacedLine] = []
    for line in lines:
        x_value = line.x
        for token in line.text.split(" "):
            token_width = measure_text_width(font, token)
            placed.append(
                PlacedLine(
                    text=token, x=x_value, baseline_y=line.baseline_y, width=token_width
                )
            )
            x_value += token_width + space_width
    return tuple(placed)


@dataclass
class NeonState:
    """Layout cache plus the per-word placements derived from it."""

    layout: LayoutCache = field(default_factory=LayoutCache)
    placements: Tuple[PlacedLine, ...] = ()
    placements_key: Tuple[str, int, int] | None = None

    def reset_text_cache(self) -> None:
        self.layout.reset()
        self.placements = ()
        self.placements_key = None


@dataclass(frozen=True)
class NeonStrokes:
    """Pixel sizes derived from the font size."""

    halo_blur: float
    tube_blur: float
    tube_width: float
    filament_width: float

    @classmethod
    def for_font_size(cls, font_size: float) -> "NeonStrokes":
        return cls(
            halo_blur=max(1.0, font_size * HALO_BLUR_RATIO),
            tube_blur=max(1.0, font_size * TUBE_BLUR_RATIO),
            tube_width=max(2.0, font_size * TUBE_WIDTH_RATIO),
            filament_width=max(1.0, font_size * FILAMENT_WIDTH_RATIO),
        )

    @property
    def margin(self) -> int:
        return int(math.ceil(self.halo_blur * 3 + self.tube_width + 2))


class NeonEffect:
    """Word-synchronised neon tubes composited with additive blending."""

    style = CaptionStyle.NEON

    def __init__(
        self,
        config: RenderConfig,
        font: ImageFont.FreeTypeFont,
        timeline: SubtitleTimeline,
    ) -> None:
        self.config = config
        self.font = font
        self.timeline = timeline
        self.strokes = NeonStrokes.for_font_size(config.font_size)

    def create_state(self) -> NeonState:
        return NeonState()

    def idle(self, timestamp: float, state: NeonState) -> None:
        return None

    def word_placements(self, text_value: str, state: NeonState) -> Tuple[PlacedLine, ...]:
        lines = state.layout.lines_for(text_value, self.font, self.config)
        if state.placements_key != state.layout.key:
            state.placements = split_line_words(lines, self.font)
            state.placements_key = state.layout.key
        return state.placements

    def render(self, surface: Surface, frame: CaptionFrame, state: NeonState) -> None:
        placements = self.word_placements(frame.text, state)
        words = self.timeline.words_for(frame.subtitle)
        for index, placement in enumerate(placements):
            alpha = ALPHA_FLOOR
            if index < len(words):
                alpha = compute_word_alpha(words[index], frame.timestamp)
            self.draw_word(surface, placement, alpha)

    def draw_word(self, surface: Surface, placement: PlacedLine, alpha: float) -> None:
        """Draw the unlit outline, then the lit layers when alpha is visible."""
        left, top, right, bottom = self.font.getbbox(placement.text, anchor="ls")
        margin = self.strokes.margin
        origin_x = int(math.floor(placement.x + left)) - margin
        origin_y = int(math.floor(placement.baseline_y + top)) - margin
        size = (int(right - left) + margin * 2 + 1, int(bottom - top) + margin * 2 + 1)
        origin = (float(origin_x), float(origin_y))
        offset = (origin_x, origin_y)
        word_lines: List[PlacedLine] = [placement]

        tube = outline_mask(size, word_lines, self.font, self.strokes.tube_width, origin)
        surface.fill_mask(tube, OFF_RGB, CompositeMode.SOURCE_OVER, offset=offset)
        if alpha <= VISIBLE_ALPHA:
            return

        halo = glyph_mask(size, word_lines, self.font, origin=origin).filter(
            ImageFilter.GaussianBlur(self.strokes.halo_blur)
        )
        surface.fill_mask(
            halo, self.config.halo_rgb, CompositeMode.LIGHTER, alpha, offset
        )

        tube_glow = ImageChops.lighter(
            tube, tube.filter(ImageFilter.GaussianBlur(self.strokes.tube_blur))
        )
        surface.fill_mask(
            tube_glow, self.config.tube_rgb, CompositeMode.LIGHTER, alpha, offset
        )

        if alpha <= FILAMENT_ALPHA:
            return
        filament_alpha = (alpha - FILAMENT_ALPHA) / (1.0 - FILAMENT_ALPHA)
        filament = outline_mask(
            size, word_lines, self.font, self.strokes.filament_width, origin
        )
        surface.fill_mask(
            filament, FILAMENT_RGB, CompositeMode.LIGHTER, filament_alpha, offset
        )
        if alpha > EXTRA_FILAMENT_ALPHA:
            hairline = outline_mask(size, word_lines, self.font, 1, origin)
            surface.fill_mask(
                hairline, FILAMENT_RGB, CompositeMode.LIGHTER, filament_alpha, offset
            )
