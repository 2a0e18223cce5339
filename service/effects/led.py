"""LED captions: glyphs resampled into a grid of animated dots."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
import random
from typing import List, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from domain.captions import CaptionStyle, RenderConfig
from service.effects.base import CaptionFrame
from service.raster import CompositeMode, Surface, glyph_mask
from service.text_layout import layout_caption

LED_PALETTE = (
    (255, 0, 0),
    (255, 136, 0),
    (255, 255, 0),
    (136, 255, 0),
    (0, 255, 0),
    (0, 255, 255),
    (0, 136, 255),
    (136, 0, 255),
)
TILE_SIZE = 8
WHITE_THRESHOLD = 200
PHASE_STEP = 0.05
COLOR_SPEED_RANGE = (0.05, 0.15)
CORE_RADIUS_RATIO = 0.3
HALO_RADIUS_RATIO = 0.5
HALO_ALPHA_RATIO = 0.3
PANEL_PADDING_RATIO = 0.5
PANEL_RADIUS_RATIO = 0.3
PANEL_RGB = (0, 0, 0)
STAMP_RGB = (255, 255, 255)


@dataclass
class Dot:
    """One LED; color_index and brightness advance every frame."""

    x: float
    y: float
    color_index: float
    color_speed: float
    brightness: float

    def advance(self) -> Tuple[Tuple[int, int, int], float]:
        """Step the animation and return (colour, alpha) for this frame."""
        self.color_index += self.color_speed
        if self.color_index >= len(LED_PALETTE):
            self.color_index = 0.0
        self.brightness += PHASE_STEP
        alpha = (math.sin(self.brightness) + 1.0) / 2.0 * 0.5 + 0.5
        return LED_PALETTE[int(self.color_index)], alpha


@dataclass
class LedState:
    """Detected dots for the caption text currently on screen."""

    scratch: Surface
    rng: random.Random
    text: str | None = None
    dots: List[Dot] = field(default_factory=list)

    def reset_text_cache(self) -> None:
        self.text = None
        self.dots = []


def find_tile_centroids(
    pixels: np.ndarray, tile_size: int = TILE_SIZE
) -> List[Tuple[float, float]]:
    """Centroid of near-white pixels for every tile that has any.

    Tiles are scanned row by row, left to right.
    """
    near_white = np.all(pixels > WHITE_THRESHOLD, axis=-1)
    height, width = near_white.shape
    tile_rows = -(-height // tile_size)
    tile_cols = -(-width // tile_size)
    grid = np.zeros((tile_rows * tile_size, tile_cols * tile_size), dtype=np.int64)
    grid[:height, :width] = near_white
    tiles = grid.reshape(tile_rows, tile_size, tile_cols, tile_size)

    x_coords = np.arange(tile_cols * tile_size).reshape(tile_cols, tile_size)
    y_coords = np.arange(tile_rows * tile_size).reshape(tile_rows, tile_size)
    counts = tiles.sum(axis=(1, 3))
    sum_x = (tiles * x_coords[np.newaxis, np.newaxis, :, :]).sum(axis=(1, 3))
    sum_y = (tiles * y_coords[:, :, np.newaxis, np.newaxis]).sum(axis=(1, 3))

    centroids: List[Tuple[float, float]] = []
    for row, col in zip(*np.nonzero(counts)):
        count = counts[row, col]
        centroids.append((sum_x[row, col] / count, sum_y[row, col] / count))
    return centroids


def detect_dots(
    text_value: str,
    config: RenderConfig,
    font: ImageFont.FreeTypeFont,
    scratch: Surface,
    rng: random.Random,
    tile_size: int = TILE_SIZE,
) -> List[Dot]:
    """Stamp the caption on the scratch surface and sample it into dots."""
    scratch.clear()
    lines = layout_caption(
        text_value,
        font,
        config.font_size,
        config.width,
        config.height,
        config.text_height_percent,
    )
    if lines:
        scratch.fill_mask(glyph_mask(scratch.size, lines, font), STAMP_RGB)

    dots: List[Dot] = []
    for x_value, y_value in find_tile_centroids(scratch.read_pixels(), tile_size):
        dots.append(
            Dot(
                x=float(x_value),
                y=float(y_value),
                color_index=rng.random() * len(LED_PALETTE),
                color_speed=rng.uniform(*COLOR_SPEED_RANGE),
                brightness=rng.random(),
            )
        )
    return dots


def draw_led_panel(
    surface: Surface,
    dots: Sequence[Dot],
    font_size: float,
    tile_size: int = TILE_SIZE,
) -> None:
    """Draw the rounded backing panel and advance and draw every dot."""
    min_x = min(dot.x for dot in dots)
    max_x = max(dot.x for dot in dots)
    min_y = min(dot.y for dot in dots)
    max_y = max(dot.y for dot in dots)
    padding = font_size * PANEL_PADDING_RATIO
    box = (min_x - padding, min_y - padding, max_x + padding, max_y + padding)
    left, top = int(math.floor(box[0])), int(math.floor(box[1]))
    right, bottom = int(math.ceil(box[2])), int(math.ceil(box[3]))

    # An opaque RGB panel lets ImageDraw blend translucent dots onto it.
    panel = Image.new("RGB", (right - left + 1, bottom - top + 1), PANEL_RGB)
    draw = ImageDraw.Draw(panel, "RGBA")
    core_radius = tile_size * CORE_RADIUS_RATIO
    halo_radius = tile_size * HALO_RADIUS_RATIO
    for dot in dots:
        color, alpha = dot.advance()
        center_x, center_y = dot.x - left, dot.y - top
        for radius, opacity in (
            (core_radius, alpha),
            (halo_radius, alpha * HALO_ALPHA_RATIO),
        ):
            draw.ellipse(
                (
                    center_x - radius,
                    center_y - radius,
                    center_x + radius,
                    center_y + radius,
                ),
                fill=color + (int(round(opacity * 255)),),
            )

    shape = Image.new("L", panel.size, 0)
    ImageDraw.Draw(shape).rounded_rectangle(
        (box[0] - left, box[1] - top, box[2] - left, box[3] - top),
        radius=font_size * PANEL_RADIUS_RATIO,
        fill=255,
    )
    layer = panel.convert("RGBA")
    layer.putalpha(shape)
    surface.composite(layer, CompositeMode.SOURCE_OVER, (left, top))


class LedEffect:
    """Dot-matrix captions; dot detection runs only when the text changes."""

    style = CaptionStyle.LED

    def __init__(
        self,
        config: RenderConfig,
        font: ImageFont.FreeTypeFont,
        tile_size: int = TILE_SIZE,
    ) -> None:
        self.config = config
        self.font = font
        self.tile_size = tile_size

    def create_state(self) -> LedState:
        return LedState(
            scratch=Surface(self.config.width, self.config.height),
            rng=random.Random(self.config.seed),
        )

    def idle(self, timestamp: float, state: LedState) -> None:
        state.reset_text_cache()

    def render(self, surface: Surface, frame: CaptionFrame, state: LedState) -> None:
        if frame.text != state.text:
            state.dots = detect_dots(
                frame.text,
                self.config,
                self.font,
                state.scratch,
                state.rng,
                self.tile_size,
            )
            state.text = frame.text
        if not state.dots:
            return
        draw_led_panel(surface, state.dots, self.config.font_size, self.tile_size)
