"""Rainbow captions: a falling particle field seen through the glyphs."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from PIL import ImageDraw, ImageFont

from domain.captions import CaptionStyle, RenderConfig
from service.effects.base import CaptionFrame, LayoutCache
from service.raster import CompositeMode, Surface, glyph_mask, outline_mask

FALL_SPEED = 2.0
COLOR_OFFSET_STEP = FALL_SPEED * 0.002
GRADIENT_ZOOM = 3.0
PARTICLE_SIZE = 20.0
HUE_STOPS = np.array([0, 30, 60, 120, 180, 240, 270, 300], dtype=np.float64)
SATURATION = 0.8
RESPAWN_Y = -50.0
SPEED_VARIATION = (0.8, 1.2)
SIZE_VARIATION = (0.8, 1.2)
LIGHTNESS_RANGE = (40.0, 60.0)
MASK_RGB = (255, 255, 255)
OUTLINE_RGB = (255, 255, 255)
OUTLINE_WIDTH = 4


@dataclass
class ParticleField:
    """Parallel arrays; index i across all arrays is particle i."""

    x: np.ndarray
    y: np.ndarray
    speed_var: np.ndarray
    size_var: np.ndarray
    lightness: np.ndarray
    color_offset: float = 0.0

    def __len__(self) -> int:
        return int(self.x.shape[0])


@dataclass
class RainbowState:
    """Particle field plus the scratch surface it is drawn on.

    The field lives for the whole run; only the layout cache is tied to the
    current caption text.
    """

    particles: ParticleField
    aux: Surface
    rng: np.random.Generator
    layout: LayoutCache = field(default_factory=LayoutCache)

    def reset_text_cache(self) -> None:
        self.layout.reset()


def spawn_particles(
    count: int, width: int, height: int, rng: np.random.Generator
) -> ParticleField:
    """Scatter count particles over the whole frame."""
    return ParticleField(
        x=rng.random(count) * width,
        y=rng.random(count) * height,
        speed_var=rng.uniform(*SPEED_VARIATION, size=count),
        size_var=rng.uniform(*SIZE_VARIATION, size=count),
        lightness=rng.uniform(*LIGHTNESS_RANGE, size=count),
    )


def advance_particles(
    particles: ParticleField, width: int, height: int, rng: np.random.Generator
) -> None:
    """Move every particle down one frame; respawn the ones that fell out."""
    particles.color_offset += COLOR_OFFSET_STEP
    particles.y += FALL_SPEED * particles.speed_var
    exited = particles.y > height
    exited_count = int(np.count_nonzero(exited))
    if not exited_count:
        return
    particles.x[exited] = rng.random(exited_count) * width
    particles.y[exited] = RESPAWN_Y
    particles.speed_var[exited] = rng.uniform(*SPEED_VARIATION, size=exited_count)
    particles.size_var[exited] = rng.uniform(*SIZE_VARIATION, size=exited_count)
    particles.lightness[exited] = rng.uniform(*LIGHTNESS_RANGE, size=exited_count)


def compute_particle_hues(
    particles: ParticleField, width: int, height: int
) -> np.ndarray:
    """Diagonal gradient shifted by color_offset, blended between HUE_STOPS."""
    diagonal = (particles.x + particles.y) / float(width + height)
    hue_position = np.mod(diagonal * GRADIENT_ZOOM - particles.color_offset, 1.0)
    color_index = hue_position * (len(HUE_STOPS) - 1)
    lower_index = np.floor(color_index).astype(np.int64)
    upper_index = np.ceil(color_index).astype(np.int64)
    blend = color_index - lower_index
    return HUE_STOPS[lower_index] * (1.0 - blend) + HUE_STOPS[upper_index] * blend


def hsl_to_rgb(
    hue_degrees: np.ndarray, saturation: float, lightness_percent: np.ndarray
) -> np.ndarray:
    """Vectorised CSS hsl() conversion; returns an (n, 3) uint8 array."""
    lightness = lightness_percent / 100.0
    chroma_scale = saturation * np.minimum(lightness, 1.0 - lightness)
    channels = []
    for offset in (0.0, 8.0, 4.0):
        k = np.mod(offset + hue_degrees / 30.0, 12.0)
        ramp = np.clip(np.minimum(k - 3.0, 9.0 - k), -1.0, 1.0)
        channels.append(lightness - chroma_scale * ramp)
    rgb = np.stack(channels, axis=-1)
    return np.clip(np.rint(rgb * 255.0), 0, 255).astype(np.uint8)


def draw_particles(
    aux: Surface, particles: ParticleField, width: int, height: int
) -> None:
    """Redraw the particle field as filled squares on the scratch surface."""
    aux.clear()
    colors = hsl_to_rgb(
        compute_particle_hues(particles, width, height),
        SATURATION,
        particles.lightness,
    )
    sizes = PARTICLE_SIZE * particles.size_var
    draw = ImageDraw.Draw(aux.image)
    for x_value, y_value, size, color in zip(
        particles.x.tolist(), particles.y.tolist(), sizes.tolist(), colors.tolist()
    ):
        left = int(round(x_value))
        top = int(round(y_value))
        extent = max(1, int(round(size)))
        if top + extent <= 0 or left >= width:
            continue
        draw.rectangle(
            (left, top, left + extent - 1, top + extent - 1),
            fill=(color[0], color[1], color[2], 255),
        )


class RainbowEffect:
    """Glyphs filled with a continuously falling rainbow particle field."""

    style = CaptionStyle.RAINBOW

    def __init__(self, config: RenderConfig, font: ImageFont.FreeTypeFont) -> None:
        self.config = config
        self.font = font

    def create_state(self) -> RainbowState:
        rng = np.random.default_rng(self.config.seed)
        return RainbowState(
            particles=spawn_particles(
                self.config.particle_count, self.config.width, self.config.height, rng
            ),
            aux=Surface(self.config.width, self.config.height),
            rng=rng,
        )

    def step(self, state: RainbowState) -> None:
        """Advance the particle field by one frame and redraw it."""
        advance_particles(state.particles, self.config.width, self.config.height, state.rng)
        draw_particles(state.aux, state.particles, self.config.width, self.config.height)

    def idle(self, timestamp: float, state: RainbowState) -> None:
        self.step(state)

    def render(
        self, surface: Surface, frame: CaptionFrame, state: RainbowState
    ) -> None:
        self.step(state)
        lines = state.layout.lines_for(frame.text, self.font, self.config)
        if not lines:
            return
        surface.fill_mask(glyph_mask(surface.size, lines, self.font), MASK_RGB)
        surface.composite(state.aux.image, CompositeMode.SOURCE_IN)
        surface.fill_mask(
            outline_mask(surface.size, lines, self.font, OUTLINE_WIDTH), OUTLINE_RGB
        )
