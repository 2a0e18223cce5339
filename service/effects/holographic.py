"""Holographic captions: a scrolling texture seen through the glyphs."""

from __future__ import annotations

from PIL import Image, ImageFont

from domain.captions import (
    STYLE_IMAGE_CODE,
    CaptionStyle,
    ConfigurationError,
    RenderConfig,
)
from service.effects.base import CaptionFrame, TextEffectState
from service.raster import CompositeMode, Surface, glyph_mask, outline_mask

ANIM_DURATION_SECONDS = 100.0
SCROLL_HEIGHT_FACTOR = 5
BORDER_WIDTH = 4
MASK_RGB = (255, 255, 255)
BORDER_RGB = (0, 0, 0)


def compute_scroll_progress(
    timestamp: float, anim_duration: float = ANIM_DURATION_SECONDS
) -> float:
    """Triangular wave in [0, 1] with period 2 * anim_duration."""
    progress = (timestamp % (anim_duration * 2)) / anim_duration
    return progress if progress <= 1 else 2 - progress


class HolographicEffect:
    """Masks a ping-pong scrolling style image with the caption glyphs."""

    style = CaptionStyle.HOLOGRAPHIC

    def __init__(
        self,
        config: RenderConfig,
        font: ImageFont.FreeTypeFont,
        style_image: Image.Image | None,
    ) -> None:
        if style_image is None:
            raise ConfigurationError(
                "holographic style requires a style image", STYLE_IMAGE_CODE
            )
        if style_image.width <= 0 or style_image.height <= 0:
            raise ConfigurationError("style image has no pixels", STYLE_IMAGE_CODE)
        self.config = config
        self.font = font
        self.style_image = (
            style_image if style_image.mode == "RGBA" else style_image.convert("RGBA")
        )

    def create_state(self) -> TextEffectState:
        return TextEffectState()

    def idle(self, timestamp: float, state: TextEffectState) -> None:
        return None

    def render(
        self, surface: Surface, frame: CaptionFrame, state: TextEffectState
    ) -> None:
        lines = state.layout.lines_for(frame.text, self.font, self.config)
        if not lines:
            return
        surface.fill_mask(glyph_mask(surface.size, lines, self.font), MASK_RGB)
        surface.composite(
            self.scrolled_texture(frame.timestamp), CompositeMode.SOURCE_IN
        )
        surface.fill_mask(
            outline_mask(surface.size, lines, self.font, BORDER_WIDTH), BORDER_RGB
        )

    def scrolled_texture(self, timestamp: float) -> Image.Image:
        """Sample the style image scaled to SCROLL_HEIGHT_FACTOR canvas heights."""
        width, height = self.config.width, self.config.height
        draw_height = height * SCROLL_HEIGHT_FACTOR
        scale = draw_height / self.style_image.height
        draw_width = self.style_image.width * scale
        draw_x = (width - draw_width) / 2.0
        scroll_y = compute_scroll_progress(timestamp) * (draw_height - height)
        inverse = 1.0 / scale
        return self.style_image.transform(
            (width, height),
            Image.Transform.AFFINE,
            (inverse, 0.0, -draw_x * inverse, 0.0, inverse, scroll_y * inverse),
            resample=Image.Resampling.BILINEAR,
        )
