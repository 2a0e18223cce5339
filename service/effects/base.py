"""Shared pieces for caption effects: frame context, fonts and layout cache."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from typing import Dict, Protocol, Tuple

from PIL import ImageFont

from domain.captions import FONT_LOAD_CODE, CaptionStyle, RenderConfig, Subtitle
from service.raster import Surface
from service.text_layout import PlacedLine, layout_caption

LOGGER = logging.getLogger("render_captions")

STYLE_FONT_FILES = {
    CaptionStyle.HOLOGRAPHIC: "Modak-Regular.ttf",
    CaptionStyle.RAINBOW: "Modak-Regular.ttf",
    CaptionStyle.LED: "Tinos-Regular.ttf",
    CaptionStyle.NEON: "Tinos-Regular.ttf",
}


@dataclass(frozen=True)
class CaptionFrame:
    """What an effect needs to draw one frame."""

    subtitle: Subtitle
    timestamp: float

    @property
    def text(self) -> str:
        return self.subtitle.text


@dataclass
class LayoutCache:
    """Placed lines memoised by (text, font size, canvas width)."""

    key: Tuple[str, int, int] | None = None
    lines: Tuple[PlacedLine, ...] = ()

    def lines_for(
        self,
        text_value: str,
        font: ImageFont.FreeTypeFont,
        config: RenderConfig,
    ) -> Tuple[PlacedLine, ...]:
        cache_key = (text_value, config.font_size, config.width)
        if cache_key != self.key:
            self.lines = layout_caption(
                text_value,
                font,
                config.font_size,
                config.width,
                config.height,
                config.text_height_percent,
            )
            self.key = cache_key
        return self.lines

    def reset(self) -> None:
        self.key = None
        self.lines = ()


@dataclass
class TextEffectState:
    """State for effects whose only memory is the wrapped layout."""

    layout: LayoutCache = field(default_factory=LayoutCache)

    def reset_text_cache(self) -> None:
        self.layout.reset()


class CaptionEffect(Protocol):
    """A caption renderer bound to one run configuration."""

    style: CaptionStyle

    def create_state(self) -> object: ...

    def render(self, surface: Surface, frame: CaptionFrame, state: object) -> None: ...

    def idle(self, timestamp: float, state: object) -> None: ...


def load_style_font(
    fonts_dir: str,
    style: CaptionStyle,
    font_size: int,
    cache: Dict[Tuple[str, int], ImageFont.FreeTypeFont] | None = None,
) -> ImageFont.FreeTypeFont:
    """Load the style's font from fonts_dir, falling back to Pillow's default."""
    font_file_path = os.path.join(fonts_dir, STYLE_FONT_FILES[style])
    cache_key = (font_file_path, font_size)
    if cache is not None and cache_key in cache:
        return cache[cache_key]
    try:
        font = ImageFont.truetype(font_file_path, size=font_size)
    except OSError as exc:
        LOGGER.warning(
            "%s: using default font for %s (%s)",
            FONT_LOAD_CODE,
            style.value,
            str(exc).strip() or font_file_path,
        )
        font = ImageFont.load_default(size=font_size)
    if cache is not None:
        cache[cache_key] = font
    return font
