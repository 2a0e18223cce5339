"""RGBA drawing surface with explicit compositing modes."""

from __future__ import annotations

from enum import Enum
from typing import Sequence, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageFont

from service.text_layout import PlacedLine

TRANSPARENT = (0, 0, 0, 0)


class CompositeMode(str, Enum):
    """Porter-Duff style rules used by the caption effects."""

    SOURCE_OVER = "source-over"
    SOURCE_IN = "source-in"
    LIGHTER = "lighter"


class Surface:
    """A fixed-size RGBA raster.

    Every drawing call names its compositing mode; the surface carries no
    ambient fill, stroke or blend state between calls.
    """

    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.image = Image.new("RGBA", (width, height), TRANSPARENT)

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def clear(self) -> None:
        self.image.paste(TRANSPARENT, (0, 0, self.width, self.height))

    def to_bytes(self) -> bytes:
        """Return the raw RGBA buffer, 4 bytes per pixel, row-major."""
        return self.image.tobytes()

    def read_pixels(self) -> np.ndarray:
        """Read back the full buffer as a (height, width, 4) uint8 array."""
        return np.array(self.image, dtype=np.uint8)

    def fill_mask(
        self,
        mask: Image.Image,
        rgb: Tuple[int, int, int],
        mode: CompositeMode = CompositeMode.SOURCE_OVER,
        opacity: float = 1.0,
        offset: Tuple[int, int] = (0, 0),
    ) -> None:
        """Paint a solid colour through an 8-bit coverage mask."""
        self.composite(colored_layer(mask, rgb, opacity), mode, offset)

    def composite(
        self,
        layer: Image.Image,
        mode: CompositeMode,
        offset: Tuple[int, int] = (0, 0),
    ) -> None:
        """Combine an RGBA layer placed at offset into the surface."""
        clipped = clip_region(self.size, layer.size, offset)
        if mode == CompositeMode.SOURCE_IN:
            self._composite_source_in(layer, clipped)
            return
        if clipped is None:
            return
        dest_box, source_box = clipped
        source = layer.crop(source_box)
        if mode == CompositeMode.SOURCE_OVER:
            self.image.alpha_composite(source, dest=dest_box[:2])
            return
        if mode == CompositeMode.LIGHTER:
            destination = np.array(self.image.crop(dest_box), dtype=np.uint8)
            combined = composite_lighter(destination, np.array(source, dtype=np.uint8))
            self.image.paste(Image.fromarray(combined, "RGBA"), dest_box[:2])
            return
        raise ValueError(f"unsupported composite mode: {mode!r}")

    def _composite_source_in(
        self,
        layer: Image.Image,
        clipped: Tuple[Tuple[int, int, int, int], Tuple[int, int, int, int]] | None,
    ) -> None:
        source = np.zeros((self.height, self.width, 4), dtype=np.uint8)
        if clipped is not None:
            dest_box, source_box = clipped
            left, top, right, bottom = dest_box
            source[top:bottom, left:right] = np.array(
                layer.crop(source_box), dtype=np.uint8
            )
        combined = composite_source_in(self.read_pixels(), source)
        self.image = Image.fromarray(combined, "RGBA")


def clip_region(
    surface_size: Tuple[int, int],
    layer_size: Tuple[int, int],
    offset: Tuple[int, int],
) -> Tuple[Tuple[int, int, int, int], Tuple[int, int, int, int]] | None:
    """Intersect a layer placed at offset with the surface bounds.

    Returns (dest_box, source_box) or None when nothing overlaps.
    """
    surface_width, surface_height = surface_size
    layer_width, layer_height = layer_size
    offset_x, offset_y = int(offset[0]), int(offset[1])
    left = max(0, offset_x)
    top = max(0, offset_y)
    right = min(surface_width, offset_x + layer_width)
    bottom = min(surface_height, offset_y + layer_height)
    if right <= left or bottom <= top:
        return None
    dest_box = (left, top, right, bottom)
    source_box = (left - offset_x, top - offset_y, right - offset_x, bottom - offset_y)
    return dest_box, source_box


def composite_source_in(destination: np.ndarray, source: np.ndarray) -> np.ndarray:
    """Keep the destination's alpha shape and take the source's colour."""
    result = np.zeros_like(destination)
    alpha = (
        source[..., 3].astype(np.uint32) * destination[..., 3].astype(np.uint32) + 127
    ) // 255
    visible = alpha > 0
    result[..., :3][visible] = source[..., :3][visible]
    result[..., 3] = alpha.astype(np.uint8)
    return result


def composite_lighter(destination: np.ndarray, source: np.ndarray) -> np.ndarray:
    """Additive blend on premultiplied colour, clamped to full intensity."""
    source_alpha = source[..., 3:4].astype(np.float32) / 255.0
    destination_alpha = destination[..., 3:4].astype(np.float32) / 255.0
    premultiplied = (
        source[..., :3].astype(np.float32) * source_alpha
        + destination[..., :3].astype(np.float32) * destination_alpha
    )
    alpha = np.minimum(source_alpha + destination_alpha, 1.0)
    premultiplied = np.minimum(premultiplied, alpha * 255.0)
    color = np.divide(
        premultiplied,
        alpha,
        out=np.zeros_like(premultiplied),
        where=alpha > 0,
    )
    result = np.empty_like(destination)
    result[..., :3] = np.clip(np.rint(color), 0, 255).astype(np.uint8)
    result[..., 3] = np.clip(np.rint(alpha[..., 0] * 255.0), 0, 255).astype(np.uint8)
    return result


def colored_layer(
    mask: Image.Image, rgb: Tuple[int, int, int], opacity: float = 1.0
) -> Image.Image:
    """Build an RGBA layer of a single colour whose alpha is mask * opacity."""
    layer = Image.new("RGBA", mask.size, tuple(rgb) + (0,))
    if opacity < 1.0:
        scale = max(0.0, opacity)
        mask = mask.point(lambda value: int(round(value * scale)))
    layer.putalpha(mask)
    return layer


def glyph_mask(
    size: Tuple[int, int],
    lines: Sequence[PlacedLine],
    font: ImageFont.FreeTypeFont,
    stroke_width: int = 0,
    origin: Tuple[float, float] = (0.0, 0.0),
) -> Image.Image:
    """Rasterise lines as an opaque coverage mask, baselines at line.baseline_y."""
    mask = Image.new("L", size, 0)
    draw = ImageDraw.Draw(mask)
    for line in lines:
        draw.text(
            (line.x - origin[0], line.baseline_y - origin[1]),
            line.text,
            font=font,
            fill=255,
            anchor="ls",
            stroke_width=stroke_width,
            stroke_fill=255,
        )
    return mask


def outline_mask(
    size: Tuple[int, int],
    lines: Sequence[PlacedLine],
    font: ImageFont.FreeTypeFont,
    line_width: float,
    origin: Tuple[float, float] = (0.0, 0.0),
) -> Image.Image:
    """Coverage of a stroke of line_width centred on the glyph contours."""
    half_width = max(1, int(round(line_width / 2.0)))
    outer = glyph_mask(size, lines, font, stroke_width=half_width, origin=origin)
    inner = glyph_mask(size, lines, font, origin=origin).filter(
        ImageFilter.MinFilter(half_width * 2 + 1)
    )
    return ImageChops.subtract(outer, inner)
