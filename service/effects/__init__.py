"""Caption effects and their per-run state."""

from __future__ import annotations

from typing import Dict

from PIL import Image

from domain.captions import CaptionStyle, ConfigurationError, INVALID_WORD_CODE, RenderConfig
from service.effects.base import CaptionEffect, CaptionFrame, load_style_font
from service.effects.holographic import HolographicEffect
from service.effects.led import LedEffect
from service.effects.neon import NeonEffect
from service.effects.rainbow import RainbowEffect
from service.timeline import SubtitleTimeline

__all__ = [
    "CaptionEffect",
    "CaptionFrame",
    "EffectStates",
    "HolographicEffect",
    "LedEffect",
    "NeonEffect",
    "RainbowEffect",
    "build_effect",
]


def build_effect(
    config: RenderConfig,
    timeline: SubtitleTimeline,
    style_image: Image.Image | None = None,
) -> CaptionEffect:
    """Create the effect selected by config.style; fails before any frame."""
    font = load_style_font(config.fonts_dir, config.style, config.font_size)
    if config.style == CaptionStyle.HOLOGRAPHIC:
        return HolographicEffect(config, font, style_image)
    if config.style == CaptionStyle.RAINBOW:
        return RainbowEffect(config, font)
    if config.style == CaptionStyle.LED:
        return LedEffect(config, font)
    if config.style == CaptionStyle.NEON:
        if not timeline.words:
            raise ConfigurationError(
                "neon style requires word-level timing", INVALID_WORD_CODE
            )
        return NeonEffect(config, font, timeline)
    raise ConfigurationError(f"unsupported caption style: {config.style!r}")


class EffectStates:
    """Per-style animation state, created on first use.

    A style's state is only ever handed to that style's effect. Activating a
    different style drops the other styles' text caches; particle fields are
    left untouched.
    """

    def __init__(self) -> None:
        self._states: Dict[CaptionStyle, object] = {}
        self.active_style: CaptionStyle | None = None

    def __contains__(self, style: CaptionStyle) -> bool:
        return style in self._states

    def state_for(self, effect: CaptionEffect) -> object:
        if self.active_style is not None and self.active_style != effect.style:
            for style, state in self._states.items():
                if style != effect.style:
                    state.reset_text_cache()
        self.active_style = effect.style
        state = self._states.get(effect.style)
        if state is None:
            state = effect.create_state()
            self._states[effect.style] = state
        return state

    def reset_text_caches(self) -> None:
        """Forget everything keyed on the caption currently on screen."""
        for state in self._states.values():
            state.reset_text_cache()
