"""Pillow rendering of the broadcast view and the loop that drives it."""

from .assets import AssetCache, AssetState, HttpFetcher, LogoBook, model_color
from .fonts import FontBook, FontSpec
from .render_loop import RenderLoop
from .renderer import FrameRenderer, ViewportClock
from .text_layout import ellipsize, split_word_to_fit, wrap_text

__all__ = [
    "AssetCache",
    "AssetState",
    "FontBook",
    "FontSpec",
    "FrameRenderer",
    "HttpFetcher",
    "LogoBook",
    "RenderLoop",
    "ViewportClock",
    "ellipsize",
    "model_color",
    "split_word_to_fit",
    "wrap_text",
]
