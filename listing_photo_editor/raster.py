"""A small 2D drawing surface over an RGBA pixel buffer.

The watermark code only needs four things from a drawing surface: its size, a
global draw opacity, text measurement and drawing, and scaled image drawing.
:class:`RasterCanvas` provides exactly that on top of Pillow, so compositing
math stays independent of the raster library.
"""
from __future__ import annotations

import contextlib
import functools
import logging
from typing import Iterator, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .io_utils import DecodeError, RenderContextError, ensure_rgba_buffer

LOGGER = logging.getLogger("listing_photo_editor")

TEXT_FILL: Tuple[int, int, int, int] = (255, 255, 255, 255)
TEXT_STROKE: Tuple[int, int, int, int] = (0, 0, 0, 128)
TEXT_STROKE_WIDTH = 2

BOLD_FONT_CANDIDATES: Sequence[str] = (
    "DejaVuSans-Bold.ttf",
    "arialbd.ttf",
    "Arial Bold.ttf",
    "LiberationSans-Bold.ttf",
    "FreeSansBold.ttf",
)

FontType = ImageFont.FreeTypeFont


@functools.lru_cache(maxsize=32)
def load_bold_font(size: int) -> FontType:
    """Return a bold TrueType font at ``size`` pixels.

    Falls back to Pillow's bundled scalable font when none of
    :data:`BOLD_FONT_CANDIDATES` is installed.
    """
    for candidate in BOLD_FONT_CANDIDATES:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    LOGGER.debug("No bold TrueType font found; using Pillow default at %spx", size)
    return ImageFont.load_default(size=size)


class RasterCanvas:
    """Drawing surface wrapping an RGBA buffer.

    Attributes:
        global_alpha: Opacity multiplier applied to everything drawn, in [0, 1].
    """

    def __init__(self, buffer: np.ndarray) -> None:
        try:
            rgba = ensure_rgba_buffer(buffer)
        except DecodeError as exc:
            raise RenderContextError(f"Cannot create a drawing surface: {exc}") from exc
        if rgba.shape[0] == 0 or rgba.shape[1] == 0:
            raise RenderContextError("Cannot create a drawing surface for an empty buffer")
        self._image = Image.fromarray(rgba.copy())
        self.global_alpha = 1.0

    @property
    def width(self) -> int:
        return self._image.width

    @property
    def height(self) -> int:
        return self._image.height

    @contextlib.contextmanager
    def with_alpha(self, alpha: float) -> Iterator["RasterCanvas"]:
        """Temporarily set :attr:`global_alpha`, restoring the previous value on exit."""

        previous = self.global_alpha
        self.global_alpha = min(1.0, max(0.0, float(alpha)))
        try:
            yield self
        finally:
            self.global_alpha = previous

    def measure_text(self, text: str, size: int) -> float:
        """Advance width of ``text`` in the bold watermark font."""

        return float(load_bold_font(int(size)).getlength(text))

    def draw_text(self, text: str, x: float, y: float, size: int) -> None:
        """Draw outlined text with its baseline starting at (``x``, ``y``).

        The translucent outline is drawn first and the white fill on top.
        """
        font = load_bold_font(int(size))
        layer = Image.new("RGBA", self._image.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        draw.text(
            (x, y),
            text,
            font=font,
            anchor="ls",
            fill=TEXT_STROKE,
            stroke_width=TEXT_STROKE_WIDTH,
            stroke_fill=TEXT_STROKE,
        )
        draw.text((x, y), text, font=font, anchor="ls", fill=TEXT_FILL)
        self._blend(layer)

    def draw_image(self, image: Image.Image, x: float, y: float, width: float, height: float) -> None:
        """Draw ``image`` scaled to ``width`` x ``height`` with its top-left at (``x``, ``y``)."""

        target = (max(1, int(round(width))), max(1, int(round(height))))
        scaled = image.convert("RGBA").resize(target, Image.LANCZOS)
        layer = Image.new("RGBA", self._image.size, (0, 0, 0, 0))
        layer.paste(scaled, (int(round(x)), int(round(y))))
        self._blend(layer)

    def _blend(self, layer: Image.Image) -> None:
        if self.global_alpha <= 0.0:
            return
        if self.global_alpha < 1.0:
            alpha = np.asarray(layer.getchannel("A"), dtype=np.float64)
            scaled = np.rint(alpha * self.global_alpha).astype(np.uint8)
            layer.putalpha(Image.fromarray(scaled))
        self._image = Image.alpha_composite(self._image, layer)

    def to_buffer(self) -> np.ndarray:
        return np.array(self._image, dtype=np.uint8)


__all__ = [
    "BOLD_FONT_CANDIDATES",
    "RasterCanvas",
    "TEXT_FILL",
    "TEXT_STROKE",
    "TEXT_STROKE_WIDTH",
    "load_bold_font",
]
