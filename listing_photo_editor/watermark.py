"""Watermark configuration, placement math and compositing."""
from __future__ import annotations

import dataclasses
import io
import logging
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from .io_utils import Fetcher, WatermarkAssetError, load_image
from .raster import RasterCanvas

LOGGER = logging.getLogger("listing_photo_editor")

WATERMARK_KINDS = ("text", "image")
WATERMARK_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right", "center")

WATERMARK_RANGES: Dict[str, Tuple[int, int]] = {
    "opacity": (10, 100),
    "size": (12, 72),
    "padding": (5, 100),
}

WatermarkImageSource = Union[bytes, str]


@dataclasses.dataclass(frozen=True)
class WatermarkSpec:
    """How and where to stamp a watermark on an exported photo.

    Attributes:
        enabled: Nothing is drawn when ``False``.
        kind: ``"text"`` or ``"image"``.
        text: Text to draw in text mode.
        image_source: Logo as bytes, data URL, URL or path for image mode.
        position: One of :data:`WATERMARK_POSITIONS`.
        opacity: Draw opacity in percent.
        size: Font size in pixels for text; half the logo height for images.
        padding: Distance from the canvas edges in pixels.
    """

    enabled: bool = False
    kind: str = "text"
    text: Optional[str] = None
    image_source: Optional[WatermarkImageSource] = None
    position: str = "bottom-right"
    opacity: float = 70
    size: int = 24
    padding: float = 20

    def __post_init__(self) -> None:
        if self.kind not in WATERMARK_KINDS:
            raise ValueError(f"kind must be one of {WATERMARK_KINDS}, got {self.kind!r}")
        if self.position not in WATERMARK_POSITIONS:
            raise ValueError(f"position must be one of {WATERMARK_POSITIONS}, got {self.position!r}")

    def validate(self) -> None:
        """Raise ``ValueError`` when opacity, size or padding leave the editor ranges."""

        for name, (minimum, maximum) in WATERMARK_RANGES.items():
            value = getattr(self, name)
            if not (minimum <= value <= maximum):
                raise ValueError(f"watermark {name} must be between {minimum} and {maximum}, got {value}")

    @property
    def draws_text(self) -> bool:
        return self.enabled and self.kind == "text" and bool(self.text)

    @property
    def draws_image(self) -> bool:
        return self.enabled and self.kind == "image" and self.image_source is not None

    def with_overrides(self, **overrides: Any) -> "WatermarkSpec":
        return dataclasses.replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        """Export metadata; image bytes are summarised rather than embedded."""

        data = dataclasses.asdict(self)
        if isinstance(self.image_source, (bytes, bytearray)):
            data["image_source"] = f"<{len(self.image_source)} bytes>"
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "WatermarkSpec":
        known = {field.name for field in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown watermark options: {sorted(unknown)}")
        return cls(**{key: value for key, value in data.items() if value is not None})


def default_watermark(organization_name: str = "", organization_logo: Optional[WatermarkImageSource] = None) -> WatermarkSpec:
    """Session default: disabled, bottom-right, text pre-filled with the organisation name."""

    return WatermarkSpec(text=organization_name or "", image_source=organization_logo)


def text_anchor(
    position: str, canvas_width: float, canvas_height: float, text_width: float, text_height: float, padding: float
) -> Tuple[float, float]:
    """Baseline-left origin for watermark text.

    Top rows add the text height because text is drawn from its baseline.
    """
    if position == "top-left":
        return padding, padding + text_height
    if position == "top-right":
        return canvas_width - text_width - padding, padding + text_height
    if position == "bottom-left":
        return padding, canvas_height - padding
    if position == "bottom-right":
        return canvas_width - text_width - padding, canvas_height - padding
    if position == "center":
        return (canvas_width - text_width) / 2, canvas_height / 2 + text_height / 2
    raise ValueError(f"Unknown watermark position {position!r}")


def image_anchor(
    position: str, canvas_width: float, canvas_height: float, logo_width: float, logo_height: float, padding: float
) -> Tuple[float, float]:
    """Top-left origin for a watermark logo."""

    if position == "top-left":
        return padding, padding
    if position == "top-right":
        return canvas_width - logo_width - padding, padding
    if position == "bottom-left":
        return padding, canvas_height - logo_height - padding
    if position == "bottom-right":
        return canvas_width - logo_width - padding, canvas_height - logo_height - padding
    if position == "center":
        return (canvas_width - logo_width) / 2, (canvas_height - logo_height) / 2
    raise ValueError(f"Unknown watermark position {position!r}")


def logo_dimensions(size: float, image_width: int, image_height: int) -> Tuple[float, float]:
    """Logo draw size: height is twice ``size``, width follows the aspect ratio."""

    if image_width <= 0 or image_height <= 0:
        raise WatermarkAssetError(f"Watermark image has invalid size {image_width}x{image_height}")
    logo_height = size * 2
    return logo_height * (image_width / image_height), logo_height


def load_watermark_image(source: WatermarkImageSource, *, fetcher: Optional[Fetcher] = None) -> Image.Image:
    """Decode a watermark logo.

    Raises:
        WatermarkAssetError: If the logo cannot be loaded.
    """
    if isinstance(source, (bytes, bytearray)):
        try:
            image = Image.open(io.BytesIO(bytes(source)))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise WatermarkAssetError(f"Failed to load watermark image: {exc}") from exc
        return image.convert("RGBA")
    try:
        buffer = load_image(source, fetcher=fetcher)
    except Exception as exc:  # pylint: disable=broad-except  # a logo never fails the photo
        raise WatermarkAssetError(f"Failed to load watermark image: {exc}") from exc
    return Image.fromarray(buffer)


def resolve_watermark_image(spec: WatermarkSpec, *, fetcher: Optional[Fetcher] = None) -> Optional[Image.Image]:
    """Load the logo for an image-mode watermark, or ``None`` when it cannot be drawn.

    A logo that fails to load is logged and skipped; it never fails the render.
    """
    if not spec.draws_image:
        return None
    try:
        return load_watermark_image(spec.image_source, fetcher=fetcher)
    except WatermarkAssetError as exc:
        LOGGER.warning("Skipping watermark: %s", exc)
        return None


def _draw_text_watermark(canvas: RasterCanvas, spec: WatermarkSpec) -> None:
    text = spec.text or ""
    text_width = canvas.measure_text(text, spec.size)
    x, y = text_anchor(spec.position, canvas.width, canvas.height, text_width, spec.size, spec.padding)
    LOGGER.debug("Drawing text watermark %r at (%.1f, %.1f)", text, x, y)
    canvas.draw_text(text, x, y, spec.size)


def _draw_image_watermark(canvas: RasterCanvas, spec: WatermarkSpec, image: Image.Image) -> None:
    logo_width, logo_height = logo_dimensions(spec.size, image.width, image.height)
    x, y = image_anchor(spec.position, canvas.width, canvas.height, logo_width, logo_height, spec.padding)
    LOGGER.debug("Drawing %.0fx%.0f logo watermark at (%.1f, %.1f)", logo_width, logo_height, x, y)
    canvas.draw_image(image, x, y, logo_width, logo_height)


def composite_watermark(
    canvas: RasterCanvas, spec: WatermarkSpec, watermark_image: Optional[Image.Image] = None
) -> RasterCanvas:
    """Draw ``spec`` onto ``canvas``.

    The canvas global alpha is set to ``opacity/100`` for the draw and restored
    afterwards. Image mode without a loaded ``watermark_image`` draws nothing.

    Returns:
        The same canvas, for chaining.
    """
    if not spec.enabled:
        return canvas

    with canvas.with_alpha(spec.opacity / 100.0):
        if spec.kind == "text":
            if spec.text:
                _draw_text_watermark(canvas, spec)
        elif watermark_image is not None:
            try:
                _draw_image_watermark(canvas, spec, watermark_image)
            except WatermarkAssetError as exc:
                LOGGER.warning("Skipping watermark: %s", exc)
        else:
            LOGGER.debug("Image watermark requested but no image is available; skipping")
    return canvas


def apply_watermark(
    buffer: np.ndarray, spec: WatermarkSpec, watermark_image: Optional[Image.Image] = None
) -> np.ndarray:
    """Return a copy of ``buffer`` with the watermark drawn on it."""

    if not spec.enabled:
        return buffer.copy()
    canvas = RasterCanvas(buffer)
    composite_watermark(canvas, spec, watermark_image)
    return canvas.to_buffer()


__all__ = [
    "WATERMARK_KINDS",
    "WATERMARK_POSITIONS",
    "WATERMARK_RANGES",
    "WatermarkSpec",
    "apply_watermark",
    "composite_watermark",
    "default_watermark",
    "image_anchor",
    "load_watermark_image",
    "logo_dimensions",
    "resolve_watermark_image",
    "text_anchor",
]
