"""Single-photo rendering shared by the photo editor and the bulk editor."""
from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
from PIL import Image

from .adjustments import AdjustmentSet, apply_adjustments
from .io_utils import (
    Fetcher,
    ImageSource,
    JPEG_QUALITY,
    describe_source,
    encode_jpeg,
    load_image,
    write_bytes_atomic,
)
from .raster import RasterCanvas
from .watermark import WatermarkSpec, composite_watermark, resolve_watermark_image

LOGGER = logging.getLogger("listing_photo_editor")
WORKER_LOGGER = LOGGER.getChild("worker")


@dataclasses.dataclass(frozen=True)
class RenderedPhoto:
    """An encoded export together with the settings that produced it.

    Attributes:
        id: Identifier of the source photo, when known.
        encoded_image: JPEG bytes.
        adjustments: Adjustments applied to the pixels.
        watermark: Watermark drawn, or ``None`` when watermarking was disabled.
        width: Output width in pixels.
        height: Output height in pixels.
    """

    id: Optional[str]
    encoded_image: bytes
    adjustments: AdjustmentSet
    watermark: Optional[WatermarkSpec]
    width: int
    height: int

    def export_record(self) -> Dict[str, Any]:
        """``{id, encoded_image, adjustments, watermark?}`` as handed to save callbacks."""

        record: Dict[str, Any] = {
            "id": self.id,
            "encoded_image": self.encoded_image,
            "adjustments": self.adjustments.to_dict(),
        }
        if self.watermark is not None:
            record["watermark"] = self.watermark.to_dict()
        return record


def render_buffer(
    buffer: np.ndarray,
    adjustments: AdjustmentSet,
    watermark: WatermarkSpec,
    watermark_image: Optional[Image.Image] = None,
) -> np.ndarray:
    """Grade ``buffer`` and draw the watermark, returning the final RGBA buffer."""

    graded = apply_adjustments(buffer, adjustments)
    if not watermark.enabled:
        return graded
    canvas = RasterCanvas(graded)
    composite_watermark(canvas, watermark, watermark_image)
    return canvas.to_buffer()


def _render_worker(
    source: ImageSource,
    adjustments: AdjustmentSet,
    watermark: WatermarkSpec,
    *,
    item_id: Optional[str],
    watermark_image: Optional[Image.Image],
    fetcher: Optional[Fetcher],
    quality: int = JPEG_QUALITY,
) -> RenderedPhoto:
    """Decode, grade, watermark and encode one photo.

    Any stage error propagates; callers decide whether that is fatal.
    """
    WORKER_LOGGER.info("Rendering %s", item_id or describe_source(source))
    buffer = load_image(source, fetcher=fetcher)
    final = render_buffer(buffer, adjustments, watermark, watermark_image)
    encoded = encode_jpeg(final, quality=quality)
    height, width = final.shape[:2]
    return RenderedPhoto(
        id=item_id,
        encoded_image=encoded,
        adjustments=adjustments,
        watermark=watermark if watermark.enabled else None,
        width=width,
        height=height,
    )


def render_photo(
    source: ImageSource,
    adjustments: AdjustmentSet,
    watermark: WatermarkSpec,
    *,
    item_id: Optional[str] = None,
    watermark_image: Optional[Image.Image] = None,
    fetcher: Optional[Fetcher] = None,
) -> RenderedPhoto:
    """Render a single photo for the editor.

    Args:
        source: Anything :func:`~listing_photo_editor.io_utils.load_image` accepts.
        adjustments: Adjustments to apply.
        watermark: Watermark to draw.
        item_id: Optional identifier carried into the result.
        watermark_image: Pre-loaded logo; resolved from ``watermark`` when omitted.
        fetcher: Optional downloader for remote sources.

    Raises:
        DecodeError: If the source cannot be loaded.
        RenderContextError: If no drawing surface can be created.
        EncodeError: If the JPEG cannot be produced.
    """
    if watermark_image is None:
        watermark_image = resolve_watermark_image(watermark, fetcher=fetcher)
    return _render_worker(
        source,
        adjustments,
        watermark,
        item_id=item_id,
        watermark_image=watermark_image,
        fetcher=fetcher,
    )


def default_download_name() -> str:
    return f"edited-photo-{int(time.time() * 1000)}.jpg"


def save_rendered_photo(photo: RenderedPhoto, destination: Optional[Path] = None) -> Path:
    """Write ``photo`` to disk atomically; defaults to a timestamped name in the cwd."""

    target = Path(destination) if destination is not None else Path.cwd() / default_download_name()
    LOGGER.info("Saving %s (%s bytes)", target, len(photo.encoded_image))
    return write_bytes_atomic(target, photo.encoded_image)


__all__ = [
    "RenderedPhoto",
    "default_download_name",
    "render_buffer",
    "render_photo",
    "save_rendered_photo",
]
