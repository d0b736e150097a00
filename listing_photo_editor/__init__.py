"""Colour adjustment and watermarking engine for property-listing photos.

The same pipeline backs single-photo editing and bulk editing: decode a photo to
an RGBA buffer, grade it with eight colour knobs, stamp an optional text or logo
watermark, and export a JPEG.

Module Organization
-------------------

adjustments
    The :class:`AdjustmentSet` value and the per-pixel grading stages.

presets
    Named real-estate filter presets that resolve to adjustment sets.

watermark
    Watermark configuration, anchor math and compositing onto a canvas.

raster
    Pillow-backed drawing surface used by the watermark compositor.

io_utils
    Image loading, JPEG encoding, atomic writes and the error taxonomy.

pipeline
    Single-photo rendering and saving.

batch
    Bulk editing with per-photo failure isolation and progress reporting.

cli
    Command-line interface for editing a folder of photos.

Example Usage
-------------

    from listing_photo_editor import apply_preset, default_watermark, render_photo, save_rendered_photo

    adjustments = apply_preset("luxury").with_overrides(warmth=10)
    watermark = default_watermark("Casa Realty").with_overrides(enabled=True)
    photo = render_photo("living-room.jpg", adjustments, watermark)
    save_rendered_photo(photo)
"""
from __future__ import annotations

import logging

from .adjustments import ADJUSTMENT_RANGES, NEUTRAL_ADJUSTMENTS, AdjustmentSet, apply_adjustments
from .batch import (
    BatchFailure,
    BatchItem,
    BatchOrchestrator,
    BatchReport,
    BatchSuccess,
    EmptySelectionError,
    PhotoSelection,
    export_batch,
)
from .cli import build_adjustments, build_watermark, default_output_folder, main, parse_args, run_pipeline
from .io_utils import (
    JPEG_QUALITY,
    DecodeError,
    EncodeError,
    PhotoEditorError,
    ProcessingContext,
    RenderContextError,
    WatermarkAssetError,
    encode_jpeg,
    load_image,
    read_watermark_file,
)
from .pipeline import RenderedPhoto, render_buffer, render_photo, save_rendered_photo
from .presets import DEFAULT_PRESET_ID, FILTER_PRESETS, FilterPreset, apply_preset, get_preset, preset_ids
from .raster import RasterCanvas
from .watermark import WATERMARK_POSITIONS, WatermarkSpec, apply_watermark, composite_watermark, default_watermark

LOGGER = logging.getLogger("listing_photo_editor")

__all__ = [
    "ADJUSTMENT_RANGES",
    "AdjustmentSet",
    "BatchFailure",
    "BatchItem",
    "BatchOrchestrator",
    "BatchReport",
    "BatchSuccess",
    "DEFAULT_PRESET_ID",
    "DecodeError",
    "EmptySelectionError",
    "EncodeError",
    "FILTER_PRESETS",
    "FilterPreset",
    "JPEG_QUALITY",
    "NEUTRAL_ADJUSTMENTS",
    "PhotoEditorError",
    "PhotoSelection",
    "ProcessingContext",
    "RasterCanvas",
    "RenderContextError",
    "RenderedPhoto",
    "WATERMARK_POSITIONS",
    "WatermarkAssetError",
    "WatermarkSpec",
    "apply_adjustments",
    "apply_preset",
    "apply_watermark",
    "build_adjustments",
    "build_watermark",
    "composite_watermark",
    "default_output_folder",
    "default_watermark",
    "encode_jpeg",
    "export_batch",
    "get_preset",
    "load_image",
    "main",
    "parse_args",
    "preset_ids",
    "read_watermark_file",
    "render_buffer",
    "render_photo",
    "run_pipeline",
    "save_rendered_photo",
]
