"""Colour adjustments and the per-pixel grading pipeline."""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, Mapping, Tuple

import numpy as np

LOGGER = logging.getLogger("listing_photo_editor")

PIVOT = 128.0
# Channel shift at +/-100 warmth, highlights or shadows.
TONE_SHIFT = 30.0
GRAY_WEIGHTS = (0.2989, 0.587, 0.114)

ADJUSTMENT_RANGES: Dict[str, Tuple[float, float]] = {
    "brightness": (50.0, 150.0),
    "contrast": (50.0, 150.0),
    "saturation": (0.0, 200.0),
    "warmth": (-50.0, 50.0),
    "exposure": (-50.0, 50.0),
    "highlights": (-50.0, 50.0),
    "shadows": (-50.0, 50.0),
    "sharpness": (0.0, 100.0),
}


@dataclasses.dataclass(frozen=True)
class AdjustmentSet:
    """The eight colour-grading knobs of the photo editor.

    Values are percentages (brightness, contrast, saturation) or signed deltas
    (everything else). The ranges in :data:`ADJUSTMENT_RANGES` are what the
    editor sliders allow; the pipeline accepts any value. ``sharpness`` is kept
    so exported metadata round-trips, but no stage reads it.
    """

    brightness: float = 100
    contrast: float = 100
    saturation: float = 100
    warmth: float = 0
    exposure: float = 0
    highlights: float = 0
    shadows: float = 0
    sharpness: float = 0

    @property
    def is_neutral(self) -> bool:
        return self == NEUTRAL_ADJUSTMENTS

    def validate(self) -> None:
        """Raise ``ValueError`` when a field lies outside its editor range."""

        for name, (minimum, maximum) in ADJUSTMENT_RANGES.items():
            value = getattr(self, name)
            if not (minimum <= value <= maximum):
                raise ValueError(f"{name} must be between {minimum:g} and {maximum:g}, got {value}")

    def with_overrides(self, **overrides: float) -> "AdjustmentSet":
        return dataclasses.replace(self, **overrides)

    def to_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AdjustmentSet":
        """Build a set from a mapping, ignoring ``None`` values.

        Raises:
            ValueError: If the mapping names an unknown field or a non-numeric value.
        """
        known = {field.name for field in dataclasses.fields(cls)}
        values: Dict[str, float] = {}
        for key, value in data.items():
            if key not in known:
                raise ValueError(f"Unknown adjustment '{key}'")
            if value is None:
                continue
            try:
                values[key] = float(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Adjustment '{key}' must be numeric, got {value!r}") from exc
        return cls(**values)


NEUTRAL_ADJUSTMENTS = AdjustmentSet()


def apply_brightness_exposure(rgb: np.ndarray, brightness: float, exposure: float) -> np.ndarray:
    """Scale every channel by ``brightness/100 * (1 + exposure/100)``.

    Args:
        rgb: Float RGB array with values on the 0-255 scale.
        brightness: Brightness percentage (100 is neutral).
        exposure: Exposure delta in percent (0 is neutral).

    Returns:
        Scaled array with the same shape as the input.
    """
    scale = brightness / 100.0
    gain = 1.0 + exposure / 100.0
    LOGGER.debug("Brightness %s%% exposure %+g%%", brightness, exposure)
    return rgb * scale * gain


def contrast_factor(contrast: float) -> float:
    """Return the contrast curve slope for a contrast percentage.

    Raises:
        ValueError: If the contrast level reaches the curve's singularity.
    """
    level = ((contrast - 100.0) / 100.0) * 255.0
    if level >= 259.0:
        raise ValueError(f"contrast {contrast} is outside the contrast curve domain")
    return (259.0 * (level + 255.0)) / (255.0 * (259.0 - level))


def apply_contrast(rgb: np.ndarray, contrast: float) -> np.ndarray:
    """Stretch channels around the mid-gray pivot.

    Args:
        rgb: Float RGB array with values on the 0-255 scale.
        contrast: Contrast percentage (100 is neutral).

    Returns:
        Contrast-adjusted array; unchanged when ``contrast`` is 100.
    """
    if contrast == 100:
        return rgb
    factor = contrast_factor(contrast)
    LOGGER.debug("Contrast %s (factor %.4f)", contrast, factor)
    return factor * (rgb - PIVOT) + PIVOT


def apply_saturation(rgb: np.ndarray, saturation: float) -> np.ndarray:
    """Interpolate each pixel towards or away from its gray value."""

    if saturation == 100:
        return rgb
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    gray = GRAY_WEIGHTS[0] * r + GRAY_WEIGHTS[1] * g + GRAY_WEIGHTS[2] * b
    amount = saturation / 100.0
    LOGGER.debug("Saturation %s", saturation)
    return gray[..., None] + amount * (rgb - gray[..., None])


def apply_warmth(rgb: np.ndarray, warmth: float) -> np.ndarray:
    """Shift red up and blue down (or the reverse for negative warmth)."""

    if warmth == 0:
        return rgb
    shift = (warmth / 100.0) * TONE_SHIFT
    result = rgb.copy()
    result[..., 0] = rgb[..., 0] + shift
    result[..., 2] = rgb[..., 2] - shift
    LOGGER.debug("Warmth %s (shift %.2f)", warmth, shift)
    return result


def apply_highlights_shadows(rgb: np.ndarray, highlights: float, shadows: float) -> np.ndarray:
    """Brighten or darken pixels depending on which side of the pivot they sit.

    Pixels whose mean channel value is above 128 receive the highlight shift,
    the rest receive the shadow shift. A pixel never receives both.
    """
    if highlights == 0 and shadows == 0:
        return rgb
    lum = (rgb[..., 0] + rgb[..., 1] + rgb[..., 2]) / 3.0
    delta = np.zeros_like(lum)
    if highlights != 0:
        bright = lum > PIVOT
        delta = np.where(bright, ((lum - PIVOT) / 127.0) * (highlights / 100.0) * TONE_SHIFT, delta)
    if shadows != 0:
        dark = lum <= PIVOT
        delta = np.where(dark, ((PIVOT - lum) / PIVOT) * (shadows / 100.0) * TONE_SHIFT, delta)
    LOGGER.debug("Highlights %s shadows %s", highlights, shadows)
    return rgb + delta[..., None]


def clamp_to_bytes(rgb: np.ndarray) -> np.ndarray:
    """Clamp to [0, 255] and round half-to-even, as a clamped byte array would."""

    return np.rint(np.clip(rgb, 0.0, 255.0)).astype(np.uint8)


def apply_adjustments(buffer: np.ndarray, adjustments: AdjustmentSet) -> np.ndarray:
    """Apply the grading pipeline to an RGB or RGBA ``uint8`` buffer.

    Stages run in a fixed order: brightness and exposure, contrast, saturation,
    warmth, highlights/shadows, then a final clamp. Every stage after the first
    is skipped when its inputs are neutral. Alpha is copied through untouched.

    Args:
        buffer: Array of shape (H, W, 3) or (H, W, 4) with dtype ``uint8``.
        adjustments: Adjustment values to apply.

    Returns:
        A new buffer with the same shape and dtype. A neutral adjustment set
        returns an exact copy of the input.
    """
    if buffer.ndim != 3 or buffer.shape[2] not in (3, 4):
        raise ValueError(f"Expected an (H, W, 3|4) buffer, got shape {buffer.shape}")
    if buffer.dtype != np.uint8:
        raise ValueError(f"Expected a uint8 buffer, got {buffer.dtype}")

    if adjustments.is_neutral:
        return buffer.copy()

    rgb = buffer[..., :3].astype(np.float64)
    rgb = apply_brightness_exposure(rgb, adjustments.brightness, adjustments.exposure)
    rgb = apply_contrast(rgb, adjustments.contrast)
    rgb = apply_saturation(rgb, adjustments.saturation)
    rgb = apply_warmth(rgb, adjustments.warmth)
    rgb = apply_highlights_shadows(rgb, adjustments.highlights, adjustments.shadows)

    result = buffer.copy()
    result[..., :3] = clamp_to_bytes(rgb)
    return result


__all__ = [
    "ADJUSTMENT_RANGES",
    "AdjustmentSet",
    "NEUTRAL_ADJUSTMENTS",
    "apply_adjustments",
    "apply_brightness_exposure",
    "apply_contrast",
    "apply_highlights_shadows",
    "apply_saturation",
    "apply_warmth",
    "clamp_to_bytes",
    "contrast_factor",
]
