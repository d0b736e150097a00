"""Named real-estate filter presets.

A preset is a *partial* adjustment set. Applying one always starts from the
neutral values, so switching presets never carries settings over from the
previous selection:

- **original**: no changes
- **luxury**, **modern**, **dramatic**: punchier contrast
- **warm-home**, **sunset**, **vintage**: warmer tones
- **bright-airy**, **coastal**, **natural**: lighter, cleaner looks

Example Usage
-------------

    from listing_photo_editor import apply_preset

    adjustments = apply_preset("warm-home")
    adjustments = adjustments.with_overrides(shadows=10)
"""
from __future__ import annotations

import dataclasses
import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .adjustments import NEUTRAL_ADJUSTMENTS, AdjustmentSet

LOGGER = logging.getLogger("listing_photo_editor")


@dataclasses.dataclass(frozen=True)
class FilterPreset:
    """A named set of adjustment overrides.

    Attributes:
        id: Stable identifier used by callers and config files.
        name: English display name.
        name_es: Spanish display name.
        overrides: Fields to set on top of the neutral adjustments.
    """

    id: str
    name: str
    name_es: str
    overrides: Mapping[str, float] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        unknown = set(self.overrides) - {field.name for field in dataclasses.fields(AdjustmentSet)}
        if unknown:
            raise ValueError(f"Preset '{self.id}' overrides unknown fields: {sorted(unknown)}")
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))

    def display_name(self, language: str = "en") -> str:
        return self.name_es if language == "es" else self.name

    def to_adjustments(self) -> AdjustmentSet:
        return dataclasses.replace(NEUTRAL_ADJUSTMENTS, **self.overrides)


DEFAULT_PRESET_ID = "original"

FILTER_PRESETS: Tuple[FilterPreset, ...] = (
    FilterPreset(id="original", name="Original", name_es="Original"),
    FilterPreset(
        id="luxury",
        name="Luxury",
        name_es="Lujo",
        overrides={"brightness": 105, "contrast": 110, "saturation": 90, "warmth": 5, "highlights": 10},
    ),
    FilterPreset(
        id="warm-home",
        name="Warm Home",
        name_es="Hogar Cálido",
        overrides={"brightness": 102, "contrast": 98, "saturation": 105, "warmth": 15, "shadows": 5},
    ),
    FilterPreset(
        id="modern",
        name="Modern",
        name_es="Moderno",
        overrides={"brightness": 105, "contrast": 115, "saturation": 85, "warmth": -5, "sharpness": 10},
    ),
    FilterPreset(
        id="sunset",
        name="Sunset",
        name_es="Atardecer",
        overrides={"brightness": 100, "contrast": 105, "saturation": 115, "warmth": 25, "highlights": 15},
    ),
    FilterPreset(
        id="bright-airy",
        name="Bright & Airy",
        name_es="Luminoso",
        overrides={
            "brightness": 115,
            "contrast": 95,
            "saturation": 95,
            "exposure": 10,
            "highlights": 20,
            "shadows": 10,
        },
    ),
    FilterPreset(
        id="dramatic",
        name="Dramatic",
        name_es="Dramático",
        overrides={"brightness": 95, "contrast": 125, "saturation": 110, "shadows": -10, "highlights": -5},
    ),
    FilterPreset(
        id="natural",
        name="Natural",
        name_es="Natural",
        overrides={"brightness": 100, "contrast": 102, "saturation": 98, "warmth": 3},
    ),
    FilterPreset(
        id="coastal",
        name="Coastal",
        name_es="Costero",
        overrides={"brightness": 108, "contrast": 100, "saturation": 105, "warmth": -8, "highlights": 10},
    ),
    FilterPreset(
        id="vintage",
        name="Vintage",
        name_es="Vintage",
        overrides={"brightness": 98, "contrast": 95, "saturation": 80, "warmth": 20, "shadows": 10},
    ),
)

_PRESETS_BY_ID: Dict[str, FilterPreset] = {preset.id: preset for preset in FILTER_PRESETS}


def preset_ids() -> Tuple[str, ...]:
    return tuple(preset.id for preset in FILTER_PRESETS)


def get_preset(preset_id: str) -> Optional[FilterPreset]:
    return _PRESETS_BY_ID.get(preset_id)


def apply_preset(preset_id: str) -> AdjustmentSet:
    """Return the adjustments for ``preset_id``.

    Unknown identifiers resolve to the neutral adjustments rather than raising,
    so a stale preset id stored with an old export still renders.
    """
    preset = get_preset(preset_id)
    if preset is None:
        LOGGER.debug("Unknown preset '%s'; using neutral adjustments", preset_id)
        return NEUTRAL_ADJUSTMENTS
    return preset.to_adjustments()


__all__ = [
    "DEFAULT_PRESET_ID",
    "FILTER_PRESETS",
    "FilterPreset",
    "apply_preset",
    "get_preset",
    "preset_ids",
]
