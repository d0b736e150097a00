from __future__ import annotations

from pathlib import Path
import io
import re
import sys

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

np = pytest.importorskip("numpy")
pytest.importorskip("PIL.Image")
from PIL import Image  # noqa: E402  # pylint: disable=wrong-import-position

import listing_photo_editor as lpe  # noqa: E402  # pylint: disable=wrong-import-position
from listing_photo_editor import pipeline  # noqa: E402  # pylint: disable=wrong-import-position


def _png(size=(12, 8), color=(120, 130, 140)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_package_exports_editor_entry_points():
    for name in ("render_photo", "BatchOrchestrator", "apply_preset", "run_pipeline"):
        assert name in lpe.__all__


def test_render_photo_produces_jpeg_and_metadata():
    adjustments = lpe.apply_preset("luxury")

    photo = lpe.render_photo(_png(), adjustments, lpe.default_watermark("Casa"), item_id="p1")

    assert photo.id == "p1"
    assert (photo.width, photo.height) == (12, 8)
    assert photo.encoded_image[:2] == b"\xff\xd8"
    assert photo.adjustments is adjustments
    assert photo.watermark is None
    record = photo.export_record()
    assert set(record) == {"id", "encoded_image", "adjustments"}
    assert record["adjustments"]["brightness"] == 105


def test_export_record_includes_enabled_watermark():
    watermark = lpe.WatermarkSpec(enabled=True, text="Casa", size=12, padding=5)

    photo = lpe.render_photo(_png((80, 40)), lpe.NEUTRAL_ADJUSTMENTS, watermark)

    assert photo.watermark == watermark
    assert photo.export_record()["watermark"]["text"] == "Casa"


def test_render_buffer_grades_before_watermarking():
    buffer = np.full((4, 4, 4), (100, 100, 100, 255), dtype=np.uint8)

    out = pipeline.render_buffer(buffer, lpe.AdjustmentSet(brightness=150), lpe.WatermarkSpec())

    assert out[0, 0].tolist() == [150, 150, 150, 255]
    assert buffer[0, 0, 0] == 100


def test_render_photo_propagates_decode_errors():
    with pytest.raises(lpe.DecodeError):
        lpe.render_photo(b"garbage", lpe.NEUTRAL_ADJUSTMENTS, lpe.WatermarkSpec())


def test_render_photo_survives_a_failing_logo_download():
    def fetcher(url: str) -> bytes:
        raise TimeoutError("logo host timed out")

    watermark = lpe.WatermarkSpec(enabled=True, kind="image", image_source="https://cdn.example/logo.png")

    photo = lpe.render_photo(_png(), lpe.NEUTRAL_ADJUSTMENTS, watermark, fetcher=fetcher)
    plain = lpe.render_photo(_png(), lpe.NEUTRAL_ADJUSTMENTS, lpe.WatermarkSpec())

    assert photo.encoded_image == plain.encoded_image
    assert photo.watermark == watermark


def test_render_photo_loads_logo_once_when_not_supplied(monkeypatch: pytest.MonkeyPatch):
    calls = []
    original = pipeline.resolve_watermark_image

    def spy(spec, *, fetcher=None):
        calls.append(spec)
        return original(spec, fetcher=fetcher)

    monkeypatch.setattr(pipeline, "resolve_watermark_image", spy)
    watermark = lpe.WatermarkSpec(enabled=True, kind="image", image_source=_png((4, 4)))

    lpe.render_photo(_png(), lpe.NEUTRAL_ADJUSTMENTS, watermark)

    assert calls == [watermark]


def test_save_rendered_photo_defaults_to_timestamped_name(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    photo = lpe.render_photo(_png(), lpe.NEUTRAL_ADJUSTMENTS, lpe.WatermarkSpec())

    saved = lpe.save_rendered_photo(photo)

    assert saved.parent == tmp_path
    assert re.fullmatch(r"edited-photo-\d+\.jpg", saved.name)
    assert saved.read_bytes() == photo.encoded_image


def test_save_rendered_photo_to_explicit_destination(tmp_path: Path):
    photo = lpe.render_photo(_png(), lpe.NEUTRAL_ADJUSTMENTS, lpe.WatermarkSpec())
    destination = tmp_path / "exports" / "kitchen.jpg"

    assert lpe.save_rendered_photo(photo, destination) == destination
    with Image.open(destination) as exported:
        assert exported.size == (12, 8)
