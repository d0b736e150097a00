from __future__ import annotations

from pathlib import Path
import io
import sys
import threading

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

try:
    from .documentation import documents
except ImportError:  # pragma: no cover - fallback for direct execution
    from tests.documentation import documents

np = pytest.importorskip("numpy")
pytest.importorskip("PIL.Image")
from PIL import Image  # noqa: E402  # pylint: disable=wrong-import-position

from listing_photo_editor import batch as batch_module  # noqa: E402  # pylint: disable=wrong-import-position
from listing_photo_editor.adjustments import NEUTRAL_ADJUSTMENTS, AdjustmentSet  # noqa: E402
from listing_photo_editor.batch import (  # noqa: E402
    BatchFailure,
    BatchItem,
    BatchOrchestrator,
    BatchReport,
    BatchSuccess,
    EmptySelectionError,
    PhotoSelection,
    export_batch,
)
from listing_photo_editor.watermark import WatermarkSpec  # noqa: E402


def _png(width: int = 6, height: int = 4, color=(100, 110, 120)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def _items(count: int) -> list[BatchItem]:
    return [BatchItem(id=f"p{index}", source=_png(4 + index, 4)) for index in range(1, count + 1)]


@documents("Bulk edits report progress once per photo")
def test_three_photos_all_succeed_with_ordered_progress():
    progress = []

    outcomes = BatchOrchestrator().run(
        _items(3), AdjustmentSet(brightness=110), WatermarkSpec(), lambda done, total: progress.append((done, total))
    )

    assert [type(outcome) for outcome in outcomes] == [BatchSuccess] * 3
    assert [outcome.item.id for outcome in outcomes] == ["p1", "p2", "p3"]
    assert progress == [(1, 3), (2, 3), (3, 3)]
    assert [outcome.photo.width for outcome in outcomes] == [5, 6, 7]


@documents("One broken photo never fails the rest of the batch")
def test_failures_are_isolated_per_photo():
    items = [
        BatchItem(id="p1", source=_png()),
        BatchItem(id="p2", source=b"corrupt", display_name="pool.jpg"),
        BatchItem(id="p3", source=_png()),
    ]
    progress = []

    outcomes = BatchOrchestrator().run(
        items, NEUTRAL_ADJUSTMENTS, WatermarkSpec(), lambda done, total: progress.append(done)
    )

    assert [outcome.ok for outcome in outcomes] == [True, False, True]
    failure = outcomes[1]
    assert isinstance(failure, BatchFailure)
    assert failure.error_type == "DecodeError"
    assert failure.message.startswith("pool.jpg: ")
    assert progress == [1, 2, 3]


def test_empty_selection_is_rejected():
    with pytest.raises(EmptySelectionError):
        BatchOrchestrator().run([], NEUTRAL_ADJUSTMENTS, WatermarkSpec())
    assert issubclass(EmptySelectionError, ValueError)


def test_selection_is_snapshotted_at_start():
    items = _items(2)

    def grow(done: int, total: int) -> None:
        items.append(BatchItem(id=f"late{done}", source=_png()))

    outcomes = BatchOrchestrator().run(items, NEUTRAL_ADJUSTMENTS, WatermarkSpec(), grow)

    assert [outcome.item.id for outcome in outcomes] == ["p1", "p2"]


def test_watermark_logo_is_loaded_once_per_run(monkeypatch: pytest.MonkeyPatch):
    calls = []
    original = batch_module.resolve_watermark_image

    def spy(spec, *, fetcher=None):
        calls.append(spec)
        return original(spec, fetcher=fetcher)

    monkeypatch.setattr(batch_module, "resolve_watermark_image", spy)
    watermark = WatermarkSpec(enabled=True, kind="image", image_source=_png(4, 4, (255, 0, 0)), size=12, padding=5)

    outcomes = BatchOrchestrator().run(_items(3), NEUTRAL_ADJUSTMENTS, watermark)

    assert len(calls) == 1
    assert all(outcome.ok for outcome in outcomes)


@documents("A logo host that is unreachable never fails the batch")
def test_unreachable_logo_host_still_exports_photos():
    requested = []

    def fetcher(url: str) -> bytes:
        requested.append(url)
        raise ConnectionError("logo host down")

    item = BatchItem(id="p1", source=_png())
    watermark = WatermarkSpec(enabled=True, kind="image", image_source="https://cdn.example/logo.png")

    outcomes = BatchOrchestrator(fetcher=fetcher).run([item], NEUTRAL_ADJUSTMENTS, watermark)
    (plain,) = BatchOrchestrator().run([item], NEUTRAL_ADJUSTMENTS, WatermarkSpec())

    assert requested == ["https://cdn.example/logo.png"]
    assert [type(outcome) for outcome in outcomes] == [BatchSuccess]
    assert outcomes[0].photo.encoded_image == plain.photo.encoded_image


def test_broken_logo_still_exports_photos():
    watermark = WatermarkSpec(enabled=True, kind="image", image_source=b"not a logo")

    outcomes = BatchOrchestrator().run(_items(2), NEUTRAL_ADJUSTMENTS, watermark)

    assert all(outcome.ok for outcome in outcomes)


def test_thread_pool_preserves_input_order():
    lock = threading.Lock()
    progress = []

    def record(done: int, total: int) -> None:
        with lock:
            progress.append(done)

    items = _items(6)
    outcomes = BatchOrchestrator(max_workers=3).run(items, AdjustmentSet(contrast=120), WatermarkSpec(), record)

    assert [outcome.item.id for outcome in outcomes] == [item.id for item in items]
    assert progress == [1, 2, 3, 4, 5, 6]


def test_invalid_worker_count_is_rejected():
    with pytest.raises(ValueError):
        BatchOrchestrator(max_workers=0)


def test_should_stop_ends_the_run_early():
    progress = []

    outcomes = BatchOrchestrator().run(
        _items(3),
        NEUTRAL_ADJUSTMENTS,
        WatermarkSpec(),
        lambda done, total: progress.append(done),
        should_stop=lambda: len(progress) >= 1,
    )

    assert [outcome.item.id for outcome in outcomes] == ["p1"]
    assert progress == [1]


def test_should_stop_with_thread_pool_returns_a_contiguous_prefix():
    progress = []

    outcomes = BatchOrchestrator(max_workers=2).run(
        _items(6),
        NEUTRAL_ADJUSTMENTS,
        WatermarkSpec(),
        lambda done, total: progress.append(done),
        should_stop=lambda: len(progress) >= 1,
    )

    assert [outcome.item.id for outcome in outcomes] == ["p1", "p2"]
    assert progress == [1, 2]


def test_report_summarises_outcomes():
    items = [BatchItem(id="p1", source=_png()), BatchItem(id="p2", source=b"corrupt")]
    outcomes = BatchOrchestrator().run(items, NEUTRAL_ADJUSTMENTS, WatermarkSpec())

    report = BatchReport(outcomes)
    summary = report.to_dict()

    assert (report.success_count, report.failure_count) == (1, 1)
    assert summary["total"] == 2
    assert summary["success_rate"] == "50.0%"
    assert summary["results"][0]["id"] == "p1"
    assert summary["errors"][0]["id"] == "p2"
    assert report.failure_messages()[0].startswith("p2: ")
    assert "successful=1" in str(report)


def test_export_batch_saves_only_successes():
    items = [BatchItem(id="p1", source=_png()), BatchItem(id="p2", source=b"corrupt")]
    outcomes = BatchOrchestrator().run(items, AdjustmentSet(warmth=10), WatermarkSpec())
    saved = []

    report = export_batch(outcomes, saved.append)

    assert report.success_count == 1
    assert len(saved) == 1
    (exports,) = saved
    assert [record["id"] for record in exports] == ["p1"]
    assert exports[0]["adjustments"]["warmth"] == 10
    assert "watermark" not in exports[0]


def test_export_batch_skips_save_when_everything_failed():
    outcomes = BatchOrchestrator().run([BatchItem(id="p1", source=b"corrupt")], NEUTRAL_ADJUSTMENTS, WatermarkSpec())
    saved = []

    report = export_batch(outcomes, saved.append)

    assert saved == []
    assert report.failure_count == 1


def test_photo_selection_tracks_selected_items_in_collection_order():
    items = _items(3)
    selection = PhotoSelection(items)

    assert len(selection) == 3
    assert selection.toggle("p2") is False
    assert [item.id for item in selection.selected()] == ["p1", "p3"]
    selection.deselect_all()
    assert selection.selected() == []
    assert selection.toggle("p3") is True
    assert selection.toggle("p1") is True
    assert [item.id for item in selection.selected()] == ["p1", "p3"]
    selection.select_all()
    assert len(selection) == 3
    assert selection.is_selected("p2")


def test_photo_selection_rejects_unknown_ids():
    selection = PhotoSelection(_items(1))

    with pytest.raises(KeyError):
        selection.toggle("missing")
    with pytest.raises(KeyError):
        selection.is_selected("missing")


def test_deselected_selection_cannot_start_a_batch():
    selection = PhotoSelection(_items(2))
    selection.deselect_all()

    with pytest.raises(EmptySelectionError):
        BatchOrchestrator().run(selection.selected(), NEUTRAL_ADJUSTMENTS, WatermarkSpec())
