"""Bulk photo editing with per-photo failure isolation.

The orchestrator runs the same decode, grade, watermark and encode steps as the
single-photo editor over a selection of photos. A photo that fails becomes a
:class:`BatchFailure`; the rest of the batch carries on. Progress is reported
once per photo through an ``on_progress(completed, total)`` callback.

Example Usage
-------------

    from listing_photo_editor import BatchItem, BatchOrchestrator, apply_preset, default_watermark

    items = [BatchItem(id="kitchen", source="kitchen.jpg"), BatchItem(id="pool", source="pool.jpg")]
    outcomes = BatchOrchestrator().run(
        items,
        apply_preset("bright-airy"),
        default_watermark("Casa Realty").with_overrides(enabled=True),
        on_progress=lambda done, total: print(f"{done}/{total}"),
    )
"""
from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from PIL import Image

from .adjustments import AdjustmentSet
from .io_utils import Fetcher, ImageSource
from .pipeline import RenderedPhoto, _render_worker
from .watermark import WatermarkSpec, resolve_watermark_image

LOGGER = logging.getLogger("listing_photo_editor")
BATCH_LOGGER = LOGGER.getChild("batch")

ProgressCallback = Callable[[int, int], None]
SaveCallback = Callable[[List[Dict[str, Any]]], Any]


class EmptySelectionError(ValueError):
    """Raised when a batch is started without any selected photos."""


@dataclasses.dataclass(frozen=True)
class BatchItem:
    """A photo in a collection.

    Attributes:
        id: Identifier of the photo.
        source: URL, path, bytes, data URL or decoded image.
        display_name: Optional human-readable name.
    """

    id: str
    source: ImageSource
    display_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.id


@dataclasses.dataclass(frozen=True)
class BatchSuccess:
    item: BatchItem
    photo: RenderedPhoto

    ok = True


@dataclasses.dataclass(frozen=True)
class BatchFailure:
    item: BatchItem
    reason: str
    error_type: str = "Exception"

    ok = False

    @property
    def message(self) -> str:
        return f"{self.item.label}: {self.reason}"


BatchOutcome = Union[BatchSuccess, BatchFailure]


class BatchReport:
    """Summary of a batch run; counts are read from the outcomes, never inferred."""

    def __init__(self, outcomes: Sequence[BatchOutcome]) -> None:
        self.outcomes = list(outcomes)

    @property
    def succeeded(self) -> List[BatchSuccess]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, BatchSuccess)]

    @property
    def failed(self) -> List[BatchFailure]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, BatchFailure)]

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def failure_messages(self) -> List[str]:
        return [failure.message for failure in self.failed]

    def exports(self) -> List[Dict[str, Any]]:
        return [success.photo.export_record() for success in self.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        total = len(self.outcomes)
        return {
            "total": total,
            "successful": self.success_count,
            "failed": self.failure_count,
            "success_rate": f"{(self.success_count / total * 100):.1f}%" if total else "0%",
            "results": [
                {
                    "id": success.item.id,
                    "adjustments": success.photo.adjustments.to_dict(),
                    "watermark": success.photo.watermark.to_dict() if success.photo.watermark else None,
                    "bytes": len(success.photo.encoded_image),
                }
                for success in self.succeeded
            ],
            "errors": [
                {"id": failure.item.id, "error": failure.reason, "type": failure.error_type}
                for failure in self.failed
            ],
        }

    def __str__(self) -> str:
        return (
            f"BatchReport(total={len(self.outcomes)}, successful={self.success_count}, "
            f"failed={self.failure_count})"
        )


class PhotoSelection:
    """Tracks which photos of a collection are selected for bulk editing.

    Every photo starts selected. :meth:`selected` returns items in collection
    order regardless of the order they were toggled in.
    """

    def __init__(self, items: Iterable[BatchItem]) -> None:
        self._items = list(items)
        self._ids = {item.id for item in self._items}
        self._selected = set(self._ids)

    def _require(self, item_id: str) -> None:
        if item_id not in self._ids:
            raise KeyError(item_id)

    def toggle(self, item_id: str) -> bool:
        """Flip the selection of ``item_id`` and return its new state."""

        self._require(item_id)
        if item_id in self._selected:
            self._selected.discard(item_id)
            return False
        self._selected.add(item_id)
        return True

    def is_selected(self, item_id: str) -> bool:
        self._require(item_id)
        return item_id in self._selected

    def select_all(self) -> None:
        self._selected = set(self._ids)

    def deselect_all(self) -> None:
        self._selected.clear()

    def selected(self) -> List[BatchItem]:
        return [item for item in self._items if item.id in self._selected]

    def __len__(self) -> int:
        return len(self._selected)


class BatchOrchestrator:
    """Applies one adjustment set and watermark to many photos.

    Args:
        max_workers: Photos rendered at once. ``1`` (the default) processes the
            selection strictly one after another.
        fetcher: Optional downloader for remote sources and logos.
    """

    def __init__(self, *, max_workers: int = 1, fetcher: Optional[Fetcher] = None) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be a positive integer")
        self.max_workers = max_workers
        self.fetcher = fetcher

    def _process(
        self,
        item: BatchItem,
        adjustments: AdjustmentSet,
        watermark: WatermarkSpec,
        watermark_image: Optional[Image.Image],
    ) -> BatchOutcome:
        try:
            photo = _render_worker(
                item.source,
                adjustments,
                watermark,
                item_id=item.id,
                watermark_image=watermark_image,
                fetcher=self.fetcher,
            )
        except Exception as exc:  # pylint: disable=broad-except  # each photo fails on its own
            BATCH_LOGGER.warning("Failed to process %s: %s", item.label, exc, exc_info=True)
            return BatchFailure(item=item, reason=str(exc) or type(exc).__name__, error_type=type(exc).__name__)
        return BatchSuccess(item=item, photo=photo)

    def run(
        self,
        items: Sequence[BatchItem],
        adjustments: AdjustmentSet,
        watermark: WatermarkSpec,
        on_progress: Optional[ProgressCallback] = None,
        *,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[BatchOutcome]:
        """Render every item and return one outcome per item, in input order.

        Args:
            items: Selected photos.
            adjustments: Adjustments for every photo; captured once at start.
            watermark: Watermark for every photo; its logo is loaded once.
            on_progress: Called with ``(completed, total)`` after each photo.
            should_stop: Checked before each photo; a true result ends the run
                early and returns the outcomes gathered so far.

        Raises:
            EmptySelectionError: If ``items`` is empty.
        """
        selection = list(items)
        if not selection:
            raise EmptySelectionError("Select at least one photo")

        total = len(selection)
        watermark_image = resolve_watermark_image(watermark, fetcher=self.fetcher)
        BATCH_LOGGER.info("Starting batch of %s photo(s) with %s worker(s)", total, self.max_workers)

        if self.max_workers <= 1:
            outcomes = self._run_sequential(selection, adjustments, watermark, watermark_image, on_progress, should_stop)
        else:
            outcomes = self._run_parallel(selection, adjustments, watermark, watermark_image, on_progress, should_stop)

        report = BatchReport(outcomes)
        BATCH_LOGGER.info(
            "Finished batch: %s succeeded, %s failed", report.success_count, report.failure_count
        )
        return outcomes

    def _run_sequential(
        self,
        selection: List[BatchItem],
        adjustments: AdjustmentSet,
        watermark: WatermarkSpec,
        watermark_image: Optional[Image.Image],
        on_progress: Optional[ProgressCallback],
        should_stop: Optional[Callable[[], bool]],
    ) -> List[BatchOutcome]:
        total = len(selection)
        outcomes: List[BatchOutcome] = []
        for item in selection:
            if should_stop is not None and should_stop():
                BATCH_LOGGER.info("Batch stopped after %s of %s photo(s)", len(outcomes), total)
                break
            outcomes.append(self._process(item, adjustments, watermark, watermark_image))
            if on_progress is not None:
                on_progress(len(outcomes), total)
        return outcomes

    def _run_parallel(
        self,
        selection: List[BatchItem],
        adjustments: AdjustmentSet,
        watermark: WatermarkSpec,
        watermark_image: Optional[Image.Image],
        on_progress: Optional[ProgressCallback],
        should_stop: Optional[Callable[[], bool]],
    ) -> List[BatchOutcome]:
        total = len(selection)
        results: List[Optional[BatchOutcome]] = [None] * total
        completed = 0
        submitted = 0
        stopped = False

        # Photos are submitted in input order, at most max_workers at a time, so
        # a stop request always leaves a contiguous prefix of finished photos.
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            pending: Dict[Future, int] = {}
            while True:
                while not stopped and submitted < total and len(pending) < self.max_workers:
                    if should_stop is not None and should_stop():
                        stopped = True
                        break
                    future = executor.submit(
                        self._process, selection[submitted], adjustments, watermark, watermark_image
                    )
                    pending[future] = submitted
                    submitted += 1
                if not pending:
                    break
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    results[pending.pop(future)] = future.result()
                    completed += 1
                    if on_progress is not None:
                        on_progress(completed, total)

        if stopped:
            BATCH_LOGGER.info("Batch stopped after %s of %s photo(s)", completed, total)
        return [outcome for outcome in results[:submitted] if outcome is not None]


def export_batch(outcomes: Sequence[BatchOutcome], save: Optional[SaveCallback] = None) -> BatchReport:
    """Hand successful exports to ``save`` and return the run summary.

    ``save`` is only called when at least one photo succeeded. Errors raised by
    the callback propagate to the caller.
    """
    report = BatchReport(outcomes)
    if save is not None and report.success_count:
        BATCH_LOGGER.info("Saving %s processed photo(s)", report.success_count)
        save(report.exports())
    for message in report.failure_messages():
        BATCH_LOGGER.warning("Not exported: %s", message)
    return report


__all__ = [
    "BatchFailure",
    "BatchItem",
    "BatchOrchestrator",
    "BatchOutcome",
    "BatchReport",
    "BatchSuccess",
    "EmptySelectionError",
    "PhotoSelection",
    "export_batch",
]
