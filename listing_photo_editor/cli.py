"""Command-line interface for batch editing a folder of listing photos."""
from __future__ import annotations

import argparse
import contextlib
import dataclasses
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional

from tqdm import tqdm

try:  # pragma: no cover - optional dependency
    import yaml
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    yaml = None

from .adjustments import AdjustmentSet
from .batch import BatchItem, BatchOrchestrator, BatchSuccess, export_batch
from .io_utils import read_watermark_file, write_bytes_atomic
from .presets import DEFAULT_PRESET_ID, apply_preset, preset_ids
from .watermark import WATERMARK_POSITIONS, WatermarkSpec, default_watermark

LOGGER = logging.getLogger("listing_photo_editor")

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".tif", ".tiff"})
OUTPUT_EXTENSION = ".jpg"
MANIFEST_NAME = "manifest.json"

_ADJUSTMENT_FIELDS = tuple(field.name for field in dataclasses.fields(AdjustmentSet))


def _load_config_data(path: Path) -> Mapping[str, Any]:
    """Load configuration from a JSON or YAML file.

    Args:
        path: Path to configuration file (.json, .yaml, or .yml).

    Returns:
        Dictionary mapping configuration keys to values.

    Raises:
        FileNotFoundError: If the configuration file doesn't exist.
        RuntimeError: If a YAML file is requested but pyyaml is not installed.
        ValueError: If the file content is not a valid mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"} and yaml is None:
        raise RuntimeError("YAML configuration files require the optional 'pyyaml' dependency")
    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(path.read_text())  # type: ignore[union-attr]
        else:
            data = json.loads(path.read_text())
    except Exception as exc:  # pragma: no cover - exact exception varies by backend
        raise ValueError(f"Unable to parse configuration file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration file {path} must contain a mapping of option names to values")
    return data


def _normalise_config_keys(raw: Mapping[str, Any]) -> dict[str, Any]:
    normalised: dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            raise ValueError("Configuration keys must be strings")
        normalised[key.replace("-", "_")] = value
    return normalised


def _build_parser_aliases(parser: argparse.ArgumentParser) -> tuple[dict[str, argparse.Action], dict[str, str]]:
    """Map every option spelling (``watermark-text``, ``watermark_text``) to its parser action."""

    dest_to_action: dict[str, argparse.Action] = {}
    alias_to_dest: dict[str, str] = {}
    actions = list(parser._get_positional_actions()) + list(parser._get_optional_actions())
    for action in actions:
        if action.dest in {argparse.SUPPRESS, "help", "config"}:
            continue
        dest_to_action[action.dest] = action
        alias_to_dest[action.dest.replace("-", "_")] = action.dest
        for option_string in action.option_strings:
            alias = option_string.lstrip("-").replace("-", "_")
            alias_to_dest[alias] = action.dest
    return dest_to_action, alias_to_dest


def _coerce_bool(value: Any, *, source: Path, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Invalid boolean for '{key}' in {source}: expected true/false value, got {value!r}")


def _coerce_config_value(action: argparse.Action, value: Any, *, source: Path, key: str) -> Any:
    """Convert configuration values so they match argparse expectations."""

    if value is None:
        return None

    if isinstance(action, argparse._StoreTrueAction):  # type: ignore[attr-defined]
        return _coerce_bool(value, source=source, key=key)

    if action.type is not None:
        try:
            converted = action.type(value)
        except Exception as exc:  # pragma: no cover - delegated to argparse
            raise ValueError(f"Invalid value for '{key}' in {source}: {exc}") from exc
    else:
        converted = value

    if action.choices is not None and converted not in action.choices:
        raise ValueError(
            f"Invalid value for '{key}' in {source}: {converted!r} (choose from {sorted(action.choices)})"
        )

    return converted


def default_output_folder(input_folder: Path) -> Path:
    """Return the default output folder for a given input directory."""

    if input_folder.name:
        return input_folder.parent / f"{input_folder.name}_edited"
    return input_folder / "edited_output"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Apply colour adjustments and a watermark to a folder of listing photos.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional configuration file (JSON by default, YAML when 'pyyaml' is installed)",
    )
    parser.add_argument("input", type=Path, help="Folder that contains the source photos")
    parser.add_argument(
        "output",
        type=Path,
        nargs="?",
        default=None,
        help="Folder where edited photos will be written. Defaults to '<input>_edited' next to the input folder.",
    )
    parser.add_argument(
        "--preset",
        default=DEFAULT_PRESET_ID,
        choices=preset_ids(),
        help="Filter preset that provides a starting point",
    )
    parser.add_argument(
        "--recursive",
        action="store_true",
        help="Process folders recursively and mirror the directory tree in the output",
    )
    parser.add_argument("--suffix", default="_edited", help="Filename suffix appended before the extension")
    parser.add_argument("--overwrite", action="store_true", help="Allow overwriting existing files in the destination")
    parser.add_argument("--dry-run", action="store_true", help="Preview the work without writing any files")
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress reporting (useful for non-interactive environments)",
    )
    parser.add_argument("--workers", type=int, default=1, help="Number of photos rendered at once")

    # Fine control overrides on top of the preset.
    parser.add_argument("--brightness", type=float, default=None, help="Brightness percentage (50-150)")
    parser.add_argument("--contrast", type=float, default=None, help="Contrast percentage (50-150)")
    parser.add_argument("--saturation", type=float, default=None, help="Saturation percentage (0-200)")
    parser.add_argument("--warmth", type=float, default=None, help="Warmth shift (-50 to 50)")
    parser.add_argument("--exposure", type=float, default=None, help="Exposure delta in percent (-50 to 50)")
    parser.add_argument("--highlights", type=float, default=None, help="Highlight shift (-50 to 50)")
    parser.add_argument("--shadows", type=float, default=None, help="Shadow shift (-50 to 50)")
    parser.add_argument("--sharpness", type=float, default=None, help="Recorded in exports only (0-100)")

    parser.add_argument("--organization-name", default="", help="Agency name used as the default watermark text")
    parser.add_argument("--watermark", action="store_true", help="Stamp the agency name as a text watermark")
    parser.add_argument("--watermark-text", default=None, help="Text watermark; implies --watermark")
    parser.add_argument(
        "--watermark-image", type=Path, default=None, help="Logo file used as an image watermark; implies --watermark"
    )
    parser.add_argument("--watermark-position", default="bottom-right", choices=WATERMARK_POSITIONS)
    parser.add_argument("--watermark-opacity", type=float, default=70, help="Watermark opacity in percent (10-100)")
    parser.add_argument("--watermark-size", type=int, default=24, help="Font size, or half the logo height (12-72)")
    parser.add_argument("--watermark-padding", type=float, default=20, help="Distance from the edges in pixels (5-100)")

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = _build_parser()
    argv_list = list(argv) if argv is not None else None

    config_args, _ = parser.parse_known_args(argv_list)
    if config_args.config is not None:
        try:
            raw_config = _load_config_data(config_args.config)
            normalised_config = _normalise_config_keys(raw_config)
            dest_to_action, alias_to_dest = _build_parser_aliases(parser)

            converted_defaults: dict[str, Any] = {}
            for key, value in normalised_config.items():
                dest = alias_to_dest.get(key)
                if dest is None:
                    raise ValueError(f"Unknown configuration option '{key}' in {config_args.config}")
                converted_defaults[dest] = _coerce_config_value(
                    dest_to_action[dest], value, source=config_args.config, key=key
                )

            parser.set_defaults(**converted_defaults)
        except (OSError, ValueError, RuntimeError) as exc:
            parser.error(str(exc))

    args = parser.parse_args(argv_list)
    if args.workers < 1:
        parser.error("--workers must be a positive integer")
    if args.output is None:
        args.output = default_output_folder(args.input)
    try:
        build_adjustments(args)
        _watermark_settings(args).validate()
    except ValueError as exc:
        parser.error(str(exc))
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s: %(message)s")
    return args


def build_adjustments(args: argparse.Namespace) -> AdjustmentSet:
    """Construct adjustments from the preset and CLI overrides.

    Raises:
        ValueError: If a resulting value leaves its editor range.
    """
    overrides = {name: getattr(args, name) for name in _ADJUSTMENT_FIELDS if getattr(args, name, None) is not None}
    adjustments = apply_preset(args.preset).with_overrides(**overrides)
    adjustments.validate()
    LOGGER.debug("Using adjustments: %s", adjustments)
    return adjustments


def _watermark_settings(args: argparse.Namespace) -> WatermarkSpec:
    enabled = bool(args.watermark or args.watermark_text or args.watermark_image)
    spec = default_watermark(args.organization_name).with_overrides(
        enabled=enabled,
        kind="image" if args.watermark_image is not None else "text",
        position=args.watermark_position,
        opacity=args.watermark_opacity,
        size=args.watermark_size,
        padding=args.watermark_padding,
    )
    if args.watermark_text:
        spec = spec.with_overrides(text=args.watermark_text)
    return spec


def build_watermark(args: argparse.Namespace) -> WatermarkSpec:
    """Construct the watermark, reading the logo file when one was given.

    Raises:
        WatermarkAssetError: If the logo file cannot be read.
    """
    spec = _watermark_settings(args)
    if args.watermark_image is not None:
        spec = spec.with_overrides(image_source=read_watermark_file(args.watermark_image))
    LOGGER.debug("Using watermark: %s at %s", spec.kind if spec.enabled else "none", spec.position)
    return spec


def collect_images(folder: Path, recursive: bool) -> Iterator[Path]:
    candidates = folder.rglob("*") if recursive else folder.glob("*")
    for path in candidates:
        if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS:
            yield path


def ensure_output_path(
    input_root: Path,
    output_root: Path,
    source: Path,
    suffix: str,
    recursive: bool,
    *,
    create: bool = True,
) -> Path:
    relative = source.relative_to(input_root) if recursive else Path(source.name)
    destination = output_root / relative
    if create:
        destination.parent.mkdir(parents=True, exist_ok=True)
    return destination.with_name(destination.stem + suffix + OUTPUT_EXTENSION)


def _claim_destination(destination: Path, source: Path, claimed: set[str]) -> Path:
    """Return an export path no earlier photo of the run has claimed.

    Every export is a JPEG, so ``front.jpg`` and ``front.png`` would share
    ``front_edited.jpg``. The later photo gets its source extension folded into
    the name (``front_png_edited.jpg``), then a counter if that is taken too.
    """
    key = destination.as_posix().lower()
    if key not in claimed:
        claimed.add(key)
        return destination

    tail = destination.name[len(source.stem):]
    stem = f"{source.stem}_{source.suffix.lower().lstrip('.')}"
    candidate = destination.with_name(stem + tail)
    counter = 2
    while candidate.as_posix().lower() in claimed:
        candidate = destination.with_name(f"{stem}_{counter}{tail}")
        counter += 1
    claimed.add(candidate.as_posix().lower())
    LOGGER.warning("Export name %s is already used; writing %s as %s", destination.name, source.name, candidate.name)
    return candidate


def _ensure_non_overlapping(input_root: Path, output_root: Path) -> None:
    def _contains(parent: Path, child: Path) -> bool:
        try:
            child.relative_to(parent)
        except ValueError:
            return False
        return True

    if input_root == output_root:
        raise SystemExit("Output folder must be different from the input folder to avoid self-overwrites.")
    if _contains(input_root, output_root):
        raise SystemExit(
            "Output folder cannot be located inside the input folder; choose a sibling or separate directory."
        )
    if _contains(output_root, input_root):
        raise SystemExit(
            "Input folder cannot be located inside the output folder; choose non-overlapping directories."
        )


@contextlib.contextmanager
def _progress_reporter(total: int, *, description: str, enabled: bool) -> Iterator[Optional[Callable[[int, int], None]]]:
    """Yield an ``on_progress`` callback that drives a tqdm bar, or ``None`` when disabled."""

    if not enabled:
        yield None
        return
    with tqdm(total=total, desc=description, unit="photo") as bar:

        def report(completed: int, _total: int) -> None:
            bar.update(completed - bar.n)

        yield report


def _manifest(
    run_id: str,
    args: argparse.Namespace,
    adjustments: AdjustmentSet,
    watermark: WatermarkSpec,
    summary: Mapping[str, Any],
    outputs: Mapping[str, Path],
) -> dict[str, Any]:
    watermark_record = watermark.to_dict()
    if args.watermark_image is not None:
        watermark_record["image_source"] = str(args.watermark_image)
    results = [dict(result, output=str(outputs[result["id"]])) for result in summary["results"]]
    return {
        "run_id": run_id,
        "input": str(args.input),
        "output": str(args.output),
        "preset": args.preset,
        "adjustments": adjustments.to_dict(),
        "watermark": watermark_record if watermark.enabled else None,
        "total": summary["total"],
        "successful": summary["successful"],
        "failed": summary["failed"],
        "results": results,
        "errors": summary["errors"],
    }


def run_pipeline(args: argparse.Namespace) -> int:
    """Edit every photo under ``args.input`` and return the process exit status.

    Returns ``1`` when at least one photo failed, ``0`` otherwise.
    """
    run_id = uuid.uuid4().hex
    adjustments = build_adjustments(args)
    watermark = build_watermark(args)
    input_root = args.input.resolve()
    output_root = args.output.resolve()

    if not input_root.exists():
        raise FileNotFoundError(f"Input folder not found: {input_root}")
    if not input_root.is_dir():
        raise SystemExit(f"Input folder '{input_root}' does not exist or is not a directory")

    _ensure_non_overlapping(input_root, output_root)

    LOGGER.info("Starting batch run %s for %s using '%s' preset", run_id, input_root, args.preset)
    images = sorted(collect_images(input_root, args.recursive))
    if not images:
        LOGGER.warning("No photos found in %s (run %s)", input_root, run_id)
        return 0

    LOGGER.info("Found %s photo(s) to process", len(images))
    items: List[BatchItem] = []
    destinations: dict[str, Path] = {}
    claimed: set[str] = set()
    for image_path in images:
        destination = _claim_destination(
            ensure_output_path(input_root, output_root, image_path, args.suffix, args.recursive, create=False),
            image_path,
            claimed,
        )
        if destination.exists() and not args.overwrite and not args.dry_run:
            LOGGER.warning("Skipping %s (exists, use --overwrite to replace)", destination)
            continue
        item_id = image_path.relative_to(input_root).as_posix()
        if args.dry_run:
            LOGGER.info("Dry run: would process %s -> %s", image_path, destination)
            continue
        items.append(BatchItem(id=item_id, source=image_path, display_name=image_path.name))
        destinations[item_id] = destination

    if args.dry_run or not items:
        LOGGER.info("Finished batch run %s; processed 0 photo(s)", run_id)
        return 0

    orchestrator = BatchOrchestrator(max_workers=args.workers)
    with _progress_reporter(len(items), description="Editing photos", enabled=not args.no_progress) as on_progress:
        outcomes = orchestrator.run(items, adjustments, watermark, on_progress)

    for outcome in outcomes:
        if isinstance(outcome, BatchSuccess):
            write_bytes_atomic(destinations[outcome.item.id], outcome.photo.encoded_image)

    report = export_batch(outcomes)
    manifest = _manifest(run_id, args, adjustments, watermark, report.to_dict(), destinations)
    write_bytes_atomic(output_root / MANIFEST_NAME, json.dumps(manifest, indent=2).encode("utf-8"))

    LOGGER.info(
        "Finished batch run %s; processed %s photo(s), %s failed",
        run_id,
        report.success_count,
        report.failure_count,
    )
    return 1 if report.failure_count else 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    return run_pipeline(args)


__all__ = [
    "IMAGE_EXTENSIONS",
    "build_adjustments",
    "build_watermark",
    "collect_images",
    "default_output_folder",
    "ensure_output_path",
    "main",
    "parse_args",
    "run_pipeline",
]
