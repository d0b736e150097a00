"""I/O primitives for the listing photo editor.

This module turns the many shapes a listing photo arrives in (decoded Pillow
images, raw bytes, data URLs, remote URLs, local files) into a contiguous RGBA
pixel buffer, and turns a finished buffer back into JPEG bytes. It also owns the
error taxonomy shared by the rest of the package.

Key Components
--------------

PhotoEditorError
    Base class for engine failures. ``DecodeError``, ``RenderContextError`` and
    ``EncodeError`` are fatal to a single photo; ``WatermarkAssetError`` only
    disables the watermark for one render.

ProcessingContext
    Context manager for atomic file writes using staged temporary files.

Functions
---------

load_image
    Resolve an image source to an RGBA ``uint8`` buffer of shape (H, W, 4).

encode_jpeg
    Rasterise a buffer to JPEG bytes at the fixed export quality.
"""
from __future__ import annotations

import base64
import binascii
import contextlib
import dataclasses
import io
import logging
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Any, Callable, Optional, Union

import numpy as np
import requests
from PIL import Image, ImageOps, UnidentifiedImageError

LOGGER = logging.getLogger("listing_photo_editor")

JPEG_QUALITY = 92
DEFAULT_FETCH_TIMEOUT = 30

ImageSource = Union[str, bytes, bytearray, os.PathLike, Image.Image, np.ndarray]
Fetcher = Callable[[str], bytes]


class PhotoEditorError(RuntimeError):
    """Base class for errors raised while rendering a listing photo."""


class DecodeError(PhotoEditorError):
    """Raised when a source image cannot be fetched or decoded."""


class RenderContextError(PhotoEditorError):
    """Raised when a drawing surface cannot be created for a buffer."""


class EncodeError(PhotoEditorError):
    """Raised when the final buffer cannot be rasterised."""


class WatermarkAssetError(PhotoEditorError):
    """Raised when a watermark logo cannot be loaded."""


@dataclasses.dataclass
class ProcessingContext:
    """Context manager for atomic file writes using staged temporary files.

    Writes to a temporary file in the same directory as the destination, then
    atomically moves it to the final location on success. Cleans up temporary
    files on failure.

    Attributes:
        destination: Final output file path.
        suffix: Temporary file suffix (default: ".tmp").
    """

    destination: Path
    suffix: str = ".tmp"

    def __post_init__(self) -> None:
        self._staged_path: Optional[Path] = None

    def _temp_path(self) -> Path:
        unique = uuid.uuid4().hex
        name = f".{self.destination.name}{self.suffix}-{unique}"
        return self.destination.parent / name

    def __enter__(self) -> Path:
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        self._staged_path = self._temp_path()
        return self._staged_path

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._staged_path is None:
            return False

        staged = self._staged_path
        self._staged_path = None

        if exc_type is None:
            try:
                os.replace(staged, self.destination)
            except Exception:
                with contextlib.suppress(Exception):
                    staged.unlink()
                raise
        else:
            with contextlib.suppress(FileNotFoundError):
                staged.unlink()
        return False


def is_data_url(value: str) -> bool:
    return value.startswith("data:image")


def decode_data_url(value: str) -> bytes:
    """Return the payload of a ``data:image/...;base64,`` URL."""

    header, _, payload = value.partition(",")
    if not payload:
        raise DecodeError("Data URL has no payload")
    if ";base64" not in header:
        raise DecodeError(f"Unsupported data URL encoding: {header!r}")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid base64 payload in data URL: {exc}") from exc


def to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    """Convert encoded image bytes to a base64 data URL."""

    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{b64}"


def read_watermark_file(path: Union[str, os.PathLike]) -> str:
    """Read an uploaded logo file into a data URL usable as a watermark source."""

    file_path = Path(path)
    try:
        data = file_path.read_bytes()
    except OSError as exc:
        raise WatermarkAssetError(f"Unable to read watermark file {file_path}: {exc}") from exc
    mime_type = mimetypes.guess_type(file_path.name)[0] or "image/png"
    return to_data_url(data, mime_type)


def fetch_url(url: str, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> bytes:
    """Download ``url`` and return the response body."""

    LOGGER.debug("Fetching %s", url)
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    return response.content


def _open_bytes(data: bytes, label: str) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeError(f"Unable to decode image from {label}: {exc}") from exc
    return image


def _read_source(source: ImageSource, fetcher: Optional[Fetcher]) -> Image.Image:
    if isinstance(source, Image.Image):
        return source.copy()

    if isinstance(source, (bytes, bytearray)):
        return _open_bytes(bytes(source), "bytes")

    if isinstance(source, os.PathLike):
        source = os.fspath(source)

    if isinstance(source, str):
        if is_data_url(source):
            return _open_bytes(decode_data_url(source), "data URL")

        if source.startswith(("http://", "https://")):
            fetch = fetcher or fetch_url
            try:
                payload = fetch(source)
            except Exception as exc:  # pylint: disable=broad-except  # caller-supplied fetchers raise anything
                raise DecodeError(f"Failed to load image {source}: {exc}") from exc
            return _open_bytes(payload, source)

        path = Path(source)
        try:
            is_file = path.is_file()
        except (OSError, ValueError) as exc:
            raise DecodeError(f"Invalid image path {source[:80]!r}: {exc}") from exc
        if is_file:
            try:
                payload = path.read_bytes()
            except OSError as exc:
                raise DecodeError(f"Unable to read image file {path}: {exc}") from exc
            return _open_bytes(payload, str(path))
        raise DecodeError(f"Image source not found: {source}")

    raise DecodeError(f"Cannot load image from: {type(source).__name__}")


def ensure_rgba_buffer(arr: np.ndarray) -> np.ndarray:
    """Validate and normalise a pixel buffer to contiguous RGBA ``uint8``."""

    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise DecodeError(f"Unsupported buffer shape {arr.shape}; expected (H, W, 3|4)")
    if arr.dtype != np.uint8:
        raise DecodeError(f"Unsupported buffer dtype {arr.dtype}; expected uint8")
    if arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr, alpha], axis=2)
    return np.ascontiguousarray(arr)


def load_image(source: ImageSource, *, fetcher: Optional[Fetcher] = None) -> np.ndarray:
    """Resolve ``source`` to an RGBA ``uint8`` buffer of shape (H, W, 4).

    Args:
        source: Pillow image, numpy buffer, raw bytes, data URL, http(s) URL or path.
        fetcher: Optional callable used instead of :func:`fetch_url` for remote URLs.

    Returns:
        A new contiguous RGBA buffer; the caller's source is never modified.

    Raises:
        DecodeError: If the source cannot be resolved or decoded.
    """
    if isinstance(source, np.ndarray):
        return ensure_rgba_buffer(source).copy()

    image = _read_source(source, fetcher)
    try:
        image = ImageOps.exif_transpose(image)
        if image.mode != "RGBA":
            image = image.convert("RGBA")
    except (OSError, ValueError) as exc:
        raise DecodeError(f"Unable to convert image to RGBA: {exc}") from exc
    if image.width == 0 or image.height == 0:
        raise DecodeError("Decoded image is empty")
    return np.array(image, dtype=np.uint8)


def encode_jpeg(buffer: np.ndarray, quality: int = JPEG_QUALITY) -> bytes:
    """Rasterise ``buffer`` to JPEG bytes.

    Transparent pixels are flattened onto opaque black, matching how a browser
    canvas exports JPEG. Output is deterministic for equal input.

    Raises:
        EncodeError: If the buffer cannot be converted or saved.
    """
    try:
        rgba = ensure_rgba_buffer(buffer)
    except DecodeError as exc:
        raise EncodeError(str(exc)) from exc

    alpha = rgba[:, :, 3:4].astype(np.float64) / 255.0
    if np.all(alpha == 1.0):
        rgb = rgba[:, :, :3]
    else:
        rgb = np.rint(rgba[:, :, :3].astype(np.float64) * alpha).astype(np.uint8)

    output = io.BytesIO()
    try:
        Image.fromarray(np.ascontiguousarray(rgb)).save(output, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise EncodeError(f"Failed to encode JPEG: {exc}") from exc
    data = output.getvalue()
    if not data:
        raise EncodeError("Encoder produced no data")
    LOGGER.debug("Encoded %sx%s buffer to %s bytes (quality %s)", rgb.shape[1], rgb.shape[0], len(data), quality)
    return data


def write_bytes_atomic(destination: Path, data: bytes) -> Path:
    """Write ``data`` to ``destination`` through a staged temporary file."""

    with ProcessingContext(destination) as staged_path:
        staged_path.write_bytes(data)
    return destination


def describe_source(source: Any) -> str:
    """Short human-readable label for log messages."""

    if isinstance(source, (str, os.PathLike)):
        text = os.fspath(source)
        if is_data_url(text):
            return "data URL"
        return text
    if isinstance(source, (bytes, bytearray)):
        return f"{len(source)} bytes"
    if isinstance(source, np.ndarray):
        return f"buffer {source.shape}"
    if isinstance(source, Image.Image):
        return f"image {source.size}"
    return type(source).__name__


__all__ = [
    "DEFAULT_FETCH_TIMEOUT",
    "DecodeError",
    "EncodeError",
    "JPEG_QUALITY",
    "PhotoEditorError",
    "ProcessingContext",
    "RenderContextError",
    "WatermarkAssetError",
    "decode_data_url",
    "describe_source",
    "encode_jpeg",
    "ensure_rgba_buffer",
    "fetch_url",
    "is_data_url",
    "load_image",
    "read_watermark_file",
    "to_data_url",
    "write_bytes_atomic",
]
