from __future__ import annotations

from pathlib import Path
import io
import sys

import pytest
import requests

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

from listing_photo_editor import io_utils  # noqa: E402  # pylint: disable=wrong-import-position
from listing_photo_editor.io_utils import (  # noqa: E402  # pylint: disable=wrong-import-position
    DecodeError,
    EncodeError,
    ProcessingContext,
    WatermarkAssetError,
    decode_data_url,
    encode_jpeg,
    ensure_rgba_buffer,
    load_image,
    read_watermark_file,
    to_data_url,
    write_bytes_atomic,
)


def _encoded(image: Image.Image, fmt: str = "PNG", **kwargs) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


def test_load_image_from_bytes_returns_rgba():
    data = _encoded(Image.new("RGB", (3, 2), (10, 20, 30)))

    buffer = load_image(data)

    assert buffer.shape == (2, 3, 4)
    assert buffer.dtype == np.uint8
    assert buffer[0, 0].tolist() == [10, 20, 30, 255]


def test_load_image_from_path_and_data_url(tmp_path: Path):
    data = _encoded(Image.new("RGBA", (2, 2), (1, 2, 3, 4)))
    path = tmp_path / "photo.png"
    path.write_bytes(data)

    from_path = load_image(path)
    from_str = load_image(str(path))
    from_url = load_image(to_data_url(data, "image/png"))

    assert np.array_equal(from_path, from_str)
    assert np.array_equal(from_path, from_url)
    assert from_path[1, 1].tolist() == [1, 2, 3, 4]


def test_load_image_copies_numpy_sources():
    source = np.full((2, 2, 3), 7, dtype=np.uint8)

    buffer = load_image(source)
    buffer[0, 0, 0] = 99

    assert buffer.shape == (2, 2, 4)
    assert source[0, 0, 0] == 7


def test_load_image_applies_exif_orientation():
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 degrees clockwise on display
    data = _encoded(Image.new("RGB", (4, 2), (200, 200, 200)), "JPEG", exif=exif)

    buffer = load_image(data)

    assert buffer.shape[:2] == (4, 2)


def test_load_image_uses_fetcher_for_urls():
    data = _encoded(Image.new("RGB", (2, 1), (5, 6, 7)))
    requested = []

    def fetcher(url: str) -> bytes:
        requested.append(url)
        return data

    buffer = load_image("https://cdn.example.com/photo.png", fetcher=fetcher)

    assert requested == ["https://cdn.example.com/photo.png"]
    assert buffer.shape == (1, 2, 4)


@pytest.mark.parametrize(
    "error",
    [
        requests.ConnectionError("connection refused"),
        ConnectionError("connection refused"),
        TimeoutError("connection refused"),
        OSError("connection refused"),
    ],
)
def test_fetch_failures_become_decode_errors(error: Exception):
    def fetcher(url: str) -> bytes:
        raise error

    with pytest.raises(DecodeError, match="connection refused"):
        load_image("https://cdn.example.com/photo.png", fetcher=fetcher)


def test_fetch_url_uses_requests(monkeypatch: pytest.MonkeyPatch):
    calls = {}

    class FakeResponse:
        content = b"payload"

        def raise_for_status(self) -> None:
            return None

    def fake_get(url, timeout):
        calls["url"] = url
        calls["timeout"] = timeout
        return FakeResponse()

    monkeypatch.setattr(io_utils.requests, "get", fake_get)

    assert io_utils.fetch_url("https://example.com/a.jpg") == b"payload"
    assert calls == {"url": "https://example.com/a.jpg", "timeout": io_utils.DEFAULT_FETCH_TIMEOUT}


@documents("Undecodable sources fail with DecodeError")
def test_decode_errors(tmp_path: Path):
    with pytest.raises(DecodeError):
        load_image(b"definitely not an image")
    with pytest.raises(DecodeError):
        load_image(tmp_path / "missing.jpg")
    with pytest.raises(DecodeError):
        load_image("data:image/png;base64,@@@")
    with pytest.raises(DecodeError):
        load_image(12345)  # type: ignore[arg-type]


def test_unusable_paths_become_decode_errors():
    with pytest.raises(DecodeError):
        load_image("x" * 5000)


def test_oversized_images_become_decode_errors(monkeypatch: pytest.MonkeyPatch):
    data = _encoded(Image.new("RGB", (10, 10), (10, 20, 30)))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)

    with pytest.raises(DecodeError):
        load_image(data)


def test_data_url_helpers_round_trip():
    url = to_data_url(b"\x00\x01logo", "image/png")

    assert url.startswith("data:image/png;base64,")
    assert decode_data_url(url) == b"\x00\x01logo"


def test_read_watermark_file(tmp_path: Path):
    logo = tmp_path / "logo.png"
    logo.write_bytes(b"png-bytes")

    assert read_watermark_file(logo) == to_data_url(b"png-bytes", "image/png")
    with pytest.raises(WatermarkAssetError):
        read_watermark_file(tmp_path / "absent.png")


def test_ensure_rgba_buffer_pads_alpha_and_validates():
    padded = ensure_rgba_buffer(np.zeros((1, 1, 3), dtype=np.uint8))

    assert padded[0, 0].tolist() == [0, 0, 0, 255]
    with pytest.raises(DecodeError):
        ensure_rgba_buffer(np.zeros((1, 1, 2), dtype=np.uint8))
    with pytest.raises(DecodeError):
        ensure_rgba_buffer(np.zeros((1, 1, 4), dtype=np.uint16))


@documents("Encoding the same pixels twice yields identical bytes")
def test_encode_jpeg_is_deterministic():
    rng = np.random.default_rng(3)
    buffer = rng.integers(0, 256, size=(16, 16, 4), dtype=np.uint8)
    buffer[..., 3] = 255

    first = encode_jpeg(buffer)
    second = encode_jpeg(buffer.copy())

    assert first == second
    assert first[:2] == b"\xff\xd8"
    with Image.open(io.BytesIO(first)) as decoded:
        assert decoded.format == "JPEG"
        assert decoded.mode == "RGB"
        assert decoded.size == (16, 16)


def test_encode_jpeg_flattens_transparency_onto_black():
    buffer = np.full((8, 8, 4), (255, 255, 255, 0), dtype=np.uint8)

    with Image.open(io.BytesIO(encode_jpeg(buffer))) as decoded:
        pixels = np.array(decoded)

    assert pixels.max() <= 3


def test_encode_jpeg_rejects_bad_buffers():
    with pytest.raises(EncodeError):
        encode_jpeg(np.zeros((4, 4), dtype=np.uint8))


def test_write_bytes_atomic_replaces_destination(tmp_path: Path):
    destination = tmp_path / "nested" / "photo.jpg"

    write_bytes_atomic(destination, b"first")
    write_bytes_atomic(destination, b"second")

    assert destination.read_bytes() == b"second"
    assert [p.name for p in destination.parent.iterdir()] == ["photo.jpg"]


def test_processing_context_cleans_up_on_failure(tmp_path: Path):
    destination = tmp_path / "photo.jpg"

    with pytest.raises(RuntimeError):
        with ProcessingContext(destination) as staged:
            staged.write_bytes(b"partial")
            raise RuntimeError("encoder crashed")

    assert not destination.exists()
    assert list(tmp_path.iterdir()) == []
