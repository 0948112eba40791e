"""Tests for photo compression."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from fleetzen.errors.draft_errors import InvalidArgumentError, LimitExceededError
from fleetzen.interventions.photos import JPEG_MIME_TYPE, compress_photo, jpeg_file_name


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestCompressPhoto:
    def test_downscales_landscape(self, make_image) -> None:
        out = compress_photo(make_image((400, 200)), max_dimension=100)
        assert (out.width, out.height) == (100, 50)
        assert out.mime_type == JPEG_MIME_TYPE
        assert _decode(out.data).format == "JPEG"
        assert out.size == len(out.data)

    def test_downscales_portrait(self, make_image) -> None:
        out = compress_photo(make_image((150, 300)), max_dimension=100)
        assert (out.width, out.height) == (50, 100)

    def test_small_image_keeps_size(self, make_image) -> None:
        out = compress_photo(make_image((40, 30)), max_dimension=100)
        assert (out.width, out.height) == (40, 30)

    def test_alpha_flattened(self, make_image) -> None:
        out = compress_photo(make_image((20, 20), mode="RGBA"))
        assert _decode(out.data).mode == "RGB"

    def test_exif_orientation_applied(self) -> None:
        img = Image.new("RGB", (80, 40), color=(10, 120, 10))
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 CW on display
        buf = io.BytesIO()
        img.save(buf, format="JPEG", exif=exif)

        out = compress_photo(buf.getvalue(), max_dimension=1000)
        assert (out.width, out.height) == (40, 80)

    def test_empty_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError, match="empty"):
            compress_photo(b"")

    def test_garbage_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError, match="decoded"):
            compress_photo(b"definitely not an image")

    def test_too_large_rejected(self, make_image) -> None:
        data = make_image((10, 10))
        with pytest.raises(LimitExceededError):
            compress_photo(data, max_input_bytes=len(data) - 1)

    def test_too_many_pixels_rejected(self, make_image, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        # over twice the pixel limit: Pillow refuses to decode it
        with pytest.raises(LimitExceededError, match="too many pixels") as exc_info:
            compress_photo(make_image((64, 48)))
        assert exc_info.value.code == "limit-exceeded"


class TestJpegFileName:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("IMG_0001.HEIC", "IMG_0001.jpg"),
            ("shot.png", "shot.jpg"),
            ("archive.tar.gz", "archive.tar.jpg"),
            ("noext", "noext.jpg"),
            ("", "photo.jpg"),
        ],
    )
    def test_names(self, name, expected) -> None:
        assert jpeg_file_name(name) == expected
