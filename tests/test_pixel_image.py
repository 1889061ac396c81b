import io

from PIL import Image

from opentrack.services import pixel as pixel_service


def _assert_transparent_png(data: bytes) -> None:
    assert data.startswith(b"\x89PNG\r\n\x1a\n")
    with Image.open(io.BytesIO(data)) as image:
        assert image.size == (1, 1)
        rgba = image.convert("RGBA")
        assert rgba.getpixel((0, 0))[3] == 0


def test_encoded_pixel_is_transparent_png():
    _assert_transparent_png(pixel_service.encode_transparent_pixel())


def test_fallback_pixel_is_transparent_png():
    _assert_transparent_png(pixel_service.FALLBACK_PIXEL_PNG)


def test_encoding_failure_returns_fallback(monkeypatch):
    def broken():
        raise OSError("encoder unavailable")

    monkeypatch.setattr(pixel_service, "_cached_pixel", broken)

    assert pixel_service.transparent_pixel() == pixel_service.FALLBACK_PIXEL_PNG
