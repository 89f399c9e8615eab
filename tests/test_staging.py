import asyncio

import pytest

from conftest import jpeg_bytes, png_bytes
from creative_evaluator.errors import ValidationError
from creative_evaluator.staging import StagingArea, decode_data_uri, encode_all, to_data_uri


def test_to_data_uri_sniffs_format_not_extension():
    uri = to_data_uri(jpeg_bytes(), "misnamed.png")
    assert uri.startswith("data:image/jpeg;base64,")


def test_decode_data_uri_returns_original_bytes():
    content = png_bytes()
    mime, data = decode_data_uri(to_data_uri(content, "a.png"))
    assert mime == "image/png"
    assert data == content


def test_non_image_upload_is_rejected():
    with pytest.raises(ValidationError):
        to_data_uri(b"not an image at all", "notes.txt")


def test_decode_rejects_plain_urls():
    with pytest.raises(ValidationError):
        decode_data_uri("https://example.com/a.png")


def test_staging_area_remove_releases_preview():
    area = StagingArea()
    staged = area.add("logo.png", png_bytes())
    assert staged.preview.startswith("data:image/png;base64,")

    assert area.remove(staged.id) is True
    assert staged.preview is None
    assert len(area) == 0
    assert area.remove(staged.id) is False


def test_staging_area_replace_keeps_position():
    area = StagingArea()
    first = area.add("a.png", png_bytes())
    area.add("b.png", png_bytes())

    replaced = area.replace(first.id, "c.jpg", jpeg_bytes())

    assert [i.name for i in area] == ["c.jpg", "b.png"]
    assert first.preview is None
    assert replaced.data_uri.startswith("data:image/jpeg")


def test_encode_all_keeps_input_order():
    files = [(f"img{i}.png", png_bytes(color=(i * 20, 0, 0))) for i in range(6)]
    staged = asyncio.run(encode_all(files))
    assert [s.name for s in staged] == [name for name, _ in files]
