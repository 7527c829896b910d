import base64
from unittest.mock import Mock

import pytest
import requests
from PIL import Image

from models.config import PipelineConfig
from models.data_models import PageMeta
from services.edge_locator import PixelCache
from services.errors import RenderError
from services.image_loader import ImageLoader, compose_pages
from conftest import data_url, png_bytes


@pytest.mark.unit
def test_data_url_round_trip():
    img = Image.new("RGB", (40, 30), (200, 10, 10))
    loader = ImageLoader(session=Mock())
    loaded = loader.load(data_url(img))
    assert loaded.size == (40, 30)
    assert loaded.getpixel((5, 5)) == (200, 10, 10)

    mime, b64 = loader.to_inline(data_url(img))
    assert mime == "image/png"
    assert base64.b64decode(b64) == png_bytes(img)


@pytest.mark.unit
def test_non_base64_data_url_rejected():
    with pytest.raises(ValueError):
        ImageLoader(session=Mock()).read_bytes("data:image/png,rawdata")


@pytest.mark.unit
def test_local_path(tmp_path):
    path = tmp_path / "shot.jpg"
    Image.new("RGB", (20, 10), "white").save(path, format="JPEG")
    loader = ImageLoader(session=Mock())
    assert loader.load(str(path)).size == (20, 10)
    assert loader.to_inline(str(path))[0] == "image/jpeg"


@pytest.mark.unit
def test_http_url_uses_session_with_timeout():
    img = Image.new("RGB", (12, 8), "white")
    response = Mock()
    response.content = png_bytes(img)
    response.headers = {"Content-Type": "image/png; charset=binary"}
    session = Mock()
    session.get.return_value = response

    loader = ImageLoader(session=session, config=PipelineConfig(image_timeout_seconds=7))
    data, mime = loader.read_bytes("https://cdn.example.test/a.png?sig=1")

    assert data == response.content
    assert mime == "image/png"
    session.get.assert_called_once_with("https://cdn.example.test/a.png?sig=1", timeout=7)
    response.raise_for_status.assert_called_once()


@pytest.mark.unit
def test_failed_pages_get_default_size(tmp_path):
    good = Image.new("RGB", (300, 500), "white")
    not_image = tmp_path / "notes.png"
    not_image.write_text("not an image", encoding="utf-8")
    session = Mock()
    session.get.side_effect = requests.ConnectionError("offline")

    loader = ImageLoader(session=session)
    images, pages = loader.load_pages([
        data_url(good),
        str(tmp_path / "missing.png"),
        str(not_image),
        "https://cdn.example.test/b.png",
    ])

    assert images[0] is not None
    assert images[1:] == [None, None, None]
    assert pages == [PageMeta(300, 500), PageMeta(375, 667), PageMeta(375, 667), PageMeta(375, 667)]


@pytest.mark.unit
def test_oversized_page_gets_default_size(monkeypatch):
    # 500 * 500 = 250000 像素，超过上限两倍时 Pillow 直接抛出 DecompressionBombError
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    tall = Image.new("RGB", (500, 500), "white")
    loader = ImageLoader(session=Mock())

    with pytest.raises(ValueError):
        loader.load(data_url(tall))

    images, pages = loader.load_pages([data_url(tall)])
    assert images == [None]
    assert pages == [PageMeta(375, 667)]


@pytest.mark.unit
def test_compose_pages_stacks_vertically():
    first = Image.new("RGB", (300, 200), (255, 0, 0))
    second = Image.new("RGB", (200, 100), (0, 0, 255))
    composite = compose_pages([first, second], background="#000000")

    assert composite.width == 300 and composite.height == 300
    assert composite.offsets == (0, 200)
    assert composite.image.getpixel((10, 10)) == (255, 0, 0)
    assert composite.image.getpixel((10, 250)) == (0, 0, 255)
    assert composite.image.getpixel((250, 250)) == (0, 0, 0)

    cache = PixelCache.from_composite(composite)
    assert cache.page(1).shape == (100, 200, 3)


@pytest.mark.unit
def test_compose_keeps_slot_for_missing_page():
    img = Image.new("RGB", (100, 50), "white")
    composite = compose_pages([None, img], [PageMeta(100, 80), PageMeta(100, 50)], background="#0f1115")
    assert composite.offsets == (0, 80)
    assert composite.image.getpixel((5, 5)) == (15, 17, 21)


@pytest.mark.unit
def test_compose_without_any_image_raises():
    with pytest.raises(RenderError):
        compose_pages([None, None])
