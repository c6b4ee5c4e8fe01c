import io

import httpx
import numpy as np
import pytest
from PIL import Image

from automator.pipeline.acquisition import (
    ImageAcquisition,
    ImageOutcome,
    ImageState,
    clean_image_bytes,
    storage_key_for,
)
from automator.pipeline.watermark_remover import AlphaMapCache, WatermarkRemover
from automator.remote.base import CandidateImage, replace_with_normal_size
from automator.storage import LocalStorageClient

from .conftest import FakeFeed


def png_bytes(width: int, height: int, color=(90, 120, 150)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def candidate(name: str) -> CandidateImage:
    return CandidateImage(image_id=name, display_url=f"https://images.example.com/{name}=s512")


class ImageServer:
    """httpx mock transport serving generated images by path."""

    def __init__(self, images: dict[str, bytes]):
        self.images = images
        self.requested: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requested.append(str(request.url))
        name = request.url.path.lstrip("/").split("=", 1)[0]
        data = self.images.get(name)
        if data is None:
            return httpx.Response(404)
        return httpx.Response(200, content=data, headers={"content-type": "image/png"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def remover(assets_dir):
    return WatermarkRemover(AlphaMapCache(assets_dir))


@pytest.fixture
def server():
    return ImageServer({"big": png_bytes(400, 400), "tiny": png_bytes(40, 40)})


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://lh3.googleusercontent.com/abc=s512", "https://lh3.googleusercontent.com/abc=s0"),
        ("https://lh3.googleusercontent.com/abc=s1024-rj", "https://lh3.googleusercontent.com/abc=s0-rj"),
        ("https://lh3.googleusercontent.com/abc", "https://lh3.googleusercontent.com/abc"),
    ],
)
def test_replace_with_normal_size(url, expected):
    assert replace_with_normal_size(url) == expected


def test_storage_key_for_sanitises_identifier():
    assert storage_key_for("lh3/abc-123") == "processed/lh3_abc-123.png"
    assert storage_key_for("///") == "processed/image.png"


def test_clean_image_bytes_returns_png(remover):
    data, result = clean_image_bytes(png_bytes(300, 300), remover)

    assert result.applied
    with Image.open(io.BytesIO(data)) as image:
        assert image.format == "PNG"
        assert image.size == (300, 300)


async def test_process_substitutes_and_stores(remover, server, tmp_path):
    feed = FakeFeed()
    storage = LocalStorageClient(tmp_path / "out")
    acquisition = ImageAcquisition(
        remover, feed=feed, storage=storage, client=server.client(), enabled=True
    )

    result = await acquisition.process(candidate("big"))

    assert result.outcome == ImageOutcome.PROCESSED
    assert result.storage_key == "processed/big.png"
    assert (tmp_path / "out" / "processed" / "big.png").read_bytes() == result.data
    assert feed.substituted["big"] == result.data
    assert acquisition.state("big") == ImageState.DONE
    assert server.requested == ["https://images.example.com/big=s0"]

    cleaned = np.asarray(Image.open(io.BytesIO(result.data)))
    assert (cleaned[:300, :300] == (90, 120, 150)).all()
    assert not (cleaned[320:368, 320:368] == (90, 120, 150)).all()
    await acquisition.aclose()


async def test_each_image_processed_once(remover, server):
    feed = FakeFeed()
    acquisition = ImageAcquisition(remover, feed=feed, client=server.client(), enabled=True)

    results = await acquisition.process_all([candidate("big"), candidate("big")])
    again = await acquisition.process(candidate("big"))

    assert [r.outcome for r in results] == [ImageOutcome.PROCESSED]
    assert again is None
    assert len(server.requested) == 1


async def test_fetch_failure_marks_failed(remover, server):
    feed = FakeFeed()
    acquisition = ImageAcquisition(remover, feed=feed, client=server.client(), enabled=True)

    result = await acquisition.process(candidate("missing"))

    assert result.outcome == ImageOutcome.FAILED
    assert acquisition.state("missing") == ImageState.FAILED
    assert feed.substituted == {}
    assert await acquisition.process(candidate("missing")) is None


async def test_undecodable_image_marks_failed(remover):
    server = ImageServer({"broken": b"\x89PNG garbage"})
    acquisition = ImageAcquisition(remover, feed=FakeFeed(), client=server.client(), enabled=True)

    result = await acquisition.process(candidate("broken"))

    assert result.outcome == ImageOutcome.FAILED
    assert acquisition.state("broken") == ImageState.FAILED


async def test_image_smaller_than_footprint_is_skipped(remover, server):
    feed = FakeFeed()
    acquisition = ImageAcquisition(remover, feed=feed, client=server.client(), enabled=True)

    result = await acquisition.process(candidate("tiny"))

    assert result.outcome == ImageOutcome.SKIPPED
    assert result.reason == "image smaller than watermark footprint"
    assert acquisition.state("tiny") == ImageState.DONE
    assert feed.substituted == {}


async def test_disabled_skips_without_fetching(remover, server):
    acquisition = ImageAcquisition(remover, client=server.client(), enabled=False)

    result = await acquisition.process(candidate("big"))

    assert result.outcome == ImageOutcome.SKIPPED
    assert result.reason == "disabled"
    assert server.requested == []
    assert acquisition.state("big") is None


async def test_missing_captures_skip_without_fetching(tmp_path, server):
    remover = WatermarkRemover(AlphaMapCache(tmp_path / "missing"))
    acquisition = ImageAcquisition(remover, client=server.client(), enabled=True)

    result = await acquisition.process(candidate("big"))

    assert result.outcome == ImageOutcome.SKIPPED
    assert result.reason == "reference captures unavailable"
    assert server.requested == []


async def test_process_feed_handles_new_images_only(remover, server):
    feed = FakeFeed([candidate("big"), candidate("tiny")])
    acquisition = ImageAcquisition(remover, feed=feed, client=server.client(), enabled=True)

    first = await acquisition.process_feed()
    second = await acquisition.process_feed()

    assert sorted(r.outcome for r in first) == [ImageOutcome.PROCESSED, ImageOutcome.SKIPPED]
    assert second == []
    assert feed.discover_calls == 2


async def test_process_feed_without_feed(remover):
    acquisition = ImageAcquisition(remover, enabled=True)
    assert await acquisition.process_feed() == []
