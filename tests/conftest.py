import asyncio

import numpy as np
import pytest
from PIL import Image

from automator.config import Settings
from automator.remote.base import (
    CandidateImage,
    CompletionResult,
    ImageFeed,
    RemoteActionAdapter,
)


class FakeAdapter(RemoteActionAdapter):
    """Scripted remote page: records calls, fails on request."""

    def __init__(self, probe_results=None, fill_errors=None, trigger_errors=None, completion=None):
        self.calls: list[tuple[str, object]] = []
        self.probe_results = probe_results or {}
        self.fill_errors = fill_errors or {}
        self.trigger_errors = trigger_errors or {}
        self.completion = completion or CompletionResult(success=True)
        self.current: str | None = None
        self.filled: list[str] = []
        self.on_complete = None

    async def probe(self) -> bool:
        attempt = sum(1 for name, _ in self.calls if name == "probe") + 1
        self.calls.append(("probe", attempt))
        result = self.probe_results.get(attempt, True)
        if isinstance(result, Exception):
            raise result
        return result

    async def fill_input(self, content: str) -> None:
        self.calls.append(("fill", content))
        self.current = content
        error = self.fill_errors.get(content)
        if error is not None:
            raise error
        self.filled.append(content)

    async def trigger_action(self) -> None:
        self.calls.append(("trigger", self.current))
        error = self.trigger_errors.get(self.current)
        if error is not None:
            raise error

    async def await_completion(self) -> CompletionResult:
        self.calls.append(("complete", self.current))
        if self.on_complete is not None:
            self.on_complete(self.current)
        await asyncio.sleep(0)
        return self.completion

    def triggered(self) -> list[str]:
        return [arg for name, arg in self.calls if name == "trigger"]


class FakeFeed(ImageFeed):
    def __init__(self, candidates=None):
        self.candidates: list[CandidateImage] = list(candidates or [])
        self.substituted: dict[str, bytes] = {}
        self.discover_calls = 0

    async def discover(self) -> list[CandidateImage]:
        self.discover_calls += 1
        return list(self.candidates)

    async def substitute(self, candidate: CandidateImage, data: bytes) -> None:
        self.substituted[candidate.image_id] = data


class FixedRng:
    def __init__(self, value: float):
        self.value = value
        self.calls: list[tuple[float, float]] = []

    def uniform(self, a, b):
        self.calls.append((a, b))
        return self.value


class RecordingSleep:
    """Instant replacement for cooperative suspension."""

    def __init__(self):
        self.durations: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.durations.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fast_settings(tmp_path):
    return Settings(
        _env_file=None,
        fill_settle_seconds=0,
        error_settle_seconds=0,
        completion_settle_seconds=0,
        generation_start_grace=0,
        image_discovery_delay=0,
        min_delay_floor=5,
        assets_dir=str(tmp_path / "assets"),
        output_dir=str(tmp_path / "output"),
    )


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


def make_logo_capture(size: int) -> Image.Image:
    """Reference capture on black: a bright centred square with a soft ramp."""
    arr = np.zeros((size, size, 3), dtype=np.uint8)
    inner = size // 4
    arr[inner:size - inner, inner:size - inner] = 128
    arr[size // 2 - 2:size // 2 + 2, :] = 64
    return Image.fromarray(arr)


@pytest.fixture
def assets_dir(tmp_path):
    """Directory holding synthetic bg_48.png / bg_96.png captures."""
    path = tmp_path / "assets"
    path.mkdir(exist_ok=True)
    make_logo_capture(48).save(path / "bg_48.png")
    make_logo_capture(96).save(path / "bg_96.png")
    return path
