from pathlib import Path

import pytest
from PIL import Image


def write_png(path: Path, color=(255, 200, 0, 255)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGBA', (8, 8), color).save(path, 'PNG')
    return path


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeFetcher:
    """AssetFetcher writing a small PNG per requested ID."""

    def __init__(self, directory: Path, fail_ids=()):
        self.directory = directory
        self.fail_ids = set(fail_ids)
        self.calls = []

    async def fetch_asset(self, emoji_id: str):
        self.calls.append(emoji_id)
        if emoji_id in self.fail_ids:
            raise ConnectionError("network down")
        return str(write_png(self.directory / f"{emoji_id}.png"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher(tmp_path):
    return FakeFetcher(tmp_path / "downloads")


@pytest.fixture
def make_png():
    return write_png


@pytest.fixture
def make_fetcher(tmp_path):
    def factory(fail_ids=()):
        return FakeFetcher(tmp_path / "downloads", fail_ids)
    return factory
