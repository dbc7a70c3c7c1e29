import asyncio

import pytest

from novel_viewer.config import ViewerConfig
from novel_viewer.models import OpenedText, ProgressRecord, TextChunk
from novel_viewer.progress import LocalProgressCache, ProgressStore
from novel_viewer.window import FetchError, TextSource


class FakeTextSource(TextSource):
    """In-memory documents. Set `gate` to hold fetches until it is set."""

    def __init__(self, documents=None, texts=None):
        self.documents = documents or {}
        self.texts = texts or {}
        self.calls = []
        self.gate = None
        self.fail = False

    async def fetch_range(self, key, offset, length):
        self.calls.append((key, offset, length))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise FetchError("range read failed")
        data = self.documents[key]
        piece = data[offset:offset + length]
        next_offset = offset + len(piece)
        return TextChunk(
            text=piece.decode("utf-8", errors="replace"),
            next_offset=next_offset,
            total_bytes=len(data),
            done=next_offset >= len(data),
        )

    async def fetch_full_text(self, source_url):
        if self.fail:
            raise FetchError("download failed")
        return OpenedText(text=self.texts[source_url], title="External")


class FakeProgressStore(ProgressStore):
    def __init__(self):
        self.progress = {}
        self.album_last = {}
        self.preferences = None
        self.progress_writes = []
        self.album_writes = []
        self.preference_writes = []
        self.fail_reads = False
        self.fail_writes = False

    async def read_progress(self, key):
        if self.fail_reads:
            raise FetchError("read failed")
        return self.progress.get(key)

    async def write_progress(self, key, progress):
        if self.fail_writes:
            raise FetchError("write failed")
        self.progress_writes.append((key, progress))
        self.progress[key] = ProgressRecord(progress, "2099-01-01T00:00:00")

    async def read_album_last(self, album_id):
        if self.fail_reads:
            raise FetchError("read failed")
        return self.album_last.get(album_id)

    async def write_album_last(self, album_id, item_id, progress):
        if self.fail_writes:
            raise FetchError("write failed")
        self.album_writes.append((album_id, item_id, progress))

    async def read_preferences(self):
        return self.preferences

    async def write_preferences(self, prefs):
        self.preference_writes.append(prefs.to_dict())


def numbered_lines(count, width=40):
    """ASCII lines of exactly `width` characters."""
    return [f"{i:05d} ".ljust(width, "x") for i in range(count)]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def cache(tmp_path):
    return LocalProgressCache(tmp_path / "progress.json")


@pytest.fixture
def store():
    return FakeProgressStore()


@pytest.fixture
def fast_config():
    return ViewerConfig(
        window_bytes=4000,
        meta_probe_bytes=64,
        chunk_lines=50,
        publish_every_lines=100,
        progress_debounce=0.01,
        preferences_debounce=0.01,
        restore_attempts=2,
        frame_interval=0,
    )
