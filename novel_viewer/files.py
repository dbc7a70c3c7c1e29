"""Text source backed by files on disk, for reading local documents."""

import asyncio
from pathlib import Path

from .api import decode_text_auto
from .models import DocumentKey, OpenedText, TextChunk
from .window import FetchError, TextSource


class LocalFileSource(TextSource):
    """Serves ranged reads from `root/<album_id>/<item_id>`.

    External keys are treated as plain paths.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, key: DocumentKey) -> Path:
        return self.root / key.album_id / key.item_id

    def read_range(self, key: DocumentKey, offset: int, length: int) -> TextChunk:
        path = self.path_for(key)
        try:
            total = path.stat().st_size
            with open(path, "rb") as f:
                f.seek(max(0, offset))
                data = f.read(max(0, length))
        except OSError as e:
            raise FetchError(f"Could not read {path}: {e}") from e
        next_offset = max(0, offset) + len(data)
        return TextChunk(
            text=data.decode("utf-8", errors="replace"),
            next_offset=next_offset,
            total_bytes=total,
            done=next_offset >= total,
        )

    async def fetch_range(self, key: DocumentKey, offset: int, length: int) -> TextChunk:
        return await asyncio.to_thread(self.read_range, key, offset, length)

    async def fetch_full_text(self, source_url: str) -> OpenedText:
        path = Path(source_url)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise FetchError(f"Could not read {path}: {e}") from e
        return OpenedText(text=decode_text_auto(data), title=path.stem)
