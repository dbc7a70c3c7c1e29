"""Sliding byte window over a remote text document."""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_CONFIG, ViewerConfig
from .models import DocumentKey, OpenedText, TextChunk, Window, clamp01

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a remote read or write fails."""
    pass


class TextSource:
    """Ranged reads of remote text objects.

    Implemented over HTTP by `api.DriveApiClient`; tests use in-memory fakes.
    """

    async def fetch_meta(self, key: DocumentKey, length: int) -> TextChunk:
        """Read the first `length` bytes; used for the total size."""
        return await self.fetch_range(key, 0, length)

    async def fetch_range(self, key: DocumentKey, offset: int, length: int) -> TextChunk:
        raise NotImplementedError

    async def fetch_full_text(self, source_url: str) -> OpenedText:
        """Load an external or publicly shared text in one piece."""
        raise NotImplementedError


@dataclass(frozen=True)
class LoadedWindow:
    """A window together with the text decoded from it."""
    window: Window
    text: str


def window_start(target_byte: int, total: int, width: int) -> int:
    """Start byte of a window of `width` centered on `target_byte`."""
    half = width // 2
    return max(0, min(max(0, total - width), target_byte - half))


class ByteWindowManager:
    """Holds the loaded byte range of one document.

    The window and its text are replaced together or not at all. Recenters
    are single-flight: a request arriving while one is outstanding is
    dropped. `reset()` bumps a generation counter so a fetch that finishes
    after a document switch is thrown away.
    """

    def __init__(self, source: TextSource, config: ViewerConfig = DEFAULT_CONFIG):
        self.source = source
        self.config = config
        self.loaded: Optional[LoadedWindow] = None
        self._busy = False
        self._generation = 0

    @property
    def window(self) -> Optional[Window]:
        return self.loaded.window if self.loaded else None

    @property
    def text(self) -> str:
        return self.loaded.text if self.loaded else ""

    @property
    def busy(self) -> bool:
        return self._busy

    def reset(self) -> None:
        """Forget the current window and abandon any fetch in flight."""
        self._generation += 1
        self._busy = False
        self.loaded = None

    def _build_window(self, key: DocumentKey, start: int, chunk: TextChunk, total: int) -> Window:
        total = max(1, chunk.total_bytes or total)
        end = max(start, chunk.next_offset)
        end = min(end, start + self.config.window_bytes, max(total, 1))
        return Window(start=start, end=max(start, end), total=total, key=key)

    async def load_initial(
        self,
        key: DocumentKey,
        target_byte: Optional[int] = None,
        fraction: Optional[float] = None,
    ) -> Optional[LoadedWindow]:
        """Probe the document size, then load a window around the target.

        The target is either an absolute byte or a fraction of the document.
        Returns None if the manager was reset while fetching.
        """
        generation = self._generation
        meta = await self.source.fetch_meta(key, self.config.meta_probe_bytes)
        total = max(1, meta.total_bytes or meta.next_offset or 1)

        if target_byte is None:
            target_byte = math.floor(clamp01(fraction or 0.0) * (total - 1))
        target_byte = max(0, min(total - 1, int(target_byte)))

        start = window_start(target_byte, total, self.config.window_bytes)
        chunk = await self.source.fetch_range(key, start, self.config.window_bytes)
        if generation != self._generation:
            logger.debug("Dropping initial window for %s after reset", key)
            return None

        self.loaded = LoadedWindow(
            window=self._build_window(key, start, chunk, total),
            text=chunk.text,
        )
        logger.debug("Loaded %s bytes %d-%d of %d", key, self.loaded.window.start,
                     self.loaded.window.end, self.loaded.window.total)
        return self.loaded

    async def recenter(self, key: DocumentKey, fraction: float) -> Optional[LoadedWindow]:
        """Replace the window with one centered on a global fraction.

        Returns the new window, or None when the request was dropped
        (another recenter in flight, wrong document, reset mid-fetch).
        Raises FetchError with the previous window left intact.
        """
        current = self.window
        if self._busy or current is None or current.key != key:
            return None

        self._busy = True
        generation = self._generation
        try:
            total = current.total or 1
            target_byte = math.floor(clamp01(fraction) * total)
            start = window_start(target_byte, total, self.config.window_bytes)
            chunk = await self.source.fetch_range(key, start, self.config.window_bytes)
            if generation != self._generation:
                logger.debug("Dropping recentered window for %s after reset", key)
                return None
            self.loaded = LoadedWindow(
                window=self._build_window(key, start, chunk, total),
                text=chunk.text,
            )
            return self.loaded
        finally:
            if generation == self._generation:
                self._busy = False

    def translate_scroll_to_global(self, local_fraction: float) -> float:
        """Position within the loaded text -> fraction of the whole document."""
        local_fraction = clamp01(local_fraction)
        window = self.window
        if window is None or window.total <= 0:
            return local_fraction
        global_byte = window.start + local_fraction * (window.end - window.start)
        return clamp01(global_byte / window.total)

    def translate_global_to_window_local(self, global_fraction: float) -> float:
        """Fraction of the whole document -> position within the loaded text."""
        global_fraction = clamp01(global_fraction)
        window = self.window
        if window is None or window.total <= 0:
            return global_fraction
        span = max(1, window.end - window.start)
        return clamp01((global_fraction * window.total - window.start) / span)

    def should_recenter(self, local_fraction: float, global_fraction: float) -> bool:
        """True when reading has come close to an edge of the loaded window
        that is not also an edge of the document."""
        if self.window is None or self._busy:
            return False
        config = self.config
        if local_fraction > config.recenter_high and global_fraction < config.document_end_guard:
            return not self.window.at_document_end
        if local_fraction < config.recenter_low and global_fraction > config.document_start_guard:
            return not self.window.at_document_start
        return False
