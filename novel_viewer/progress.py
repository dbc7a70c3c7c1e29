"""Reading progress: conversion between page, scroll and document positions,
plus debounced persistence to the remote store and a local cache."""

import asyncio
import json
import logging
import math
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .config import DEFAULT_CONFIG, PROGRESS_FILE, ViewerConfig
from .models import (
    AlbumLast,
    DocumentKey,
    ProgressRecord,
    ViewerPreferences,
    clamp01,
    last_viewed_key,
)
from .window import ByteWindowManager, FetchError

logger = logging.getLogger(__name__)


def page_to_fraction(page_index: int, total_pages: int) -> float:
    """Fraction for a page index. A single-page document is fully read."""
    if total_pages <= 1:
        return 1.0
    page_index = max(0, min(total_pages - 1, int(page_index)))
    return page_index / (total_pages - 1)


def fraction_to_page(fraction: float, total_pages: int) -> int:
    if total_pages <= 1:
        return 0
    # Round half up
    return int(math.floor(clamp01(fraction) * (total_pages - 1) + 0.5))


class ProgressStore:
    """Remote progress and settings store.

    Implemented over HTTP by `api.DriveApiClient`. Reads return None when
    nothing is stored; any method may raise FetchError.
    """

    async def read_progress(self, key: DocumentKey) -> Optional[ProgressRecord]:
        raise NotImplementedError

    async def write_progress(self, key: DocumentKey, progress: float) -> None:
        raise NotImplementedError

    async def read_album_last(self, album_id: str) -> Optional[AlbumLast]:
        raise NotImplementedError

    async def write_album_last(self, album_id: str, item_id: str, progress: float) -> None:
        raise NotImplementedError

    async def read_preferences(self) -> Optional[ViewerPreferences]:
        raise NotImplementedError

    async def write_preferences(self, prefs: ViewerPreferences) -> None:
        raise NotImplementedError


class LocalProgressCache:
    """Last-known progress kept in a JSON file on this machine."""

    def __init__(self, path: Optional[Path] = PROGRESS_FILE):
        self.path = path
        self.entries = {}
        self.load()

    def load(self):
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable progress cache %s: %s", self.path, e)
            return
        if isinstance(data, dict):
            self.entries = data

    def save(self):
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.entries, f, indent=2)
        except OSError as e:
            logger.warning("Could not write progress cache %s: %s", self.path, e)

    def read(self, key: str) -> Optional[ProgressRecord]:
        return ProgressRecord.from_dict(self.entries.get(key))

    def write(self, key: str, progress: float) -> ProgressRecord:
        record = ProgressRecord.now(progress)
        self.entries[key] = record.to_dict()
        self.save()
        return record

    def get_last_viewed(self, album_id: str, user_id: Optional[str] = None) -> Optional[str]:
        return self.entries.get(last_viewed_key(album_id, user_id))

    def set_last_viewed(self, album_id: str, item_id: str, user_id: Optional[str] = None):
        self.entries[last_viewed_key(album_id, user_id)] = item_id
        self.save()


class Debouncer:
    """Trailing-edge debounce for a coroutine function.

    Every `call` cancels the pending one; only the last arguments run, once
    `delay` seconds have passed without another call.
    """

    def __init__(self, func: Callable[..., Awaitable], delay: float):
        self.func = func
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: tuple = ()
        self._tasks: set = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def call(self, *args) -> None:
        self.cancel()
        self._args = args
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.ensure_future(self.func(*self._args))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Debounced call failed", exc_info=task.exception())

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Run a pending call now and wait for running ones."""
        if self._handle is not None:
            self.cancel()
            await self.func(*self._args)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class ProgressReconciler:
    """Single authority for the reader's position.

    `global_progress` is the fraction of the whole document and is what
    gets persisted. `local_progress` is the same position relative to the
    loaded text (the window, for windowed documents). After a (re)load the
    position to return to is parked in `pending_restore_fraction` (local)
    and `pending_restore_global` until pagination settles.
    """

    def __init__(
        self,
        store: Optional[ProgressStore],
        cache: LocalProgressCache,
        window: Optional[ByteWindowManager] = None,
        user_id: Optional[str] = None,
        config: ViewerConfig = DEFAULT_CONFIG,
    ):
        self.store = store
        self.cache = cache
        self.window = window
        self.user_id = user_id
        self.config = config

        self.document: Optional[DocumentKey] = None
        self.global_progress = 0.0
        self.local_progress = 0.0
        self.page_index = 0
        self.pending_restore_fraction: Optional[float] = None
        self.pending_restore_global: Optional[float] = None

        self._debouncer = Debouncer(self.save, config.progress_debounce)

    # -- document lifecycle -------------------------------------------------

    def attach(self, document: Optional[DocumentKey]) -> None:
        self._debouncer.cancel()
        self.document = document
        self.global_progress = 0.0
        self.local_progress = 0.0
        self.page_index = 0
        self.pending_restore_fraction = None
        self.pending_restore_global = None

    @property
    def windowed(self) -> bool:
        return (
            self.document is not None
            and self.document.is_windowed
            and self.window is not None
            and self.window.window is not None
        )

    def to_global(self, local_fraction: float) -> float:
        local_fraction = clamp01(local_fraction)
        if self.windowed:
            return self.window.translate_scroll_to_global(local_fraction)
        return local_fraction

    def to_local(self, global_fraction: float) -> float:
        global_fraction = clamp01(global_fraction)
        if self.windowed:
            return self.window.translate_global_to_window_local(global_fraction)
        return global_fraction

    def _set_position(self, local_fraction: float) -> float:
        self.local_progress = clamp01(local_fraction)
        self.global_progress = self.to_global(self.local_progress)
        return self.global_progress

    # -- initial position ---------------------------------------------------

    async def compute_initial_progress(self, document: DocumentKey) -> float:
        """Where to resume a document.

        The local cache wins unless the server holds a strictly newer
        record; the album resume pointer is used when neither exists.
        """
        local = self.cache.read(document.cache_key(self.user_id))
        if document.is_external or self.store is None:
            return local.progress if local else 0.0

        server = None
        try:
            server = await self.store.read_progress(document)
        except FetchError as e:
            logger.warning("Could not read progress for %s: %s", document, e)

        if local is not None and local.is_newer_or_equal(server):
            return local.progress
        if server is not None:
            return server.progress

        try:
            album_last = await self.store.read_album_last(document.album_id)
        except FetchError as e:
            logger.warning("Could not read album progress for %s: %s", document.album_id, e)
            album_last = None
        if album_last is not None and album_last.item_id == document.item_id:
            return album_last.progress
        return 0.0

    def begin_restore(self, global_fraction: float) -> None:
        """Park a position to return to once pagination is stable."""
        self.global_progress = clamp01(global_fraction)
        self.pending_restore_global = self.global_progress
        self.pending_restore_fraction = self.to_local(self.global_progress)
        self.local_progress = self.pending_restore_fraction

    @property
    def restoring(self) -> bool:
        return self.pending_restore_fraction is not None

    def restore_after_load(self, total_pages: int) -> Optional[float]:
        """Turn the parked position into a page index.

        Returns the local scroll fraction the scroll container should be
        moved to, or None when nothing was pending.
        """
        if self.pending_restore_fraction is None:
            return None
        local = clamp01(self.pending_restore_fraction)
        self.page_index = fraction_to_page(local, total_pages)
        self.local_progress = local
        if self.pending_restore_global is not None:
            self.global_progress = self.pending_restore_global
        else:
            self.global_progress = self.to_global(local)
        self.pending_restore_fraction = None
        self.pending_restore_global = None
        return local

    # -- reader input -------------------------------------------------------

    async def on_page_change(self, page_index: int, total_pages: int, save: bool = True) -> float:
        """Explicit page navigation; saved immediately."""
        total_pages = max(1, int(total_pages))
        self.page_index = max(0, min(total_pages - 1, int(page_index)))
        self._set_position(page_to_fraction(self.page_index, total_pages))
        if save:
            self._debouncer.cancel()
            await self.save(self.global_progress)
        return self.global_progress

    def on_continuous_scroll(self, scroll_top: float, scrollable_height: float, total_pages: int) -> float:
        """Scroll event; saved after the debounce interval."""
        if scrollable_height and scrollable_height > 0:
            local = scroll_top / scrollable_height
        else:
            local = 0.0
        self._set_position(local)
        self.page_index = fraction_to_page(self.global_progress, total_pages)
        self.queue_save()
        return self.global_progress

    def set_global(self, global_fraction: float, total_pages: int) -> float:
        """Jump to a document fraction (slider)."""
        self.global_progress = clamp01(global_fraction)
        self.local_progress = self.to_local(self.global_progress)
        self.page_index = fraction_to_page(self.local_progress, total_pages)
        return self.global_progress

    # -- persistence --------------------------------------------------------

    def queue_save(self, progress: Optional[float] = None) -> None:
        if self.document is None:
            return
        self._debouncer.call(self.global_progress if progress is None else progress, self.document)

    async def flush(self) -> None:
        await self._debouncer.flush()

    def cancel_pending_save(self) -> None:
        self._debouncer.cancel()

    async def save(self, progress: Optional[float] = None, document: Optional[DocumentKey] = None) -> None:
        """Write progress: local cache first, then the remote store.

        Remote failures are logged and otherwise ignored; the cache copy
        wins on the next load.
        """
        document = document or self.document
        if document is None:
            return
        progress = clamp01(self.global_progress if progress is None else progress)
        self.cache.write(document.cache_key(self.user_id), progress)
        if document.is_external or self.store is None:
            return
        self.cache.set_last_viewed(document.album_id, document.item_id, self.user_id)
        try:
            await self.store.write_progress(document, progress)
            await self.store.write_album_last(document.album_id, document.item_id, progress)
        except FetchError as e:
            logger.warning("Progress for %s kept locally only: %s", document, e)
