"""One open document in the viewer: loading, pagination, position and mode."""

import asyncio
import logging
from typing import Optional

from .config import DEFAULT_CONFIG, MAX_FONT_SIZE, MIN_FONT_SIZE, THEMES, ViewerConfig
from .models import (
    DocumentKey,
    Page,
    PageList,
    ReaderMode,
    ScrollViewport,
    ViewerPreferences,
    clamp01,
)
from .paginator import Paginator
from .progress import Debouncer, LocalProgressCache, ProgressReconciler, ProgressStore
from .reader_mode import AutoScroller, ReaderModeController, apply_scroll_restore
from .window import ByteWindowManager, FetchError, TextSource

logger = logging.getLogger(__name__)


class ViewerSession:
    """Owns everything about the document currently being read.

    Only one document is open at a time. Opening another, closing, or
    changing the font size abandons pagination in flight and any window
    fetch that has not landed yet.
    """

    def __init__(
        self,
        source: Optional[TextSource] = None,
        store: Optional[ProgressStore] = None,
        cache: Optional[LocalProgressCache] = None,
        user_id: Optional[str] = None,
        preferences: Optional[ViewerPreferences] = None,
        config: ViewerConfig = DEFAULT_CONFIG,
    ):
        self.source = source
        self.store = store
        self.config = config
        self.preferences = preferences or ViewerPreferences()

        self.window = ByteWindowManager(source, config)
        self.progress = ProgressReconciler(
            store, cache if cache is not None else LocalProgressCache(), self.window, user_id, config
        )
        self.paginator = Paginator(self._on_pages, config)
        self.mode = ReaderModeController(self.progress, self.preferences.reader_mode, config)
        self.viewport = ScrollViewport()
        self.autoscroll = AutoScroller(self.viewport, config=config)

        self.document: Optional[DocumentKey] = None
        self.title = ""
        self.text = ""
        self.pages = PageList()
        self.status = ""
        self.text_loaded = False
        self.positioned = False

        self._open_token = 0
        self._pagination_task: Optional[asyncio.Task] = None
        self._tasks: set = set()
        self._preferences_debouncer = Debouncer(self._write_preferences, config.preferences_debounce)

    # -- state exposed to the UI ----------------------------------------------

    @property
    def page_index(self) -> int:
        return self.progress.page_index

    @property
    def current_page(self) -> Page:
        index = max(0, min(len(self.pages) - 1, self.page_index))
        return self.pages[index]

    @property
    def global_progress(self) -> float:
        return self.progress.global_progress

    @property
    def reader_mode(self) -> ReaderMode:
        return self.mode.mode

    @property
    def restoring(self) -> bool:
        return self.progress.restoring or not self.pages.done

    # -- tasks --------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Viewer task failed", exc_info=task.exception())

    async def settle(self) -> None:
        """Wait until pagination and background work have finished."""
        while True:
            pending = [t for t in [self._pagination_task, *self._tasks] if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # -- pagination -----------------------------------------------------------

    def _set_text(self, text: str) -> None:
        self.text = text or ""
        self.pages = PageList(done=False)
        self._pagination_task = asyncio.ensure_future(
            self.paginator.paginate(self.text, self.preferences.font_size)
        )

    def _on_pages(self, page_list: PageList) -> None:
        self.pages = page_list
        if not page_list.done:
            return
        self.positioned = self.text_loaded
        local = self.progress.restore_after_load(len(page_list))
        if local is None:
            if self.page_index >= len(page_list):
                self.progress.page_index = len(page_list) - 1
            return
        if self.mode.is_scroll:
            self._spawn(self._apply_scroll(local))

    async def _apply_scroll(self, fraction: float) -> None:
        await apply_scroll_restore(
            self.viewport, fraction, self.config.restore_attempts, self.config.frame_interval
        )

    # -- lifecycle ----------------------------------------------------------

    async def open_document(self, key: DocumentKey, text: Optional[str] = None, title: str = "") -> bool:
        """Open a stored item (windowed) or an external text.

        External texts are fetched whole unless `text` is given, and always
        start in scroll mode. Returns False if the open failed or was
        overtaken by another open.
        """
        await self.close_document()
        self._open_token += 1
        token = self._open_token
        self.document = key
        self.title = title
        self.progress.attach(key)
        self.status = f"Opening {title or key}..."

        try:
            if key.is_windowed:
                initial = await self.progress.compute_initial_progress(key)
                if token != self._open_token:
                    return False
                loaded = await self.window.load_initial(key, fraction=initial)
                if loaded is None or token != self._open_token:
                    return False
                text = loaded.text
            else:
                if text is None:
                    opened = await self.source.fetch_full_text(key.source_url)
                    if token != self._open_token:
                        return False
                    text = opened.text
                    self.title = title or opened.title
                initial = await self.progress.compute_initial_progress(key)
                self.mode.set_mode(ReaderMode.SCROLL, len(self.pages))
        except FetchError as e:
            if token != self._open_token:
                return False
            logger.warning("Could not open %s: %s", key, e)
            self.status = f"Could not load text: {e}"
            self.progress.attach(key)
            self._set_text("")
            return False

        self.text_loaded = True
        self.progress.begin_restore(initial)
        self._set_text(text)
        self.status = f"Opened {self.title or key}"
        logger.info("Opened %s at %.1f%%", key, initial * 100)
        return True

    async def close_document(self) -> None:
        """Save the position and drop the document."""
        if self.document is None:
            return
        self.autoscroll.stop()
        self.paginator.cancel()
        if self._pagination_task is not None and not self._pagination_task.done():
            self._pagination_task.cancel()
        self._pagination_task = None
        self.window.reset()
        for task in list(self._tasks):
            task.cancel()

        if self.positioned and not self.progress.restoring:
            self.progress.cancel_pending_save()
            await self.progress.save()
        await self.progress.flush()

        logger.debug("Closed %s", self.document)
        self.progress.attach(None)
        self.document = None
        self.text_loaded = False
        self.positioned = False
        self.title = ""
        self.text = ""
        self.pages = PageList()

    async def close(self) -> None:
        await self.close_document()
        await self._preferences_debouncer.flush()

    # -- windowing --------------------------------------------------------------

    async def recenter(self, global_fraction: float) -> bool:
        """Load a window centered on a document fraction and resume there."""
        key = self.document
        if key is None or not key.is_windowed:
            return False
        try:
            loaded = await self.window.recenter(key, global_fraction)
        except FetchError as e:
            logger.warning("Recenter of %s failed: %s", key, e)
            self.status = f"Could not load more text: {e}"
            return False
        if loaded is None or self.document != key:
            return False
        self.progress.begin_restore(global_fraction)
        self._set_text(loaded.text)
        return True

    # -- reader input -----------------------------------------------------------

    def on_scroll_event(self, scroll_top: float, scroll_height: float, client_height: float) -> float:
        """Scroll-mode position report from the UI."""
        self.viewport.scroll_top = scroll_top
        self.viewport.scroll_height = scroll_height
        self.viewport.client_height = client_height
        scrollable = scroll_height - client_height
        if self.document is None or scrollable <= 0 or self.restoring:
            return self.progress.global_progress

        global_fraction = self.progress.on_continuous_scroll(scroll_top, scrollable, len(self.pages))
        if self.document.is_windowed and self.window.should_recenter(
            self.progress.local_progress, global_fraction
        ):
            self._spawn(self.recenter(global_fraction))
        return global_fraction

    async def on_page_navigate(self, page_index: int) -> float:
        """Go to a page; saved immediately.

        Stepping past either end of a windowed document's loaded pages moves
        the window instead, unless that end is the end of the document.
        """
        if self.document is None:
            return 0.0
        total = len(self.pages)
        window = self.window.window
        if self.document.is_windowed and window is not None and self.pages.done:
            edge = None
            if page_index >= total and not window.at_document_end:
                edge = 1.0
            elif page_index < 0 and not window.at_document_start:
                edge = 0.0
            if edge is not None:
                if await self.recenter(self.progress.to_global(edge)):
                    self.progress.cancel_pending_save()
                    await self.progress.save(self.progress.global_progress)
                return self.progress.global_progress
        return await self.progress.on_page_change(page_index, total)

    async def next_page(self) -> float:
        return await self.on_page_navigate(self.page_index + 1)

    async def previous_page(self) -> float:
        return await self.on_page_navigate(self.page_index - 1)

    async def seek_fraction(self, fraction: float, save: bool = True) -> float:
        """Slider jump to a fraction of the whole document; saved immediately."""
        if self.document is None:
            return 0.0
        fraction = clamp01(fraction)
        if self.document.is_windowed and self.window.window is not None:
            if await self.recenter(fraction) and save:
                self.progress.cancel_pending_save()
                await self.progress.save(fraction)
            return self.progress.global_progress
        self.progress.set_global(fraction, len(self.pages))
        self.viewport.scroll_top = self.viewport.max_scroll * self.progress.local_progress
        if save:
            self.progress.cancel_pending_save()
            await self.progress.save()
        return self.progress.global_progress

    # -- presentation -----------------------------------------------------------

    def set_reader_mode(self, mode: ReaderMode) -> bool:
        mode = ReaderMode(mode)
        if not self.mode.set_mode(mode, len(self.pages), self.pages.done):
            return False
        if mode is ReaderMode.SCROLL:
            if self.pages.done:
                self._spawn(self.mode.restore_scroll(self.viewport))
        else:
            self.autoscroll.stop()
        self.preferences.reader_mode = mode
        self._preferences_changed()
        return True

    def set_font_size(self, size: int) -> bool:
        """Change the font size and repaginate, keeping the reading position."""
        size = max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, int(size)))
        if size == self.preferences.font_size:
            return False
        self.preferences.font_size = size
        self._preferences_changed()
        if self.document is None:
            return True
        self.paginator.cancel()
        if not self.progress.restoring:
            self.progress.begin_restore(self.progress.global_progress)
        self._set_text(self.text)
        return True

    def set_font_family(self, family: str) -> None:
        family = (family or "").strip()
        if family and family != self.preferences.font_family:
            self.preferences.font_family = family
            self._preferences_changed()

    def set_theme(self, theme: str) -> None:
        if theme in THEMES and theme != self.preferences.theme:
            self.preferences.theme = theme
            self._preferences_changed()

    def start_auto_scroll(self, screens_per_minute: float = 1.0) -> Optional[asyncio.Task]:
        if not self.mode.is_scroll or self.document is None:
            return None
        self.autoscroll.screens_per_minute = screens_per_minute
        return self.autoscroll.spawn()

    def stop_auto_scroll(self) -> None:
        self.autoscroll.stop()

    # -- preferences ------------------------------------------------------------

    async def load_preferences(self) -> ViewerPreferences:
        """Apply the user's stored viewer settings."""
        if self.store is None:
            return self.preferences
        try:
            prefs = await self.store.read_preferences()
        except FetchError as e:
            logger.warning("Could not read viewer settings: %s", e)
            return self.preferences
        if prefs is not None:
            self.preferences = prefs
            self.mode.mode = prefs.reader_mode
        return self.preferences

    def _preferences_changed(self) -> None:
        if self.store is not None:
            self._preferences_debouncer.call()

    async def _write_preferences(self) -> None:
        try:
            await self.store.write_preferences(self.preferences)
        except FetchError as e:
            logger.warning("Could not save viewer settings: %s", e)
