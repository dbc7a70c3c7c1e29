"""Paged / scroll presentation modes and the scroll-side helpers."""

import asyncio
import logging
import math
from typing import Optional

from .config import DEFAULT_CONFIG, ViewerConfig
from .models import ReaderMode, ScrollViewport, clamp01
from .progress import ProgressReconciler, fraction_to_page, page_to_fraction

logger = logging.getLogger(__name__)


async def apply_scroll_restore(
    viewport: ScrollViewport,
    fraction: float,
    attempts: int = DEFAULT_CONFIG.restore_attempts,
    interval: float = 0,
) -> bool:
    """Scroll `viewport` to a fraction of its scrollable height.

    Layout may not be ready yet, so while the viewport has nothing to
    scroll this yields and retries up to `attempts` times. Returns False if
    it gave up, in which case the viewport is left at the top.
    """
    fraction = clamp01(fraction)
    tries = 0
    while viewport.max_scroll <= 0 and tries < attempts:
        tries += 1
        await asyncio.sleep(interval)
    if viewport.max_scroll <= 0:
        viewport.scroll_top = 0
        logger.debug("Scroll restore gave up after %d attempts", tries)
        return False
    viewport.scroll_top = viewport.max_scroll * fraction
    return True


class ReaderModeController:
    """Switches between paged and scroll presentation.

    Going to scroll mode parks the current page as a scroll fraction that is
    applied once the scroll container has a height; going to paged mode
    picks the page nearest the current scroll fraction.
    """

    def __init__(
        self,
        progress: ProgressReconciler,
        mode: ReaderMode = ReaderMode.PAGED,
        config: ViewerConfig = DEFAULT_CONFIG,
    ):
        self.progress = progress
        self.mode = mode
        self.config = config

    @property
    def is_paged(self) -> bool:
        return self.mode is ReaderMode.PAGED

    @property
    def is_scroll(self) -> bool:
        return self.mode is ReaderMode.SCROLL

    def set_mode(self, mode: ReaderMode, total_pages: int, settled: bool = True) -> bool:
        """Returns True if the mode changed.

        `settled` is False while pagination is still running; a parked
        position is then left for the end of pagination to resolve.
        """
        mode = ReaderMode(mode)
        if mode is self.mode:
            return False
        previous, self.mode = self.mode, mode

        if mode is ReaderMode.SCROLL:
            if self.progress.pending_restore_fraction is None:
                local = page_to_fraction(self.progress.page_index, total_pages) if total_pages > 1 else 0.0
                self.progress.pending_restore_fraction = local
                self.progress.local_progress = local
        else:
            local = self.progress.local_progress
            if self.progress.pending_restore_fraction is not None:
                local = self.progress.pending_restore_fraction
            self.progress.page_index = fraction_to_page(local, total_pages)
            if settled:
                self.progress.local_progress = local
                self.progress.pending_restore_fraction = None
                self.progress.pending_restore_global = None
        logger.debug("Reader mode %s -> %s", previous.value, mode.value)
        return True

    async def restore_scroll(self, viewport: ScrollViewport) -> bool:
        """Apply a parked scroll fraction to the scroll container."""
        if not self.is_scroll:
            return False
        fraction = self.progress.pending_restore_fraction
        if fraction is None:
            return False
        applied = await apply_scroll_restore(
            viewport, fraction, self.config.restore_attempts, self.config.frame_interval
        )
        global_fraction = self.progress.pending_restore_global
        self.progress.local_progress = fraction if applied else 0.0
        if global_fraction is not None and applied:
            self.progress.global_progress = global_fraction
        else:
            self.progress.global_progress = self.progress.to_global(self.progress.local_progress)
        self.progress.pending_restore_fraction = None
        self.progress.pending_restore_global = None
        return applied


class AutoScroller:
    """Continuous scrolling at a fixed number of screens per minute.

    Driven by frame timestamps; fractional pixels are carried from frame to
    frame so the speed does not depend on the frame rate. Stops by itself
    at the bottom of the container.
    """

    def __init__(self, viewport: ScrollViewport, screens_per_minute: float = 1.0,
                 config: ViewerConfig = DEFAULT_CONFIG):
        self.viewport = viewport
        self.config = config
        self.screens_per_minute = screens_per_minute
        self.running = False
        self._prev_ts: Optional[float] = None
        self._carry = 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def screens_per_minute(self) -> float:
        return self._rate

    @screens_per_minute.setter
    def screens_per_minute(self, value: float):
        self._rate = max(self.config.min_screens_per_minute,
                         min(self.config.max_screens_per_minute, float(value)))

    def start(self) -> None:
        self.running = True
        self._prev_ts = None
        self._carry = 0.0

    def stop(self) -> None:
        self.running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def tick(self, timestamp_ms: float) -> bool:
        """Advance one frame. Returns False once auto-scroll has stopped."""
        if not self.running:
            return False
        if self._prev_ts is None:
            self._prev_ts = timestamp_ms
        elapsed = max(0.0, timestamp_ms - self._prev_ts)
        self._prev_ts = timestamp_ms

        max_scroll = self.viewport.max_scroll
        if max_scroll <= 0:
            return True

        px_per_second = self.viewport.client_height * self.screens_per_minute / 60
        self._carry += px_per_second * elapsed / 1000
        step = math.floor(self._carry)
        if step <= 0:
            return True
        self._carry -= step

        next_top = min(max_scroll, self.viewport.scroll_top + step)
        self.viewport.scroll_top = next_top
        if next_top >= max_scroll - 1:
            self.running = False
            return False
        return True

    async def run(self) -> None:
        """Tick once per frame interval until stopped or at the bottom."""
        loop = asyncio.get_running_loop()
        self.start()
        while self.tick(loop.time() * 1000):
            await asyncio.sleep(self.config.frame_interval)

    def spawn(self) -> asyncio.Task:
        self.stop()
        self._task = asyncio.ensure_future(self.run())
        return self._task
