"""Split text into fixed-size visual pages.

Page size is estimated, not measured: every logical line is assumed to wrap
at a fixed number of characters derived from the font size, and a page holds
a fixed number of wrapped (visual) lines. Long documents are paginated in
chunks so the event loop stays responsive.
"""

import asyncio
import logging
import math
from typing import Callable, List, Optional

from .config import DEFAULT_CONFIG, ViewerConfig
from .models import EMPTY_PAGE, Page, PageList

logger = logging.getLogger(__name__)


def normalize_text(text: str) -> str:
    return (text or "").replace("\r\n", "\n")


def page_metrics(font_size: float, config: ViewerConfig = DEFAULT_CONFIG) -> tuple[int, int]:
    """Return (chars_per_line, max_visual_lines) for a font size."""
    font_size = max(1.0, float(font_size))
    chars_per_line = max(
        config.min_chars_per_line,
        math.floor(config.page_width / (font_size * config.char_width_factor)),
    )
    # One line of the height budget is kept free for the page footer
    max_visual_lines = max(
        config.min_visual_lines,
        math.floor(config.page_height / (font_size * config.line_height_factor)) - 1,
    )
    return chars_per_line, max_visual_lines


def visual_line_count(line: str, chars_per_line: int) -> int:
    if not line:
        return 1
    return max(1, math.ceil(len(line) / chars_per_line))


class PageBuilder:
    """Greedy page accumulator.

    Lines are fed in order; a page is closed when the next line would push it
    past the visual-line budget. A line that is too long for a page on its
    own still gets a page to itself rather than being split.
    """

    def __init__(self, chars_per_line: int, max_visual_lines: int):
        self.chars_per_line = chars_per_line
        self.max_visual_lines = max_visual_lines
        self.pages: List[Page] = []
        self._current: List[str] = []
        self._current_visual = 0
        self._start_line = 0

    def add(self, index: int, line: str) -> None:
        line_visual = visual_line_count(line, self.chars_per_line)
        if self._current and self._current_visual + line_visual > self.max_visual_lines:
            self._close(index - 1)
            self._start_line = index
        self._current.append(line)
        self._current_visual += line_visual

    def _close(self, end_line: int) -> None:
        self.pages.append(Page(
            text="\n".join(self._current),
            start_line=self._start_line,
            end_line=max(self._start_line, end_line),
        ))
        self._current = []
        self._current_visual = 0

    def snapshot(self) -> tuple:
        """Closed pages so far, never empty."""
        return tuple(self.pages) if self.pages else (EMPTY_PAGE,)

    def finish(self, line_count: int) -> tuple:
        if self._current:
            self._close(line_count - 1)
        return self.snapshot()


def paginate_text(text: str, font_size: float, config: ViewerConfig = DEFAULT_CONFIG) -> List[Page]:
    """Paginate text in one go. Always returns at least one page."""
    lines = normalize_text(text).split("\n")
    builder = PageBuilder(*page_metrics(font_size, config))
    for index, line in enumerate(lines):
        builder.add(index, line)
    return list(builder.finish(len(lines)))


class Paginator:
    """Incremental, cancellable pagination.

    Each call to `paginate` is a job with a new id. Between chunks the job
    yields to the event loop and then checks that it is still the newest job;
    a superseded job returns None without publishing anything.
    """

    def __init__(
        self,
        on_publish: Optional[Callable[[PageList], None]] = None,
        config: ViewerConfig = DEFAULT_CONFIG,
    ):
        self.config = config
        self.on_publish = on_publish
        self._job_id = 0

    @property
    def job_id(self) -> int:
        return self._job_id

    def cancel(self) -> None:
        """Invalidate any job in flight."""
        self._job_id += 1

    def is_current(self, job_id: int) -> bool:
        return self._job_id == job_id

    def _publish(self, job_id: int, page_list: PageList) -> None:
        if not self.is_current(job_id):
            return
        if self.on_publish:
            self.on_publish(page_list)

    async def paginate(self, text: str, font_size: float) -> Optional[PageList]:
        self._job_id += 1
        job_id = self._job_id

        lines = normalize_text(text).split("\n")
        builder = PageBuilder(*page_metrics(font_size, self.config))
        cursor = 0
        since_publish = 0

        while True:
            await asyncio.sleep(0)
            if not self.is_current(job_id):
                logger.debug("Pagination job %d superseded at line %d", job_id, cursor)
                return None

            chunk_end = min(len(lines), cursor + self.config.chunk_lines)
            for index in range(cursor, chunk_end):
                builder.add(index, lines[index])
            since_publish += chunk_end - cursor
            cursor = chunk_end

            if cursor >= len(lines):
                break
            if since_publish >= self.config.publish_every_lines:
                since_publish = 0
                self._publish(job_id, PageList(pages=builder.snapshot(), done=False))

        result = PageList(pages=builder.finish(len(lines)), done=True)
        self._publish(job_id, result)
        logger.debug("Pagination job %d done: %d lines, %d pages", job_id, len(lines), len(result))
        return result
