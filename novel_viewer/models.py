"""Data models for documents, pages, windows and reading progress."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from urllib.parse import quote

from .config import (
    DEFAULT_FONT_FAMILY,
    DEFAULT_FONT_SIZE,
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
    THEMES,
)


def clamp01(value: float) -> float:
    """Clamp a fraction into [0, 1]. NaN becomes 0."""
    if value != value:
        return 0.0
    return max(0.0, min(1.0, float(value)))


class ReaderMode(Enum):
    PAGED = "paged"
    SCROLL = "scroll"


@dataclass(frozen=True)
class Page:
    """One page of paginated text. Line indexes are relative to the loaded text."""
    text: str
    start_line: int
    end_line: int


EMPTY_PAGE = Page(text="", start_line=0, end_line=0)


@dataclass(frozen=True)
class PageList:
    """A published pagination result; `done` is False while still extending."""
    pages: tuple = (EMPTY_PAGE,)
    done: bool = True

    def __len__(self) -> int:
        return len(self.pages)

    def __getitem__(self, index: int) -> Page:
        return self.pages[index]

    @property
    def text(self) -> str:
        return "\n".join(page.text for page in self.pages)


@dataclass(frozen=True)
class DocumentKey:
    """Identifies the document being read.

    Stored items use (album_id, item_id) and are read through a byte window.
    External links and public shares use source_url and are loaded whole.
    """
    album_id: Optional[str] = None
    item_id: Optional[str] = None
    source_url: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return self.source_url is not None

    @property
    def is_windowed(self) -> bool:
        return not self.is_external and self.album_id is not None and self.item_id is not None

    def cache_key(self, user_id: Optional[str] = None) -> str:
        user = user_id or "anon"
        if self.is_external:
            return f"external-progress:{user}:{quote(self.source_url, safe='')}"
        return f"text-progress:{user}:{self.album_id}:{self.item_id}"

    def __str__(self) -> str:
        if self.is_external:
            return self.source_url
        return f"{self.album_id}/{self.item_id}"


def last_viewed_key(album_id: str, user_id: Optional[str] = None) -> str:
    return f"last-viewed:{user_id or 'anon'}:{album_id}"


@dataclass(frozen=True)
class Window:
    """The contiguous byte range of a remote document that is loaded in memory."""
    start: int
    end: int
    total: int
    key: DocumentKey

    @property
    def width(self) -> int:
        return self.end - self.start

    @property
    def at_document_start(self) -> bool:
        return self.start <= 0

    @property
    def at_document_end(self) -> bool:
        return self.end >= self.total


@dataclass
class TextChunk:
    """Result of a ranged read of a remote text object."""
    text: str
    next_offset: int
    total_bytes: int
    done: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "TextChunk":
        return cls(
            text=data.get("text") or "",
            next_offset=int(data.get("nextOffset") or 0),
            total_bytes=int(data.get("totalBytes") or 0),
            done=bool(data.get("done", False)),
        )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Server stamps are UTC; naive stamps are read as UTC too
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class ProgressRecord:
    """A persisted progress fraction and when it was written."""
    progress: float
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.progress = clamp01(self.progress)

    @property
    def timestamp(self) -> Optional[datetime]:
        return _parse_timestamp(self.updated_at)

    def is_newer_or_equal(self, other: Optional["ProgressRecord"]) -> bool:
        if other is None or other.timestamp is None:
            return True
        if self.timestamp is None:
            return False
        return self.timestamp >= other.timestamp

    def to_dict(self) -> dict:
        return {"progress": self.progress, "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, data) -> Optional["ProgressRecord"]:
        if data is None:
            return None
        if isinstance(data, (int, float)):
            return cls(progress=float(data))
        if not isinstance(data, dict):
            return None
        try:
            progress = float(data.get("progress"))
        except (TypeError, ValueError):
            return None
        return cls(progress=progress, updated_at=data.get("updated_at"))

    @classmethod
    def now(cls, progress: float) -> "ProgressRecord":
        return cls(progress=progress, updated_at=datetime.now(timezone.utc).isoformat())


@dataclass
class AlbumLast:
    """Album-level resume pointer: the last item read and its progress."""
    item_id: str
    progress: float
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["AlbumLast"]:
        if not data or not data.get("image_id"):
            return None
        return cls(
            item_id=str(data["image_id"]),
            progress=clamp01(float(data.get("progress") or 0)),
            updated_at=data.get("updated_at"),
        )


@dataclass
class ViewerPreferences:
    """Per-user viewer settings."""
    font_family: str = DEFAULT_FONT_FAMILY
    font_size: int = DEFAULT_FONT_SIZE
    theme: str = "dark"
    reader_mode: ReaderMode = ReaderMode.PAGED

    def to_dict(self) -> dict:
        return {
            "novelFontFamily": self.font_family,
            "novelTheme": self.theme,
            "novelFontSize": self.font_size,
            "novelViewMode": self.reader_mode.value,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ViewerPreferences":
        prefs = cls()
        if not data:
            return prefs
        family = str(data.get("novelFontFamily") or "").strip()
        if family:
            prefs.font_family = family
        if data.get("novelTheme") in THEMES:
            prefs.theme = data["novelTheme"]
        try:
            size = float(data.get("novelFontSize") or 0)
        except (TypeError, ValueError):
            size = 0
        if MIN_FONT_SIZE <= size <= MAX_FONT_SIZE:
            prefs.font_size = int(round(size))
        mode = data.get("novelViewMode")
        if mode in (ReaderMode.PAGED.value, ReaderMode.SCROLL.value):
            prefs.reader_mode = ReaderMode(mode)
        return prefs


@dataclass
class ScrollViewport:
    """A scrollable region as the UI reports it (pixels)."""
    scroll_height: float = 0
    client_height: float = 0
    scroll_top: float = 0

    @property
    def max_scroll(self) -> float:
        return max(0.0, self.scroll_height - self.client_height)


@dataclass
class OpenedText:
    """A fully loaded text (external link or public share)."""
    text: str
    title: str = ""
    content_type: str = "text/plain"
