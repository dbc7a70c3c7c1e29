"""HTTP client for the drive API: ranged text reads, progress and settings."""

import asyncio
import time
from typing import Optional
from urllib.parse import unquote

import requests

from .config import REQUEST_TIMEOUT, USER_AGENT
from .models import (
    AlbumLast,
    DocumentKey,
    OpenedText,
    ProgressRecord,
    TextChunk,
    ViewerPreferences,
)
from .progress import ProgressStore
from .window import FetchError, TextSource


DEFAULT_COOKIE_NAME = "session"


def decode_text_auto(data: bytes) -> str:
    """Decode text bytes as UTF-8, falling back to EUC-KR (CP949)."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("cp949", errors="replace")


class DriveApiClient(TextSource, ProgressStore):
    """Talks to the drive API with a logged-in session cookie.

    Calls are made with `requests` on a worker thread so the viewer's event
    loop is never blocked.
    """

    def __init__(
        self,
        api_base: str,
        token: Optional[str] = None,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        retries: int = 3,
        backoff: float = 1.0,
    ):
        self.api_base = api_base.rstrip("/")
        self.retries = max(1, retries)
        self.backoff = backoff
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        if token:
            self.session.cookies.set(cookie_name, token)

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.api_base}{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Send a request. GETs are retried with exponential backoff."""
        url = self._url(path)
        attempts = self.retries if method == "GET" else 1
        for attempt in range(attempts):
            try:
                response = self.session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
                response.raise_for_status()
                return response
            except requests.RequestException as e:
                if attempt == attempts - 1:
                    raise FetchError(f"{method} {url} failed: {e}") from e
                time.sleep(self.backoff * (2 ** attempt))

        raise FetchError(f"{method} {url} failed after {attempts} attempts")

    def _json(self, method: str, path: str, **kwargs) -> dict:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"{method} {path} returned invalid JSON") from e

    # -- text -------------------------------------------------------------------

    def get_text_chunk(self, key: DocumentKey, offset: int, length: int) -> TextChunk:
        data = self._json(
            "GET",
            f"/api/albums/{key.album_id}/items/{key.item_id}/text-chunk",
            params={"offset": max(0, int(offset)), "length": int(length)},
        )
        return TextChunk.from_dict(data)

    def get_full_text(self, source_url: str) -> OpenedText:
        """Download a whole text: public shares directly, anything else
        through the external-text proxy."""
        if source_url.startswith(f"{self.api_base}/api/public/share/"):
            response = self._request("GET", source_url)
        else:
            response = self._request("GET", "/api/external-text/stream", params={"url": source_url})

        kind = response.headers.get("x-external-kind", "").lower()
        content_type = response.headers.get("content-type", "").lower()
        if kind == "image" or content_type.startswith("image/"):
            raise FetchError(f"{source_url} is an image, not a text")

        title = response.headers.get("x-external-title", "")
        encoded = response.headers.get("x-external-title-encoded", "")
        if encoded:
            title = unquote(encoded)
        return OpenedText(
            text=decode_text_auto(response.content),
            title=title,
            content_type=content_type or "text/plain",
        )

    async def fetch_range(self, key: DocumentKey, offset: int, length: int) -> TextChunk:
        return await asyncio.to_thread(self.get_text_chunk, key, offset, length)

    async def fetch_full_text(self, source_url: str) -> OpenedText:
        return await asyncio.to_thread(self.get_full_text, source_url)

    # -- progress ---------------------------------------------------------------

    def get_progress(self, key: DocumentKey) -> Optional[ProgressRecord]:
        data = self._json("GET", f"/api/albums/{key.album_id}/items/{key.item_id}/progress")
        return ProgressRecord.from_dict(data.get("item"))

    def post_progress(self, key: DocumentKey, progress: float) -> None:
        self._request(
            "POST",
            f"/api/albums/{key.album_id}/items/{key.item_id}/progress",
            json={"progress": progress},
        )

    def get_album_last(self, album_id: str) -> Optional[AlbumLast]:
        data = self._json("GET", f"/api/albums/{album_id}/progress")
        return AlbumLast.from_dict(data.get("item"))

    def post_album_last(self, album_id: str, item_id: str, progress: float) -> None:
        self._request(
            "POST",
            f"/api/albums/{album_id}/progress",
            json={"imageId": item_id, "progress": progress},
        )

    async def read_progress(self, key: DocumentKey) -> Optional[ProgressRecord]:
        return await asyncio.to_thread(self.get_progress, key)

    async def write_progress(self, key: DocumentKey, progress: float) -> None:
        await asyncio.to_thread(self.post_progress, key, progress)

    async def read_album_last(self, album_id: str) -> Optional[AlbumLast]:
        return await asyncio.to_thread(self.get_album_last, album_id)

    async def write_album_last(self, album_id: str, item_id: str, progress: float) -> None:
        await asyncio.to_thread(self.post_album_last, album_id, item_id, progress)

    # -- settings -----------------------------------------------------------------

    def get_preferences(self) -> Optional[ViewerPreferences]:
        data = self._json("GET", "/api/users/settings")
        if not data.get("item"):
            return None
        return ViewerPreferences.from_dict(data["item"])

    def post_preferences(self, prefs: ViewerPreferences) -> None:
        self._request("POST", "/api/users/settings", json=prefs.to_dict())

    async def read_preferences(self) -> Optional[ViewerPreferences]:
        return await asyncio.to_thread(self.get_preferences)

    async def write_preferences(self, prefs: ViewerPreferences) -> None:
        await asyncio.to_thread(self.post_preferences, prefs)
