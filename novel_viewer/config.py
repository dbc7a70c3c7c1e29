"""Configuration and constants for the novel viewer."""

from pathlib import Path
from dataclasses import dataclass


# Base paths
BASE_DIR = Path(__file__).parent.parent
CACHE_DIR = BASE_DIR / "cache"
PROGRESS_FILE = CACHE_DIR / "progress.json"


@dataclass
class ViewerConfig:
    """Tuned constants for pagination, windowing and persistence."""
    # Virtual page used for the line-wrap estimate (pixels)
    page_width: int = 980
    page_height: int = 1120
    char_width_factor: float = 0.95
    line_height_factor: float = 1.62
    min_chars_per_line: int = 14
    min_visual_lines: int = 6

    # Incremental pagination
    chunk_lines: int = 1200
    publish_every_lines: int = 5000

    # Byte window
    window_bytes: int = 256 * 1024
    meta_probe_bytes: int = 1024
    recenter_high: float = 0.9
    recenter_low: float = 0.1
    document_end_guard: float = 0.99
    document_start_guard: float = 0.01

    # Persistence (seconds)
    progress_debounce: float = 0.22
    preferences_debounce: float = 0.4

    # Scroll restore / auto-advance
    restore_attempts: int = 30
    frame_interval: float = 1 / 60
    min_screens_per_minute: float = 1.0
    max_screens_per_minute: float = 5.0


DEFAULT_CONFIG = ViewerConfig()


# Font and theme choices accepted by the settings endpoint
MIN_FONT_SIZE = 12
MAX_FONT_SIZE = 60
DEFAULT_FONT_SIZE = 22
DEFAULT_FONT_FAMILY = "serif"
THEMES = ["dark", "light"]


# Drive API
API_BASE_ENV = "NOVEL_VIEWER_API_BASE"
API_TOKEN_ENV = "NOVEL_VIEWER_TOKEN"
USER_AGENT = "NovelViewer/0.1"
REQUEST_TIMEOUT = 30


def ensure_directories() -> None:
    """Create necessary directories if they don't exist."""
    CACHE_DIR.mkdir(exist_ok=True)
