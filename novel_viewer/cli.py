"""Command-line interface for the Novel Viewer."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import __version__
from .api import DriveApiClient, decode_text_auto
from .config import (
    API_BASE_ENV,
    API_TOKEN_ENV,
    DEFAULT_CONFIG,
    DEFAULT_FONT_SIZE,
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
    PROGRESS_FILE,
    ensure_directories,
)
from .files import LocalFileSource
from .models import DocumentKey, ReaderMode
from .paginator import page_metrics, paginate_text
from .progress import LocalProgressCache
from .session import ViewerSession
from .window import window_start

# Use ASCII-safe console on Windows to avoid encoding issues
if sys.platform == "win32":
    console = Console(force_terminal=True, legacy_windows=True)
else:
    console = Console()

FONT_SIZE = click.IntRange(MIN_FONT_SIZE, MAX_FONT_SIZE)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def show_page(session: ViewerSession) -> None:
    page = session.current_page
    console.print(Panel(
        Text(page.text) if page.text else "[dim](empty)[/dim]",
        title=session.title or str(session.document),
        subtitle=(
            f"page {session.page_index + 1}/{len(session.pages)}"
            f" - {session.global_progress * 100:.1f}%"
            f" - {session.reader_mode.value}"
        ),
    ))
    if session.window.window is not None:
        window = session.window.window
        console.print(f"[dim]bytes {window.start:,}-{window.end:,} of {window.total:,}[/dim]")
    if session.status:
        console.print(f"[dim]{session.status}[/dim]")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Novel Viewer - Paginate long texts and resume where you left off."""
    setup_logging(verbose)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--font-size", "-s", type=FONT_SIZE, default=DEFAULT_FONT_SIZE, help="Font size")
@click.option("--limit", "-n", type=int, default=20, help="Pages to list")
def paginate(path: Path, font_size: int, limit: int):
    """Split a text file into pages and list them."""
    text = decode_text_auto(path.read_bytes())
    pages = paginate_text(text, font_size)
    chars_per_line, max_lines = page_metrics(font_size)

    table = Table(title=f"{path.name} at font size {font_size}")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Lines", style="yellow", justify="right")
    table.add_column("First line", style="green")

    for i, page in enumerate(pages[:limit], 1):
        first = page.text.split("\n", 1)[0]
        table.add_row(str(i), f"{page.start_line + 1}-{page.end_line + 1}", first[:60])

    console.print(table)
    console.print(
        f"\n[dim]{len(pages)} pages, {chars_per_line} chars per line, "
        f"{max_lines} lines per page[/dim]"
    )


@cli.command()
@click.argument("total", type=click.IntRange(min=1))
@click.argument("target", type=click.IntRange(min=0))
@click.option("--width", "-w", type=click.IntRange(min=1), default=DEFAULT_CONFIG.window_bytes,
              help="Window width in bytes")
def window(total: int, target: int, width: int):
    """Show the byte window loaded around TARGET in a TOTAL-byte document."""
    start = window_start(min(target, total - 1), total, width)
    end = min(total, start + width)
    console.print(f"Window: [cyan]{start:,}[/cyan] - [cyan]{end:,}[/cyan] of {total:,} bytes")
    console.print(f"[dim]Covers {start / total * 100:.1f}% - {end / total * 100:.1f}%[/dim]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--font-size", "-s", type=FONT_SIZE, default=DEFAULT_FONT_SIZE, help="Font size")
@click.option("--mode", "-m", type=click.Choice([m.value for m in ReaderMode]),
              default=ReaderMode.PAGED.value, help="Reader mode")
@click.option("--turn", "-t", type=int, default=0, help="Pages to turn (negative goes back)")
@click.option("--seek", type=click.FloatRange(0, 1), default=None, help="Jump to a fraction of the text")
@click.option("--whole/--windowed", default=False,
              help="Load the whole file instead of a byte window")
def read(path: Path, font_size: int, mode: str, turn: int, seek, whole: bool):
    """Open a local text file where you left off and show the current page."""
    ensure_directories()
    path = path.resolve()

    async def run():
        session = ViewerSession(
            source=LocalFileSource(path.parent.parent),
            cache=LocalProgressCache(PROGRESS_FILE),
        )
        session.preferences.font_size = font_size
        session.mode.mode = ReaderMode(mode)
        if whole:
            key = DocumentKey(source_url=str(path))
        else:
            key = DocumentKey(album_id=path.parent.name, item_id=path.name)

        await session.open_document(key, title=path.stem)
        await session.settle()

        if seek is not None:
            await session.seek_fraction(seek)
            await session.settle()
        step = 1 if turn > 0 else -1
        for _ in range(abs(turn)):
            await session.on_page_navigate(session.page_index + step)
            await session.settle()

        show_page(session)
        await session.close()

    asyncio.run(run())


@cli.command()
@click.argument("album_id")
@click.argument("item_id")
@click.option("--api-base", envvar=API_BASE_ENV, required=True, help="Drive API base URL")
@click.option("--token", envvar=API_TOKEN_ENV, default=None, help="Session token")
@click.option("--user", "user_id", default=None, help="User id for the local cache")
def remote(album_id: str, item_id: str, api_base: str, token, user_id):
    """Open a stored text item through the drive API and show where you were."""
    ensure_directories()
    client = DriveApiClient(api_base, token)

    async def run():
        session = ViewerSession(
            source=client,
            store=client,
            cache=LocalProgressCache(PROGRESS_FILE),
            user_id=user_id,
        )
        await session.load_preferences()
        with console.status("Loading text..."):
            await session.open_document(DocumentKey(album_id=album_id, item_id=item_id))
            await session.settle()
        show_page(session)
        await session.close()

    asyncio.run(run())


@cli.command()
def progress():
    """List reading positions saved on this machine."""
    cache = LocalProgressCache(PROGRESS_FILE)
    if not cache.entries:
        console.print("[yellow]No saved progress yet.[/yellow]")
        return

    table = Table(title="Saved Progress")
    table.add_column("Document", style="green")
    table.add_column("Progress", style="magenta", justify="right")
    table.add_column("Updated", style="yellow")

    for key in sorted(cache.entries):
        record = cache.read(key)
        if record is None:
            continue
        table.add_row(key, f"{record.progress * 100:.1f}%", record.updated_at or "")

    console.print(table)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
