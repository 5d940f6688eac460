from __future__ import annotations

from datetime import datetime, timezone

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..models import Source
from ..schemas import SearchHit


def _format_time(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    value = dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _status(source: Source) -> str:
    if source.is_paused:
        return "paused"
    if source.consecutive_failures:
        return f"failing x{source.consecutive_failures}"
    if source.last_sync_at is None:
        return "new"
    return "ok"


def _build_table() -> Table:
    return Table(
        show_header=True,
        header_style="bold cyan",
        box=box.SQUARE,
        show_lines=True,
        pad_edge=True,
        expand=True,
    )


def _title_cell(title: str, url: str | None) -> Text | str:
    if not url:
        return title
    return Text(title, style=f"link {url}")


def _console() -> Console:
    return Console(
        force_terminal=True,
        color_system="standard",
        markup=False,
        highlight=False,
        width=160,
    )


def render_sources(sources: list[Source]) -> str:
    console = _console()
    with console.capture() as capture:
        if not sources:
            console.print("No subscriptions yet.")
        else:
            console.print(_sources_table(sources))
    return capture.get()


def _sources_table(sources: list[Source]) -> Table:
    table = _build_table()
    table.add_column("ID", width=36, no_wrap=True)
    table.add_column("Title", ratio=3, overflow="fold")
    table.add_column("Kind", width=22, no_wrap=True)
    table.add_column("Status", width=12, no_wrap=True)
    table.add_column("Last sync", width=16, no_wrap=True)
    table.add_column("Last error", ratio=2, overflow="fold")
    for source in sources:
        table.add_row(
            source.id,
            _title_cell(source.title or source.source_url, source.site_url or source.source_url),
            source.kind,
            _status(source),
            _format_time(source.last_sync_at),
            source.last_error or "",
        )
    return table


def render_search_hits(hits: list[SearchHit]) -> str:
    console = _console()
    with console.capture() as capture:
        if not hits:
            console.print("No matching articles.")
        else:
            console.print(_hits_table(hits))
    return capture.get()


def _hits_table(hits: list[SearchHit]) -> Table:
    table = _build_table()
    table.add_column("Published", width=16, no_wrap=True)
    table.add_column("Source", ratio=1, overflow="fold")
    table.add_column("Title", ratio=3, overflow="fold")
    for hit in hits:
        table.add_row(
            _format_time(hit.published_at),
            hit.source_title,
            _title_cell(hit.title, hit.url),
        )
    return table
