"""Terminal output helpers shared by every command group.

Tables are printed without borders so that columns line up the same way the
classic tab-aligned ``cx`` output does, and so they stay easy to ``grep`` and
``awk``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

from rich.console import Console
from rich.table import Table

# Tables never wrap; a wide virtual terminal keeps every row on one line.
TABLE_WIDTH = 512

RECENT_WINDOW = timedelta(days=12 * 30)


def stdout_console() -> Console:
    return Console(highlight=False, markup=False, soft_wrap=True)


def stderr_console() -> Console:
    return Console(stderr=True, highlight=False, markup=False, soft_wrap=True)


def pretty_time(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Format a timestamp in local time: ``Jan _2 15:04`` if recent, else ``Jan _2  2006``."""
    if value is None:
        return "n/a"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    local = value.astimezone()
    day = f"{local.day:>2}"
    if now - value < RECENT_WINDOW:
        return f"{local:%b} {day} {local:%H:%M}"
    return f"{local:%b} {day}  {local:%Y}"


def join_tags(tags: Optional[Iterable[str]]) -> str:
    if not tags:
        return ""
    return ",".join(tags)


def cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return pretty_time(value)
    return str(value)


def build_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> Table:
    table = Table(
        box=None,
        show_edge=False,
        pad_edge=False,
        padding=(0, 2, 0, 0),
        header_style="",
        expand=False,
    )
    for header in headers:
        table.add_column(header, no_wrap=True, overflow="ignore")
    for row in rows:
        table.add_row(*(cell(v) for v in row))
    return table


def print_table(headers: Sequence[str], rows: Iterable[Sequence[Any]], console: Optional[Console] = None) -> None:
    """Render ``rows`` under ``headers`` as an aligned plain-text table on stdout."""
    out = console or Console(highlight=False, markup=False, width=TABLE_WIDTH)
    out.print(build_table(headers, rows))
