"""Console output for strata commands.

All command output goes through the module-level Rich ``console`` so that
``--no-color`` (and the NO_COLOR environment variable) apply everywhere.
Logs go to stderr and never mix with this output.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Sequence
from typing import Any

from rich.console import Console
from rich.table import Table

_NO_COLOR_ENV = os.environ.get("NO_COLOR") is not None


def create_console(no_color: bool = False) -> Console:
    """Build a console; ``no_color`` or NO_COLOR turns off styling and terminal forcing."""
    plain = no_color or _NO_COLOR_ENV
    return Console(force_terminal=False if plain else None, no_color=plain)


console = create_console()


def set_no_color(no_color: bool) -> None:
    """Swap the shared console, used by the ``--no-color`` flag."""
    global console
    console = create_console(no_color=no_color)


def _marked(mark: str, style: str, message: str, **kwargs: Any) -> None:
    console.print(f"[{style}]{mark}[/{style}] {message}", **kwargs)


def success(message: str, **kwargs: Any) -> None:
    """``✓ 2 layer(s) published``"""
    _marked("✓", "green", message, **kwargs)


def error(message: str, **kwargs: Any) -> None:
    """``✗ Compilation failed``"""
    _marked("✗", "red", message, **kwargs)


def warning(message: str, **kwargs: Any) -> None:
    _marked("⚠", "yellow", message, **kwargs)


def info(message: str, **kwargs: Any) -> None:
    console.print(message, **kwargs)


def print_json(data: Any, **kwargs: Any) -> None:
    """Pretty-print ``data``; values JSON cannot encode are stringified."""
    console.print_json(json.dumps(data, default=str), **kwargs)


def print_table(title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    """Render rows under ``columns``; ``None`` cells print empty.

    Example:
        >>> print_table("Layers", ["#", "Layer key"], [(1, "blueprint::global::core::home::-::-::-")])
    """
    table = Table(*columns, title=title, title_justify="left")
    for row in rows:
        table.add_row(*("" if cell is None else str(cell) for cell in row))
    console.print(table)
