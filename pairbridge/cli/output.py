"""
PairBridge CLI - Rich Output Helpers

Functions:
    print_table    - Key/value or multi-column table
    print_json     - JSON document (settings dumps)
    print_error    - Error with optional details and hint, on stderr
    print_success  - Success line
    print_warning  - Warning line
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.json import JSON
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


def print_table(
    title: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[str]],
    styles: Optional[Sequence[Optional[str]]] = None,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows; short rows are padded with empty cells
        styles: Optional per-column styles
    """
    styles = list(styles or [])
    table = Table(title=title)
    for i, col in enumerate(columns):
        table.add_column(col, style=styles[i] if i < len(styles) else None)
    for row in rows:
        cells = list(row)[:len(columns)]
        table.add_row(*cells, *[""] * (len(columns) - len(cells)))
    console.print(table)


def print_json(data: Any) -> None:
    """Print *data* as indented JSON; values JSON cannot encode are stringified."""
    console.print(JSON(json.dumps(data, indent=2, default=str)))


def print_error(message: str, details: Optional[str] = None, hint: Optional[str] = None) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    for style, text in (("dim", details), ("yellow", f"Hint: {hint}" if hint else None)):
        if text:
            err_console.print(f"[{style}]{text}[/{style}]")


def print_success(message: str) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
