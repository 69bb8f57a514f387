"""Operator-facing startup output with optional rich formatting."""

from __future__ import annotations

from typing import Callable, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

Reporter = Callable[[str], None]
TablePrinter = Callable[[str, Sequence[str], Sequence[Sequence[str]]], None]


def _plain_table(reporter: Reporter) -> TablePrinter:
    def print_table(title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        header = " | ".join(columns)
        lines = [title, header, "-" * len(header)]
        lines.extend(" | ".join(row) for row in rows)
        reporter("\n".join(lines))

    return print_table


def make_reporter(use_rich: bool = True, console: Console | None = None) -> tuple[Reporter, TablePrinter]:
    """Return a line reporter and a table printer; plain print() when rich is off."""
    if not use_rich:
        return print, _plain_table(print)

    console = console or Console(stderr=True)

    def reporter(message: str) -> None:
        console.print(escape(message))

    def print_table(title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        table = Table(title=title, box=box.ROUNDED)
        for column in columns:
            table.add_column(column)
        for row in rows:
            styled = [escape(cell) for cell in row]
            if styled and styled[0] == "FAIL":
                styled[0] = "[red]FAIL[/red]"
            elif styled and styled[0] == "PASS":
                styled[0] = "[green]PASS[/green]"
            table.add_row(*styled)
        console.print(table)

    return reporter, print_table
