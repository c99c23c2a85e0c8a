from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from fleetward.reconciler import (
    Cancelled,
    Changed,
    Failed,
    Outcome,
    Rejected,
    Report,
    Unchanged,
    WouldChange,
)


def describe(outcome: Outcome) -> tuple[str, str, str]:
    """(status, operation, details) columns for one outcome, with rich styles on the status.

    Free text from the executor is escaped so brackets in stderr render literally.
    """
    match outcome:
        case Unchanged():
            return "[dim]unchanged[/dim]", "", ""
        case WouldChange(operation=op):
            return "[cyan]would change[/cyan]", op.value, ""
        case Changed(operation=op, output=output):
            return "[green]changed[/green]", op.value, escape(output.splitlines()[-1]) if output else ""
        case Failed(operation=op, details=details):
            return "[bold red]failed[/bold red]", op.value, escape(details)
        case Rejected(details=details):
            return "[red]rejected[/red]", "", escape(details)
        case Cancelled(operation=op):
            return "[yellow]cancelled[/yellow]", op.value, ""
    raise TypeError(f"unknown outcome {outcome!r}")


def render_report(report: Report) -> Table:
    title = "Reconciliation plan" if report.dry_run else "Reconciliation report"
    table = Table(title=title, show_lines=False)
    table.add_column("Machine", style="bold")
    table.add_column("Status")
    table.add_column("Operation")
    table.add_column("Details", overflow="fold")

    for mid, outcome in report.outcomes.items():
        table.add_row(escape(mid), *describe(outcome))

    counts = ", ".join(f"{k}={v}" for k, v in sorted(report.summary().items()))
    table.caption = counts or "empty fleet"
    return table


def print_report(report: Report, console: Console | None = None) -> None:
    (console or Console()).print(render_report(report))
