from __future__ import annotations

from typing import Any, Dict, Iterable

from rich.console import Console
from rich.table import Table
from rich.text import Text

from netcheck.rules import RoutePattern, Severity

SEVERITY_STYLE = {
    Severity.HIGH: "bold red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
}


def summary_table(report: Dict[str, Any], title: str = "API Contract - Report") -> Table:
    summary = report["summary"]
    table = Table(title=title)
    table.add_column("Metric", style="bold")
    table.add_column("Value")

    table.add_row("Requests", str(summary.total_requests))
    table.add_row("Responses", str(summary.total_responses))
    table.add_row("API requests", str(summary.api_requests))
    table.add_row("Violations", str(summary.violations))
    for severity in Severity:
        table.add_row(f"  {severity.value}", str(summary.violations_by_severity.get(severity.value, 0)))
    if summary.start and summary.end:
        table.add_row("Timespan", f"{max(summary.end - summary.start, 0)} ms")
    return table


def violations_table(report: Dict[str, Any]) -> Table:
    table = Table(title="Violations")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Request")
    table.add_column("Status", justify="right")
    table.add_column("Issue")

    for key in ("high", "medium", "low"):
        for v in report["violations"][key]:
            table.add_row(
                f"[{SEVERITY_STYLE[v.severity]}]{v.severity.value}[/]",
                v.kind.value,
                Text(f"{v.method} {v.url}"),
                "" if v.status is None else str(v.status),
                Text(v.issue),
            )
    return table


def render_report(console: Console, report: Dict[str, Any]) -> None:
    console.print()
    console.print(summary_table(report))

    if report["summary"].violations:
        console.print()
        console.print(violations_table(report))

    if report["recommendations"]:
        console.print("\n[bold]Recommendations:[/bold]")
        for rec in report["recommendations"]:
            console.print(f"  - {rec}")


def routes_table(routes: Iterable[RoutePattern]) -> Table:
    table = Table(title="Route patterns (first match wins)")
    table.add_column("#", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Method")
    table.add_column("URL pattern")
    table.add_column("Success", justify="right")
    table.add_column("Errors")

    for i, route in enumerate(routes, start=1):
        table.add_row(
            str(i),
            route.name,
            route.method,
            Text(route.url_pattern.pattern),
            str(route.expected_success_status),
            ", ".join(map(str, sorted(route.expected_error_statuses))),
        )
    return table
