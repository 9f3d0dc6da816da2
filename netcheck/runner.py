from __future__ import annotations

import importlib
import os
import sys
import time
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.console import Console
from playwright.sync_api import sync_playwright

from netcheck.log import setup_logging
from netcheck.monitor import NetworkMonitor
from netcheck.report import render_report, routes_table
from netcheck.rules import DEFAULT_ROUTES, RouteConfigError, Severity, load_route_patterns
from netcheck.validator import ContractValidator, ValidatorConfig

app = typer.Typer(add_completion=False, no_args_is_help=True)

console = Console()

EXIT_VIOLATIONS = 1
EXIT_BOT_FAILED = 2
EXIT_CONFIG = 3


@dataclass
class RunResult:
    ok: bool
    duration_ms: int
    error: Optional[str] = None


def load_callable(target: str) -> Callable:
    """
    Loads a callable in the format: "package.module:function".
    Example: "examples.campaign_bot:run"
    """
    if ":" not in target:
        raise ValueError('Target must be in the form "module:function" (e.g. examples.campaign_bot:run)')

    module_name, func_name = target.split(":", 1)

    # Bots live in the user's project, not in an installed package.
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    module = importlib.import_module(module_name)

    fn = getattr(module, func_name, None)
    if fn is None or not callable(fn):
        raise ValueError(f'Function "{func_name}" not found or not callable in module "{module_name}"')

    return fn


def load_routes(routes_file: Optional[Path]):
    # No file means the built-in table.
    if routes_file is None:
        return DEFAULT_ROUTES
    try:
        return load_route_patterns(routes_file)
    except RouteConfigError as e:
        console.print(str(e), style="red", markup=False)
        raise typer.Exit(code=EXIT_CONFIG)


def run_bot(bot_fn, validator: ContractValidator, headless: bool, start_url: Optional[str]) -> RunResult:
    # Measure total time for this run.
    start = time.perf_counter()
    try:
        with sync_playwright() as p:
            # One browser and context per invocation.
            browser = p.chromium.launch(headless=headless)
            context = browser.new_context()
            page = context.new_page()

            # Attach before any navigation so the first API calls are captured.
            monitor = NetworkMonitor(page, validator)
            try:
                if start_url:
                    page.goto(start_url)
                bot_fn(page)
            finally:
                # Always stop listening and close the browser, even if the bot raised.
                monitor.detach()
                context.close()
                browser.close()

        dur_ms = int((time.perf_counter() - start) * 1000)
        return RunResult(ok=True, duration_ms=dur_ms)

    except Exception:
        # Keep the traceback so the report can show what broke.
        dur_ms = int((time.perf_counter() - start) * 1000)
        return RunResult(ok=False, duration_ms=dur_ms, error=traceback.format_exc(limit=20))


def count_at_or_above(validator: ContractValidator, fail_on: Severity) -> int:
    return sum(1 for v in validator.violations if v.severity.rank >= fail_on.rank)


@app.command("run")
def run_cmd(
    target: str = typer.Argument(
        ...,
        help='Bot entrypoint in the format "module:function" (e.g. examples.campaign_bot:run)',
    ),
    base_url: str = typer.Option(
        "http://localhost:3000",
        "--base-url",
        envvar="NETCHECK_BASE_URL",
        help="Only API traffic under this origin is validated",
    ),
    start_url: Optional[str] = typer.Option(
        None,
        "--start-url",
        help="Optional URL to open before calling the bot",
    ),
    routes_file: Optional[Path] = typer.Option(
        None,
        "--routes",
        envvar="NETCHECK_ROUTES",
        exists=True,
        dir_okay=False,
        help="JSON route table to use instead of the built-in one",
    ),
    headless: bool = typer.Option(
        True,
        "--headless/--headed",
        help="Run headless (default) or show the browser",
    ),
    check_auth: bool = typer.Option(
        False,
        "--check-auth/--no-check-auth",
        help="Flag API requests without a Bearer token",
    ),
    check_uuids: bool = typer.Option(
        True,
        "--check-uuids/--no-check-uuids",
        help="Validate UUID query parameters on membership deletes",
    ),
    validate_bodies: bool = typer.Option(
        True,
        "--bodies/--no-bodies",
        help="Capture and validate response bodies",
    ),
    fail_on: Severity = typer.Option(
        Severity.LOW,
        "--fail-on",
        case_sensitive=False,
        help="Exit non-zero when a violation of this severity or higher is found",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every request and response"),
):
    """
    Run a Playwright sync bot with API contract validation attached and report violations.
    """
    # Fail fast on a bad target or route file, before any browser starts.
    setup_logging(console, verbose=verbose)
    bot_fn = load_callable(target)
    routes = load_routes(routes_file)

    # Per-request logging only in verbose mode; violations are always logged.
    config = ValidatorConfig(
        base_url=base_url,
        log_requests=verbose,
        log_responses=verbose,
        validate_response_bodies=validate_bodies,
    )
    validator = ContractValidator(routes=routes, config=config)

    result = run_bot(bot_fn, validator, headless=headless, start_url=start_url)
    status = "[green]OK[/green]" if result.ok else "[red]FAIL[/red]"
    console.print(f"Bot {target}: {status} ({result.duration_ms} ms)")

    # On-demand scans over everything captured during the run.
    if check_auth:
        validator.validate_authentication_headers()
    if check_uuids:
        validator.validate_uuid_parameters()

    render_report(console, validator.generate_report())

    if not result.ok:
        console.print("\n[bold red]Bot failed:[/bold red]\n")
        console.print(result.error, markup=False)
        raise typer.Exit(code=EXIT_BOT_FAILED)

    # Only violations at or above --fail-on decide the exit code.
    failing = count_at_or_above(validator, fail_on)
    if failing:
        console.print(f"\n[bold red]{failing} violation(s) at {fail_on.value} or above[/bold red]")
        raise typer.Exit(code=EXIT_VIOLATIONS)


@app.command("routes")
def routes_cmd(
    routes_file: Optional[Path] = typer.Option(
        None,
        "--routes",
        envvar="NETCHECK_ROUTES",
        exists=True,
        dir_okay=False,
        help="JSON route table to show instead of the built-in one",
    ),
):
    """
    Show the route patterns exchanges are matched against.
    """
    console.print(routes_table(load_routes(routes_file)))


if __name__ == "__main__":
    app()
