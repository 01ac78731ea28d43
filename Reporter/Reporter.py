"""
Reporter/Reporter.py — Live console output and JSON report generation.

Provides the :class:`Reporter` used by ``main.py`` to show progress and
healing events as they happen, and to produce the final summary and the
JSON output file for a crawl, an API discovery or a test run.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Generator

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from Models import ApplicationMap, ExecutionResults, HealingEvent, ProgressUpdate

logger = logging.getLogger(__name__)

# Single shared console instance (stdout)
console = Console()


class Reporter:
    """Collects healing events and drives all user-visible output.

    Responsibilities:
    - Live progress bar fed by :class:`~Models.ProgressUpdate` events
    - Live rich-formatted healing events as locators are repaired
    - Informational / error logging helpers
    - Final JSON report persistence
    - End-of-run summary tables
    """

    def __init__(self, output_file: str) -> None:
        self.output_file: str = output_file
        self.healing_events: list[HealingEvent] = []

    # ------------------------------------------------------------------
    # Display helpers
    # ------------------------------------------------------------------

    def print_banner(self) -> None:
        """Print the tool banner to the console."""
        console.print(
            Panel(
                "[bold cyan]TestPilot[/bold cyan]  |  Discovery, execution and self-healing tests\n"
                "[dim]Crawl a site, map its API, run generated tests in Playwright.[/dim]",
                expand=False,
                style="bold white on black",
            )
        )

    def log_healing_event(self, event: HealingEvent) -> None:
        """Record *event* and print a highlighted one-liner to the console.

        Matches the persistence-sink signature, so it can be passed directly
        as ``on_healing_event``.
        """
        self.healing_events.append(event)
        mode = "auto" if event.auto_applied else "review"
        console.print(
            f"[bold yellow on black] HEAL [/bold yellow on black] "
            f"[cyan]{event.test_case_id}[/cyan] step {event.step_index}  "
            f"[red]{event.failed_locator}[/red] -> [green]{event.healed_locator}[/green]  "
            f"via=[magenta]{event.strategy}[/magenta] "
            f"conf=[dim]{event.confidence:.2f} ({mode})[/dim]"
        )

    def log_info(self, message: str) -> None:
        """Print a standard informational message (supports Rich markup)."""
        console.print(f"[dim]\\[*][/dim] {message}")

    def log_error(self, message: str) -> None:
        """Print an error message (supports Rich markup)."""
        console.print(f"[bold red]\\[!][/bold red] {message}")

    @contextmanager
    def tracking_progress(
        self, description: str
    ) -> Generator[Callable[[ProgressUpdate], None], None, None]:
        """Context manager that renders a Rich progress bar for one phase.

        Yields a callback accepting :class:`~Models.ProgressUpdate`; pass it
        as ``on_progress`` (or drain a :class:`~Reporter.Progress.ProgressStream`
        into it).  The bar is scaled to 0–100 and its description follows
        the latest event message.
        """
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        ) as progress:
            task_id = progress.add_task(f"[cyan]{description}[/cyan]", total=100)

            def _update(update: ProgressUpdate) -> None:
                progress.update(
                    task_id,
                    completed=max(0.0, min(update.progress, 100.0)),
                    description=f"[cyan]{update.message}[/cyan]",
                )

            yield _update

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, data: dict) -> bool:
        """Serialise *data* to the JSON report file; return *True* on success."""
        try:
            Path(self.output_file).write_text(json.dumps(data, indent=2))
            console.print(f"\n[green]\\[+][/green] Report saved: [bold]{self.output_file}[/bold]")
            return True
        except OSError as exc:
            console.print(f"[red]\\[!][/red] Failed to save report: {exc}")
            return False

    def results_report(self, results: ExecutionResults) -> dict:
        """Return the JSON document for a test run, healing events included."""
        data = results.to_dict()
        data["healing_events"] = [asdict(e) for e in self.healing_events]
        return data

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def print_map_summary(self, app_map: ApplicationMap) -> None:
        """Print an end-of-discovery summary table."""
        table = _summary_table("Discovery Summary")

        if app_map.website is not None:
            site = app_map.website
            table.add_row("Base URL", site.base_url)
            table.add_row("Pages crawled", str(len(site.pages)))
            table.add_row(
                "Interactive elements", str(sum(len(p.elements) for p in site.pages))
            )
            table.add_row("Interactions", str(len(site.interactions)))
            flows = ", ".join(f.name for f in site.user_flows) or "-"
            table.add_row("User flows", flows)

        if app_map.api is not None:
            api = app_map.api
            table.add_row("API base URL", api.base_url)
            table.add_row("Endpoints", str(len(api.endpoints)))
            table.add_row("Authentication", api.authentication)

        console.print()
        console.print(table)

    def print_results_summary(self, results: ExecutionResults) -> None:
        """Print an end-of-run summary table."""
        table = _summary_table("Execution Summary")

        table.add_row("Tests", str(results.total))
        table.add_row("Passed", f"[bold green]{len(results.passed)}[/bold green]")
        table.add_row("Healed", f"[bold yellow]{len(results.healed)}[/bold yellow]")
        if results.failed:
            failed_str = f"[bold red]{len(results.failed)}[/bold red]"
        else:
            failed_str = f"[bold green]{len(results.failed)}[/bold green]"
        table.add_row("Failed", failed_str)
        table.add_row("Healing events", str(len(self.healing_events)))
        table.add_row("Duration", f"{results.total_duration / 1000:.1f}s")

        console.print()
        console.print(table)

        for result in results.failed:
            self.log_error(f"[bold]{result.test_id}[/bold]: {result.error}")


def _summary_table(title: str) -> Table:
    table = Table(title=title, box=box.ROUNDED, show_header=True)
    table.add_column("Metric", style="bold cyan", min_width=22)
    table.add_column("Value", style="white", justify="right")
    return table
