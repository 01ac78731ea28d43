"""
main.py — Entry point for TestPilot.

Sets up the CLI, configures logging, launches the Playwright browser, then
runs one of the three pipeline stages:

  crawl     Explore a website and write its application map.
  discover  Discover the endpoints of an HTTP API and write its map.
  execute   Run generated test cases with self-healing and write the results.

Usage::

    python main.py crawl --url https://target.com [options]

See ``python main.py --help`` for full documentation.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

from playwright.async_api import Browser, BrowserContext, async_playwright

from Crawler import APICrawler, WebsiteCrawler
from Executor import TestExecutor
from Models import (
    DEPTH_BUDGETS,
    ApplicationMap,
    ConfigurationError,
    ExecutorConfig,
    ProgressCallback,
    TestCase,
)
from Reporter import ProgressStream, Reporter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2


# ---------------------------------------------------------------------------
# CLI definition
# ---------------------------------------------------------------------------


def build_arg_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    common = argparse.ArgumentParser(add_help=False)

    # ── Output ────────────────────────────────────────────────────────────────
    out = common.add_argument_group("output")
    out.add_argument(
        "--output",
        default=None,
        metavar="FILE",
        help="JSON output path (default: <command>.json)",
    )
    out.add_argument(
        "--verbose",
        action="store_true",
        help="Enable DEBUG-level logging",
    )

    # ── Browser ───────────────────────────────────────────────────────────────
    browser = common.add_argument_group("browser")
    headless = browser.add_mutually_exclusive_group()
    headless.add_argument(
        "--headless",
        dest="headless",
        action="store_true",
        default=True,
        help="Run browser headlessly (default)",
    )
    headless.add_argument(
        "--no-headless",
        dest="headless",
        action="store_false",
        help="Show the browser UI (useful for debugging)",
    )
    browser.add_argument(
        "--storage-state",
        metavar="FILE",
        help="Playwright storage-state JSON to start every context from (cookies, localStorage)",
    )

    parser = argparse.ArgumentParser(
        prog="testpilot",
        description="Autonomous website/API discovery and self-healing test execution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=r"""
Examples
────────
  Map a website:
    python main.py crawl --url https://target.com --depth shallow

  Map an API:
    python main.py discover --api-url https://target.com/api

  Run generated tests on 4 workers, recording video:
    python main.py execute --tests tests.json --workers 4 --video videos/
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    # ── crawl ─────────────────────────────────────────────────────────────────
    crawl = commands.add_parser("crawl", parents=[common], help="Explore a website")
    crawl.add_argument("--url", required=True, metavar="URL", help="Seed URL (required)")
    crawl.add_argument(
        "--depth",
        choices=sorted(DEPTH_BUDGETS, key=DEPTH_BUDGETS.get),
        default="deep",
        help="Crawl depth tier: page budget %s (default: deep)"
        % ", ".join(f"{k}={v}" for k, v in DEPTH_BUDGETS.items()),
    )

    # ── discover ──────────────────────────────────────────────────────────────
    discover = commands.add_parser("discover", parents=[common], help="Discover API endpoints")
    discover.add_argument(
        "--api-url", required=True, metavar="URL", help="API base URL (required)"
    )

    # ── execute ───────────────────────────────────────────────────────────────
    execute = commands.add_parser("execute", parents=[common], help="Run test cases")
    execute.add_argument(
        "--tests",
        required=True,
        metavar="FILE",
        help='JSON file: a list of test cases, or {"tests": [...]}',
    )
    execute.add_argument(
        "--workers",
        type=int,
        default=ExecutorConfig.parallel_workers,
        metavar="N",
        help=f"Parallel browser contexts (default: {ExecutorConfig.parallel_workers})",
    )
    execute.add_argument(
        "--no-healing",
        dest="healing",
        action="store_false",
        default=True,
        help="Fail click/fill steps immediately instead of healing their locators",
    )
    execute.add_argument(
        "--screenshots",
        action="store_true",
        default=False,
        help="Capture a screenshot after every step",
    )
    execute.add_argument(
        "--video",
        metavar="DIR",
        default=None,
        help="Record one video per worker context into DIR",
    )

    return parser


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def load_test_cases(path: str) -> list[TestCase]:
    """Read test cases from the JSON file at *path*.

    Raises :class:`OSError` for an unreadable file and :class:`ValueError`
    for malformed JSON or test cases.
    """
    raw = json.loads(Path(path).read_text())
    if isinstance(raw, dict):
        raw = raw.get("tests", [])
    if not isinstance(raw, list):
        raise ValueError("expected a list of test cases")
    return [TestCase.from_dict(item) for item in raw]


async def _with_progress(
    reporter: Reporter,
    description: str,
    work: Callable[[ProgressCallback], Awaitable[Any]],
) -> Any:
    """Run *work* with its progress events streamed to a live progress bar."""
    stream = ProgressStream()
    with reporter.tracking_progress(description) as render:
        consumer = asyncio.create_task(stream.drain(render))
        try:
            return await work(stream.emit)
        finally:
            stream.close()
            await consumer


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run_crawl(args: argparse.Namespace, context: BrowserContext, reporter: Reporter) -> int:
    reporter.log_info(f"Target:      [bold cyan]{args.url}[/bold cyan]")
    reporter.log_info(f"Depth:       {args.depth} ({DEPTH_BUDGETS[args.depth]} pages)")

    website = await _with_progress(
        reporter,
        "Crawling…",
        lambda on_progress: WebsiteCrawler(context, on_progress).crawl(args.url, args.depth),
    )
    app_map = ApplicationMap(website=website)
    reporter.save(app_map.to_dict())
    reporter.print_map_summary(app_map)
    return EXIT_OK


async def _run_discover(args: argparse.Namespace, context: BrowserContext, reporter: Reporter) -> int:
    reporter.log_info(f"API:         [bold cyan]{args.api_url}[/bold cyan]")

    api = await _with_progress(
        reporter,
        "Discovering…",
        lambda on_progress: APICrawler(context, on_progress).discover(args.api_url),
    )
    app_map = ApplicationMap(api=api)
    reporter.save(app_map.to_dict())
    reporter.print_map_summary(app_map)
    return EXIT_OK


async def _run_execute(args: argparse.Namespace, browser: Browser, reporter: Reporter) -> int:
    try:
        tests = load_test_cases(args.tests)
    except (OSError, ValueError) as exc:
        reporter.log_error(f"Cannot load test cases from {args.tests}: {exc}")
        return EXIT_CONFIG

    config = ExecutorConfig(
        parallel_workers=args.workers,
        enable_healing=args.healing,
        capture_screenshots=args.screenshots,
        capture_video=args.video is not None,
        video_dir=args.video,
        storage_state=args.storage_state,
    )
    reporter.log_info(f"Tests:       [bold]{len(tests)}[/bold] from {args.tests}")
    reporter.log_info(
        f"Workers:     {config.parallel_workers}   healing: "
        + ("[green]on[/green]" if config.enable_healing else "[yellow]off[/yellow]")
    )

    results = await _with_progress(
        reporter,
        "Executing…",
        lambda on_progress: TestExecutor(
            browser,
            on_progress=on_progress,
            on_healing_event=reporter.log_healing_event,
        ).execute_tests(tests, config),
    )
    reporter.save(reporter.results_report(results))
    reporter.print_results_summary(results)
    return EXIT_FAILURES if results.failed else EXIT_OK


# ---------------------------------------------------------------------------
# Main async entry point
# ---------------------------------------------------------------------------


async def run(args: argparse.Namespace) -> int:
    """Launch the browser, run the selected command and return an exit code."""
    reporter = Reporter(output_file=args.output or f"{args.command}.json")
    reporter.print_banner()

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=args.headless)
        try:
            if args.command == "execute":
                return await _run_execute(args, browser, reporter)

            kwargs: dict = {}
            if args.storage_state:
                kwargs["storage_state"] = args.storage_state
            context = await browser.new_context(**kwargs)
            try:
                if args.command == "crawl":
                    return await _run_crawl(args, context, reporter)
                return await _run_discover(args, context, reporter)
            finally:
                try:
                    await context.close()
                except Exception as exc:
                    logger.debug("Error closing context: %s", exc)

        except ConfigurationError as exc:
            reporter.log_error(f"Invalid configuration: {exc}")
            return EXIT_CONFIG

        finally:
            try:
                await browser.close()
            except Exception as exc:
                logger.debug("Error closing browser: %s", exc)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Parse arguments, configure logging, and run the async main loop."""
    parser = build_arg_parser()
    args = parser.parse_args()

    # ── Logging setup ─────────────────────────────────────────────────────────
    log_level = logging.DEBUG if args.verbose else logging.ERROR
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    # Suppress noisy library logs unless in verbose mode
    if not args.verbose:
        for lib in ("playwright", "httpx", "asyncio"):
            logging.getLogger(lib).setLevel(logging.WARNING)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
