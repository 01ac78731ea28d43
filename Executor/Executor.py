"""
Executor/Executor.py — Parallel test execution with self-healing.

Tests are split into contiguous batches, one per worker.  Each batch owns an
isolated browser context and a single page for its whole lifetime and runs
its tests strictly in order; batches run concurrently via
:func:`asyncio.gather`.  ``click`` and ``fill`` steps whose locator no longer
resolves are handed to the :class:`~Executor.Healer.SelfHealer`.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from Executor.Healer import HealingEventSink, LocatorAction, SelfHealer
from Models import (
    FAILED,
    HEALED,
    PASSED,
    ApiRequest,
    Assert,
    Click,
    Comment,
    ExecutionResult,
    ExecutionResults,
    ExecutorConfig,
    Fill,
    Navigate,
    ProgressCallback,
    ProgressUpdate,
    Select,
    TestCase,
    TestStep,
    WaitForLoadState,
    WaitForNavigation,
    WaitForTimeout,
    notify,
)

logger = logging.getLogger(__name__)

_NAVIGATION_TIMEOUT = 30_000
_ACTION_TIMEOUT = 5_000
_IDLE_TIMEOUT = 10_000
_LOAD_STATE_TIMEOUT = 30_000

# Elements whose presence means the page is showing an error
_ERROR_SELECTORS = '.error, .alert-danger, [role="alert"]'


class StepError(Exception):
    """A step ran but its outcome did not match the expectation."""


@dataclass
class _RunTally:
    """Running counters for progress events of one ``execute_tests`` call."""

    total: int
    passed: int = 0
    failed: int = 0
    healed: int = 0

    @property
    def completed(self) -> int:
        return self.passed + self.failed + self.healed

    def record(self, result: ExecutionResult) -> None:
        if result.status == PASSED:
            self.passed += 1
        elif result.status == HEALED:
            self.healed += 1
        else:
            self.failed += 1


# ---------------------------------------------------------------------------
# Test executor
# ---------------------------------------------------------------------------


class TestExecutor:
    """Runs generated test cases across parallel, isolated browser contexts."""

    __test__ = False  # keep pytest from collecting this class

    def __init__(
        self,
        browser: Browser,
        on_progress: Optional[ProgressCallback] = None,
        on_healing_event: Optional[HealingEventSink] = None,
        healer: Optional[SelfHealer] = None,
    ) -> None:
        self.browser = browser
        self.on_progress = on_progress
        self.healer = healer or SelfHealer(on_healing_event=on_healing_event)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def execute_tests(
        self,
        tests: Iterable[TestCase],
        config: Optional[ExecutorConfig] = None,
    ) -> ExecutionResults:
        """Execute *tests* and return one result per test.

        Raises :class:`~Models.ConfigurationError` for an invalid *config*.
        Failures of individual tests or batches never propagate; they end up
        in :attr:`ExecutionResults.failed`.
        """
        config = config or ExecutorConfig()
        config.validate()
        tests = list(tests)
        if config.capture_video:
            Path(config.video_dir).mkdir(parents=True, exist_ok=True)

        logger.info("Executing %d tests on %d workers", len(tests), config.parallel_workers)
        tally = _RunTally(total=len(tests))
        started = time.monotonic()

        batches = self.create_batches(tests, config.parallel_workers)
        batch_results = await asyncio.gather(
            *[
                self._execute_batch(batch, worker, config, tally)
                for worker, batch in enumerate(batches)
            ]
        )

        results = ExecutionResults(total=len(tests))
        for batch_result in batch_results:
            for result in batch_result:
                results.add(result)
        results.total_duration = _elapsed_ms(started)

        notify(
            self.on_progress,
            ProgressUpdate(
                progress=100.0,
                message=(
                    f"Execution completed: {len(results.passed) + len(results.healed)}"
                    f"/{results.total} passed"
                ),
                total=results.total,
                completed=results.completed,
                passed=len(results.passed),
                failed=len(results.failed),
                healed=len(results.healed),
            ),
        )
        return results

    @staticmethod
    def create_batches(tests: list[TestCase], workers: int) -> list[list[TestCase]]:
        """Split *tests* into at most *workers* contiguous, ceiling-sized batches."""
        if not tests:
            return []
        size = -(-len(tests) // workers)
        return [tests[i:i + size] for i in range(0, len(tests), size)]

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _execute_batch(
        self,
        batch: list[TestCase],
        worker: int,
        config: ExecutorConfig,
        tally: _RunTally,
    ) -> list[ExecutionResult]:
        """Run *batch* in its own context and page; always tears both down.

        If the batch itself breaks (e.g. the context cannot be created), every
        test it had not run yet is recorded as failed with the batch error.
        """
        logger.info("[Worker %d] Starting batch with %d tests", worker, len(batch))
        results: list[ExecutionResult] = []
        context: Optional[BrowserContext] = None
        page: Optional[Page] = None

        try:
            context = await self.browser.new_context(**self._context_options(config))
            page = await context.new_page()
            for test in batch:
                result = await self._execute_test(test, page, config, worker, tally)
                results.append(result)
                tally.record(result)
            logger.info("[Worker %d] Batch completed", worker)

        except Exception as exc:
            logger.error("[Worker %d] Batch aborted: %s", worker, exc)
            for test in batch[len(results):]:
                result = ExecutionResult(
                    test_id=test.id,
                    status=FAILED,
                    duration=0,
                    error=f"Batch aborted: {exc}",
                )
                results.append(result)
                tally.record(result)

        finally:
            if page is not None:
                try:
                    await page.close()
                except Exception as exc:
                    logger.error("[Worker %d] Error closing page: %s", worker, exc)
            if context is not None:
                try:
                    await context.close()
                except Exception as exc:
                    logger.error("[Worker %d] Error closing context: %s", worker, exc)

        return results

    @staticmethod
    def _context_options(config: ExecutorConfig) -> dict:
        kwargs: dict = {}
        if config.capture_video:
            kwargs["record_video_dir"] = config.video_dir
        if config.storage_state:
            kwargs["storage_state"] = config.storage_state
        return kwargs

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    async def _execute_test(
        self,
        test: TestCase,
        page: Page,
        config: ExecutorConfig,
        worker: int,
        tally: _RunTally,
    ) -> ExecutionResult:
        """Run every step of *test* in order and classify the outcome."""
        notify(
            self.on_progress,
            ProgressUpdate(
                progress=tally.completed / tally.total * 100 if tally.total else 0.0,
                message=f"Running: {test.name}",
                total=tally.total,
                completed=tally.completed,
                passed=tally.passed,
                failed=tally.failed,
                healed=tally.healed,
                current_test=test.name,
            ),
        )
        logger.info("[Worker %d] Starting test: %s", worker, test.name)

        started = time.monotonic()
        screenshots: list[str] = []
        was_healed = False

        try:
            if page.is_closed():
                raise StepError("Page was closed before test execution")

            for index, step in enumerate(test.steps):
                logger.debug(
                    "[Worker %d] Step %d/%d: %s", worker, index + 1, len(test.steps), step.action
                )
                if await self._execute_step(step, page, config, test.id, index):
                    was_healed = True
                if config.capture_screenshots:
                    shot = await self._screenshot(page)
                    if shot:
                        screenshots.append(shot)

        except Exception as exc:
            duration = _elapsed_ms(started)
            error = str(exc) or type(exc).__name__
            logger.warning("[Worker %d] FAILED: %s: %s", worker, test.name, error)
            return ExecutionResult(
                test_id=test.id,
                status=FAILED,
                duration=duration,
                error=error,
                screenshots=screenshots if config.capture_screenshots else None,
                video=await self._video_path(page) if config.capture_video else None,
            )

        duration = _elapsed_ms(started)
        status = HEALED if was_healed else PASSED
        logger.info("[Worker %d] %s: %s (%dms)", worker, status.upper(), test.name, duration)
        return ExecutionResult(
            test_id=test.id,
            status=status,
            duration=duration,
            screenshots=screenshots if config.capture_screenshots else None,
            video=await self._video_path(page) if config.capture_video else None,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _execute_step(
        self,
        step: TestStep,
        page: Page,
        config: ExecutorConfig,
        test_id: str,
        index: int,
    ) -> bool:
        """Execute one step; return *True* if its locator had to be healed."""
        if isinstance(step, Navigate):
            await page.goto(step.url, wait_until="domcontentloaded", timeout=_NAVIGATION_TIMEOUT)

        elif isinstance(step, Click):
            return await self._act_with_healing(
                page,
                step.locator,
                lambda loc: page.click(loc, timeout=_ACTION_TIMEOUT),
                config,
                test_id,
                index,
            )

        elif isinstance(step, Fill):
            return await self._act_with_healing(
                page,
                step.locator,
                lambda loc: page.fill(loc, step.value, timeout=_ACTION_TIMEOUT),
                config,
                test_id,
                index,
            )

        elif isinstance(step, Select):
            await page.select_option(step.locator, step.value, timeout=_ACTION_TIMEOUT)

        elif isinstance(step, WaitForNavigation):
            # Many SPA navigations never reach true network idle
            try:
                await page.wait_for_load_state("networkidle", timeout=_IDLE_TIMEOUT)
            except PlaywrightTimeoutError:
                logger.debug("waitForNavigation timed out, proceeding")

        elif isinstance(step, WaitForTimeout):
            await page.wait_for_timeout(step.duration)

        elif isinstance(step, WaitForLoadState):
            await page.wait_for_load_state(step.state, timeout=_LOAD_STATE_TIMEOUT)

        elif isinstance(step, Assert):
            await self._execute_assertion(step, page)

        elif isinstance(step, ApiRequest):
            await self._execute_api_request(step, page)

        elif isinstance(step, Comment):
            pass

        else:
            raise StepError(f"Unsupported step: {step!r}")

        return False

    async def _act_with_healing(
        self,
        page: Page,
        locator: str,
        action: LocatorAction,
        config: ExecutorConfig,
        test_id: str,
        index: int,
    ) -> bool:
        """Run *action* on *locator*, healing the locator if it fails.

        Returns *True* if the action only succeeded on a healed locator.
        Re-raises the original error when healing is disabled or exhausted.
        """
        try:
            await action(locator)
            return False
        except PlaywrightError:
            if not config.enable_healing:
                raise
            healed = await self.healer.heal(page, locator, action, test_id=test_id, step_index=index)
            if healed is None:
                raise
            return True

    async def _execute_assertion(self, step: Assert, page: Page) -> None:
        if step.type == "title":
            title = await page.title()
            if str(step.expected) not in title:
                raise StepError(
                    f'Title assertion failed: expected "{step.expected}", got "{title}"'
                )

        elif step.type == "url":
            if str(step.expected) not in page.url:
                raise StepError(
                    f'URL assertion failed: expected "{step.expected}", got "{page.url}"'
                )

        elif step.type == "errorMessage":
            expected = step.expected
            if isinstance(expected, dict):
                want_error = bool(expected.get("visible", True))
            else:
                want_error = True if expected is None else bool(expected)
            has_error = await page.locator(_ERROR_SELECTORS).count() > 0
            if want_error and not has_error:
                raise StepError("Error message not visible")
            if has_error and not want_error:
                raise StepError("Unexpected error message visible")

        else:
            raise StepError(f"Unknown assertion type: {step.type}")

    async def _execute_api_request(self, step: ApiRequest, page: Page) -> None:
        response = await page.request.fetch(step.url, method=step.method, data=step.data)
        if response.status != step.expected_status:
            raise StepError(
                f"API request failed: expected status {step.expected_status}, "
                f"got {response.status}"
            )

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    async def _screenshot(self, page: Page) -> Optional[str]:
        """Return a base64 screenshot, or *None*; never fails the test."""
        try:
            if page.is_closed():
                return None
            return base64.b64encode(await page.screenshot(full_page=False)).decode()
        except PlaywrightError as exc:
            logger.warning("Screenshot failed: %s", exc)
            return None

    async def _video_path(self, page: Page) -> Optional[str]:
        """Return the recording path for *page*, if one is still reachable."""
        try:
            if page.is_closed() or page.video is None:
                return None
            return str(await page.video.path())
        except PlaywrightError as exc:
            logger.warning("Could not get video path: %s", exc)
            return None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
