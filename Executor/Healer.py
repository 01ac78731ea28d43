"""
Executor/Healer.py — Locator self-healing.

When a ``click`` or ``fill`` cannot resolve its locator, the healer looks for
a substitute on the live page:
  1. ``HISTORICAL`` — the locator that healed this same failure earlier in
                      the run, if any.
  2. ``FALLBACK``   — the heuristic rewrites from
                      :meth:`~Locator.LocatorStrategy.generate_alternatives`,
                      in their fixed order.

The first candidate that becomes visible within a short wait is accepted and
the original action is re-attempted against it.  There is no scoring beyond
that order.
"""
from __future__ import annotations

import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Optional

from playwright.async_api import Error as PlaywrightError, Page

from Locator import LocatorStrategy
from Models import HealingEvent

logger = logging.getLogger(__name__)

HealingEventSink = Callable[[HealingEvent], Any]
LocatorAction = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class HealingResult:
    failed_locator: str
    locator: str
    strategy: str
    confidence: float


class SelfHealer:
    """Finds working substitutes for broken locators and remembers them.

    One healer is shared by every worker lane of an executor; its history is
    only touched between awaits, so lanes never observe a half-written entry.
    """

    FALLBACK = "FALLBACK"
    HISTORICAL = "HISTORICAL"

    #: Confidence assigned to a heuristic fallback locator.
    FALLBACK_CONFIDENCE: float = 0.75
    #: Heals at or above this confidence may be written back automatically.
    AUTO_APPLY_THRESHOLD: float = 0.9
    #: Heals in ``[SUGGESTION_THRESHOLD, AUTO_APPLY_THRESHOLD)`` need review.
    SUGGESTION_THRESHOLD: float = 0.7
    #: Successful heals remembered per failed locator.
    HISTORY_SIZE: int = 10

    def __init__(
        self,
        on_healing_event: Optional[HealingEventSink] = None,
        candidate_timeout: int = 2_000,
        max_healing_time: float = 10.0,
    ) -> None:
        self.on_healing_event = on_healing_event
        self.candidate_timeout = candidate_timeout
        self.max_healing_time = max_healing_time
        self._history: dict[str, deque[HealingResult]] = {}

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def heal(
        self,
        page: Page,
        failed_locator: str,
        action: LocatorAction,
        test_id: str,
        step_index: int,
    ) -> Optional[HealingResult]:
        """Re-run *action* against the first visible substitute for *failed_locator*.

        Returns the accepted :class:`HealingResult`, or *None* when no
        candidate was visible, the healing time budget ran out, or the action
        failed again on the accepted candidate.
        """
        logger.info("Attempting to heal locator %s (test=%s step=%d)", failed_locator, test_id, step_index)
        started = time.monotonic()

        for locator, strategy, confidence in self._candidates(failed_locator):
            if time.monotonic() - started > self.max_healing_time:
                logger.info("Healing time budget (%.1fs) exhausted", self.max_healing_time)
                break
            if not await self._is_visible(page, locator):
                continue

            try:
                await action(locator)
            except PlaywrightError as exc:
                logger.info("Healed locator %s resolved but the action failed: %s", locator, exc)
                return None

            result = HealingResult(
                failed_locator=failed_locator,
                locator=locator,
                strategy=strategy,
                confidence=confidence,
            )
            self._remember(result)
            logger.info(
                "Healed %s -> %s via %s (confidence %.2f)",
                failed_locator,
                locator,
                strategy,
                confidence,
            )
            await self._emit(
                HealingEvent(
                    test_case_id=test_id,
                    step_index=step_index,
                    failed_locator=failed_locator,
                    healed_locator=locator,
                    strategy=strategy,
                    confidence=confidence,
                    auto_applied=self.should_auto_apply(confidence),
                )
            )
            return result

        logger.info("Healing failed for %s", failed_locator)
        return None

    def should_auto_apply(self, confidence: float) -> bool:
        return confidence >= self.AUTO_APPLY_THRESHOLD

    def decision(self, confidence: float) -> str:
        """Classify a heal as ``auto``, ``suggest`` (manual review) or ``reject``."""
        if self.should_auto_apply(confidence):
            return "auto"
        if confidence >= self.SUGGESTION_THRESHOLD:
            return "suggest"
        return "reject"

    def statistics(self) -> dict:
        """Return the number of remembered heals, in total and per strategy."""
        by_strategy: dict[str, int] = {}
        total = 0
        for results in self._history.values():
            for result in results:
                total += 1
                by_strategy[result.strategy] = by_strategy.get(result.strategy, 0) + 1
        return {"successful_heals": total, "by_strategy": by_strategy}

    def clear_history(self) -> None:
        self._history.clear()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _candidates(self, failed_locator: str) -> Iterator[tuple[str, str, float]]:
        """Yield ``(locator, strategy, confidence)`` in the order to try them."""
        tried: set[str] = {failed_locator}

        history = self._history.get(failed_locator)
        if history:
            recent = history[-1]
            tried.add(recent.locator)
            yield recent.locator, self.HISTORICAL, min(recent.confidence + 0.05, 0.99)

        for alternative in LocatorStrategy.generate_alternatives(failed_locator):
            if alternative in tried:
                continue
            tried.add(alternative)
            yield alternative, self.FALLBACK, self.FALLBACK_CONFIDENCE

    async def _is_visible(self, page: Page, locator: str) -> bool:
        try:
            element = page.locator(locator).first
            await element.wait_for(state="visible", timeout=self.candidate_timeout)
            return await element.is_visible()
        except PlaywrightError:
            return False

    def _remember(self, result: HealingResult) -> None:
        history = self._history.setdefault(
            result.failed_locator, deque(maxlen=self.HISTORY_SIZE)
        )
        history.append(result)

    async def _emit(self, event: HealingEvent) -> None:
        """Hand *event* to the persistence sink; sink failures are only logged."""
        if self.on_healing_event is None:
            return
        try:
            outcome = self.on_healing_event(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning("Healing event sink raised %s: %s", type(exc).__name__, exc)
