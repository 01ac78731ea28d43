"""
Models/Result.py — Execution outcomes and healing events.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Optional

PASSED = "passed"
HEALED = "healed"
FAILED = "failed"


@dataclass
class ExecutionResult:
    """Outcome of one executed test case."""

    test_id: str
    status: str
    """``passed``, ``healed`` (passed after at least one heal) or ``failed``."""

    duration: int
    """Wall-clock duration in milliseconds."""

    error: Optional[str] = None
    screenshots: Optional[list[str]] = None
    video: Optional[str] = None


@dataclass
class ExecutionResults:
    """Aggregate of one :meth:`TestExecutor.execute_tests` call.

    Result order across the three lists does not follow input order; batches
    finish in any interleaving.
    """

    total: int = 0
    passed: list[ExecutionResult] = field(default_factory=list)
    failed: list[ExecutionResult] = field(default_factory=list)
    healed: list[ExecutionResult] = field(default_factory=list)
    total_duration: int = 0

    @property
    def completed(self) -> int:
        return len(self.passed) + len(self.failed) + len(self.healed)

    def add(self, result: ExecutionResult) -> None:
        if result.status == PASSED:
            self.passed.append(result)
        elif result.status == HEALED:
            self.healed.append(result)
        else:
            self.failed.append(result)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class HealingEvent:
    """Record emitted to the persistence sink whenever a locator is healed."""

    test_case_id: str
    step_index: int
    failed_locator: str
    healed_locator: str
    strategy: str
    """``FALLBACK`` or ``HISTORICAL``."""

    confidence: float
    auto_applied: bool
