"""
Models/Config.py — Run configuration and configuration errors.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

#: Page budget per crawl depth tier.
DEPTH_BUDGETS: dict[str, int] = {
    "shallow": 10,
    "deep": 50,
    "exhaustive": 200,
}


class ConfigurationError(ValueError):
    """Raised for invalid run configuration (unknown depth, no workers)."""


def page_budget(depth: str) -> int:
    """Return the maximum number of pages a crawl at *depth* may visit."""
    try:
        return DEPTH_BUDGETS[depth]
    except KeyError:
        raise ConfigurationError(
            f"Unknown crawl depth {depth!r}; expected one of {', '.join(DEPTH_BUDGETS)}"
        ) from None


@dataclass
class ExecutorConfig:
    """Options for :meth:`TestExecutor.execute_tests`."""

    parallel_workers: int = 2
    enable_healing: bool = True
    capture_screenshots: bool = False
    capture_video: bool = False
    video_dir: Optional[str] = None
    """Directory for recorded videos; required when :attr:`capture_video` is set."""

    storage_state: Optional[str] = None
    """Playwright storage-state file restored into every worker context."""

    def validate(self) -> None:
        if self.parallel_workers < 1:
            raise ConfigurationError(
                f"parallel_workers must be >= 1 (got {self.parallel_workers})"
            )
        if self.capture_video and not self.video_dir:
            raise ConfigurationError("capture_video requires video_dir")
