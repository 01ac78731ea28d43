"""
Models/Progress.py — Progress events emitted by the crawlers and the executor.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressUpdate:
    progress: float
    """Percentage in ``[0, 100]``."""

    message: str
    pages_found: Optional[int] = None
    links_found: Optional[int] = None
    endpoints_found: Optional[int] = None
    total: Optional[int] = None
    completed: Optional[int] = None
    passed: Optional[int] = None
    failed: Optional[int] = None
    healed: Optional[int] = None
    current_test: Optional[str] = None


ProgressCallback = Callable[[ProgressUpdate], None]


def notify(callback: Optional[ProgressCallback], update: ProgressUpdate) -> None:
    """Deliver *update* to *callback*; a failing sink never reaches the caller."""
    if callback is None:
        return
    try:
        callback(update)
    except Exception as exc:
        logger.warning("Progress sink raised %s: %s", type(exc).__name__, exc)
