"""
Models/Steps.py — Test steps and test cases consumed by the executor.

Each step kind is its own dataclass carrying a class-level ``action`` tag.
:func:`parse_step` builds steps from the JSON shape emitted by the test
generator (camelCase keys, ``action`` discriminator).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union


@dataclass(frozen=True)
class Navigate:
    action: ClassVar[str] = "navigate"
    url: str


@dataclass(frozen=True)
class Click:
    action: ClassVar[str] = "click"
    locator: str


@dataclass(frozen=True)
class Fill:
    action: ClassVar[str] = "fill"
    locator: str
    value: str


@dataclass(frozen=True)
class Select:
    action: ClassVar[str] = "select"
    locator: str
    value: str


@dataclass(frozen=True)
class WaitForNavigation:
    action: ClassVar[str] = "waitForNavigation"


@dataclass(frozen=True)
class WaitForTimeout:
    action: ClassVar[str] = "waitForTimeout"
    duration: int = 1000
    """Sleep length in milliseconds."""


@dataclass(frozen=True)
class WaitForLoadState:
    action: ClassVar[str] = "waitForLoadState"
    state: str = "networkidle"


@dataclass(frozen=True)
class Assert:
    action: ClassVar[str] = "assert"
    type: str
    """One of ``title``, ``url``, ``errorMessage``."""

    expected: Any = None


@dataclass(frozen=True)
class ApiRequest:
    action: ClassVar[str] = "apiRequest"
    method: str
    url: str
    data: Any = None
    expected_status: int = 200


@dataclass(frozen=True)
class Comment:
    action: ClassVar[str] = "comment"
    text: str = ""


TestStep = Union[
    Navigate,
    Click,
    Fill,
    Select,
    WaitForNavigation,
    WaitForTimeout,
    WaitForLoadState,
    Assert,
    ApiRequest,
    Comment,
]


def parse_step(raw: dict) -> TestStep:
    """Build a :data:`TestStep` from its JSON representation.

    Raises :class:`ValueError` for an unknown or missing ``action``.
    """
    action = raw.get("action")
    if action == Navigate.action:
        return Navigate(url=raw["url"])
    if action == Click.action:
        return Click(locator=raw["locator"])
    if action == Fill.action:
        return Fill(locator=raw["locator"], value=str(raw.get("value", "")))
    if action == Select.action:
        return Select(locator=raw["locator"], value=str(raw.get("value", "")))
    if action == WaitForNavigation.action:
        return WaitForNavigation()
    if action == WaitForTimeout.action:
        return WaitForTimeout(duration=int(raw.get("duration") or 1000))
    if action == WaitForLoadState.action:
        return WaitForLoadState(state=raw.get("state") or "networkidle")
    if action == Assert.action:
        return Assert(type=raw["type"], expected=raw.get("expected"))
    if action == ApiRequest.action:
        return ApiRequest(
            method=str(raw.get("method", "GET")).upper(),
            url=raw["url"],
            data=raw.get("data"),
            expected_status=int(raw.get("expectedStatus", 200)),
        )
    if action == Comment.action:
        return Comment(text=raw.get("text") or raw.get("value") or "")
    raise ValueError(f"Unknown test step action: {action!r}")


@dataclass(frozen=True)
class TestCase:
    """A generated test: an ordered sequence of steps."""

    __test__ = False  # keep pytest from collecting this class

    id: str
    name: str
    steps: tuple[TestStep, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, raw: dict) -> "TestCase":
        return cls(
            id=str(raw["id"]),
            name=raw.get("name") or str(raw["id"]),
            steps=tuple(parse_step(s) for s in raw.get("steps", [])),
        )
