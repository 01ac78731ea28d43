"""
Models/Crawler.py — Data types produced by the crawlers (the application map).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class InteractiveElement:
    """A single interactive element recorded on a crawled page."""

    type: str
    """One of ``button``, ``link``, ``input``, ``select``, ``form``."""

    locator: str
    """Locator that resolves the element against a live DOM."""

    text: Optional[str] = None
    """Trimmed visible text, when the element has any."""

    visible: bool = True


@dataclass
class CrawledPage:
    """Everything recorded for one unique URL visited by the website crawler."""

    url: str
    title: str
    elements: list[InteractiveElement] = field(default_factory=list)
    screenshot: Optional[str] = None
    """Base64-encoded PNG, or *None* when capture failed."""


@dataclass(frozen=True)
class UserFlow:
    """A user journey inferred from page URLs, titles and element text."""

    name: str
    steps: tuple[str, ...]
    priority: str
    """One of ``critical``, ``high``, ``medium``."""


@dataclass(frozen=True)
class Interaction:
    """An action a test could perform against an element on a page."""

    element: InteractiveElement
    action: str
    """One of ``click``, ``fill``, ``select``."""

    page: str
    """URL of the page that owns the element."""


@dataclass
class WebsiteMap:
    base_url: str
    pages: list[CrawledPage] = field(default_factory=list)
    user_flows: list[UserFlow] = field(default_factory=list)
    interactions: list[Interaction] = field(default_factory=list)


@dataclass
class ApiEndpoint:
    """One discovered HTTP endpoint. Identity is :attr:`key`."""

    path: str
    method: str
    parameters: Optional[Any] = None
    request_body: Optional[Any] = None
    response_schema: Optional[Any] = None

    @property
    def key(self) -> str:
        return f"{self.method}:{self.path}"


@dataclass
class ApiMap:
    base_url: str
    endpoints: list[ApiEndpoint] = field(default_factory=list)
    authentication: str = "none"
    """Inferred auth type: ``bearer`` or ``none``."""


@dataclass
class ApplicationMap:
    """Combined discovery result handed to test generation and reporting."""

    website: Optional[WebsiteMap] = None
    api: Optional[ApiMap] = None

    def to_dict(self) -> dict:
        return asdict(self)
