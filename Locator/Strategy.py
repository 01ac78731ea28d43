"""
Locator/Strategy.py — Stable locator derivation and healing alternatives.

Both operations are pure: they never touch a browser.  The crawler feeds
:meth:`LocatorStrategy.generate_locator` with :class:`ElementSnapshot`
records collected in a single ``page.evaluate()`` call, and the healer feeds
:meth:`LocatorStrategy.generate_alternatives` with a locator that just failed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

_TESTID_RE = re.compile(r'data-testid="([^"]+)"')
_HAS_TEXT_RE = re.compile(r':has-text\("([^"]+)"\)')

# Text longer than this is too volatile to match on
_MAX_TEXT_LENGTH = 50


@dataclass(frozen=True)
class ElementSnapshot:
    """Attributes of one DOM element, as captured by the crawler."""

    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    text: Optional[str] = None
    parent_tag: Optional[str] = None
    nth_child: int = 1
    """1-based position among the parent's element children."""

    @classmethod
    def from_raw(cls, raw: dict) -> "ElementSnapshot":
        """Build a snapshot from the dict shape returned by the extraction script."""
        attrs = {k: v for k, v in (raw.get("attrs") or {}).items() if v}
        return cls(
            tag=(raw.get("tag") or "*").lower(),
            attributes=attrs,
            text=raw.get("text"),
            parent_tag=(raw.get("parentTag") or None),
            nth_child=int(raw.get("index") or 1),
        )


class LocatorStrategy:
    """Locator derivation ranked by stability.

    Test-authoring attributes survive redesigns best; structural position is
    the least durable and only used when nothing else is available.
    """

    @staticmethod
    def generate_locator(element: ElementSnapshot) -> str:
        """Return the highest-ranked locator available for *element*."""
        attrs = element.attributes
        tag = element.tag

        if attrs.get("data-testid"):
            return f'[data-testid="{attrs["data-testid"]}"]'
        if attrs.get("id"):
            return f"#{attrs['id']}"
        if attrs.get("name"):
            return f'[name="{attrs["name"]}"]'
        if attrs.get("aria-label"):
            return f'[aria-label="{attrs["aria-label"]}"]'

        text = (element.text or "").strip()
        if 0 < len(text) < _MAX_TEXT_LENGTH:
            return f'{tag}:has-text("{text}")'

        classes = (attrs.get("class") or "").split()
        if classes:
            return f"{tag}.{'.'.join(classes[:2])}"

        if not element.parent_tag:
            return tag
        return f"{element.parent_tag} > {tag}:nth-child({element.nth_child})"

    @staticmethod
    def generate_alternatives(locator: str) -> list[str]:
        """Return plausible substitutes for a *locator* that failed to resolve.

        The order is the order candidates should be tried in.  The list never
        contains *locator* itself and may be empty.
        """
        candidates: list[str] = []

        if locator.startswith("#"):
            ident = locator[1:]
            candidates += [f'[name="{ident}"]', f".{ident}", f'[data-testid="{ident}"]']

        if locator.startswith("."):
            class_name = locator[1:]
            candidates += [f"#{class_name}", f'[data-testid="{class_name}"]']

        match = _TESTID_RE.search(locator)
        if match:
            test_id = match.group(1)
            candidates += [f"#{test_id}", f'[name="{test_id}"]']

        match = _HAS_TEXT_RE.search(locator)
        if match:
            text = match.group(1)
            candidates += [f"text={text}", f'[aria-label="{text}"]']

        alternatives: list[str] = []
        for candidate in candidates:
            if candidate != locator and candidate not in alternatives:
                alternatives.append(candidate)
        return alternatives
