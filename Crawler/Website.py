"""
Crawler/Website.py — Same-origin website discovery.

Walks a site depth-first from a seed URL inside a single Playwright page,
bounded by a page budget derived from the crawl depth tier, and records for
every visited page:
  - The title and a best-effort screenshot
  - Visible buttons, links (first 50), forms and their visible fields, each
    with a stable locator from :class:`~Locator.LocatorStrategy`
  - Outgoing same-origin links to continue the walk

After the walk, common user flows (login, registration, checkout) and the
element interactions a test could perform are derived from the pages.
"""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse, urlunparse

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page

from Locator import ElementSnapshot, LocatorStrategy
from Models import (
    ConfigurationError,
    CrawledPage,
    Interaction,
    InteractiveElement,
    ProgressCallback,
    ProgressUpdate,
    UserFlow,
    WebsiteMap,
    notify,
    page_budget,
)

logger = logging.getLogger(__name__)

_NAVIGATION_TIMEOUT = 30_000
_SETTLE_TIMEOUT = 10_000
_MAX_LINKS_PER_PAGE = 50

# Progress stays below this until the crawl has fully terminated
_PROGRESS_CEILING = 95.0

# File extensions that will never contain HTML worth crawling
_SKIP_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp",
        ".svg", ".ico", ".css", ".js", ".mjs",
        ".zip", ".tar", ".gz", ".rar", ".7z",
        ".exe", ".dmg", ".mp4", ".mp3", ".wav", ".avi", ".mov", ".webm",
        ".woff", ".woff2", ".ttf", ".eot", ".otf",
        ".xml", ".json", ".csv", ".xls", ".xlsx", ".doc", ".docx",
    }
)

# All DOM reads for one page happen in this single evaluate() call.
_EXTRACT_SCRIPT = """
    (maxLinks) => {
        const isVisible = (el) => {
            const style = window.getComputedStyle(el);
            if (style.display === 'none' || style.visibility === 'hidden') return false;
            const rect = el.getBoundingClientRect();
            return rect.width > 0 && rect.height > 0;
        };
        const snapshot = (el, kind) => {
            const parent = el.parentElement;
            return {
                kind,
                tag: el.tagName.toLowerCase(),
                attrs: {
                    'data-testid': el.getAttribute('data-testid'),
                    'id':          el.getAttribute('id'),
                    'name':        el.getAttribute('name'),
                    'aria-label':  el.getAttribute('aria-label'),
                    'class':       el.getAttribute('class'),
                },
                text: (el.textContent || '').trim(),
                parentTag: parent ? parent.tagName.toLowerCase() : null,
                index: parent ? Array.from(parent.children).indexOf(el) + 1 : 1,
            };
        };

        const elements = [];
        document.querySelectorAll(
            'button, input[type="button"], input[type="submit"]'
        ).forEach(el => { if (isVisible(el)) elements.push(snapshot(el, 'button')); });

        const anchors = Array.from(document.querySelectorAll('a[href]'));
        anchors.slice(0, maxLinks).forEach(el => {
            if (isVisible(el)) elements.push(snapshot(el, 'link'));
        });

        document.querySelectorAll('form').forEach(form => {
            if (!isVisible(form)) return;
            elements.push(snapshot(form, 'form'));
            form.querySelectorAll('input, select, textarea').forEach(el => {
                if (!isVisible(el)) return;
                const kind = el.tagName.toLowerCase() === 'select' ? 'select' : 'input';
                elements.push(snapshot(el, kind));
            });
        });

        const links = anchors
            .map(a => a.href)
            .filter(href => href && !href.startsWith('javascript:'));
        return { elements, links };
    }
"""


@dataclass
class CrawlState:
    """Mutable state of one crawl invocation, threaded through the walk."""

    base_url: str
    budget: int
    visited: set[str] = field(default_factory=set)
    pages: list[CrawledPage] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return len(self.visited) >= self.budget


# ---------------------------------------------------------------------------
# Website crawler
# ---------------------------------------------------------------------------


class WebsiteCrawler:
    """Depth-first, budget-bounded crawler for a single origin.

    Holds no per-crawl state itself, so one instance may run several crawls
    (even concurrently) against different targets.
    """

    def __init__(
        self,
        context: BrowserContext,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.context = context
        self.on_progress = on_progress

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def crawl(self, start_url: str, depth: str = "deep") -> WebsiteMap:
        """Crawl from *start_url* and return the website part of the application map.

        Raises :class:`~Models.ConfigurationError` for an unknown *depth* or a
        seed URL without an http(s) origin.  Failures on individual pages are
        logged and skipped.
        """
        budget = page_budget(depth)
        base_url = self._origin(start_url)
        if not base_url:
            raise ConfigurationError(f"Not an http(s) URL: {start_url!r}")

        state = CrawlState(base_url=base_url, budget=budget)
        logger.info("Crawling %s (depth=%s, max pages=%d)", start_url, depth, budget)

        page: Optional[Page] = None
        try:
            page = await self.context.new_page()
            await self._visit(page, state, start_url)
        finally:
            if page and not page.is_closed():
                try:
                    await page.close()
                except PlaywrightError as exc:
                    logger.debug("Error closing crawl page: %s", exc)

        website = WebsiteMap(
            base_url=base_url,
            pages=state.pages,
            user_flows=self.identify_user_flows(state.pages),
            interactions=self.extract_interactions(state.pages),
        )
        notify(
            self.on_progress,
            ProgressUpdate(
                progress=100.0,
                message="Crawling completed",
                pages_found=len(state.pages),
                links_found=len(state.visited),
            ),
        )
        return website

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    async def _visit(self, page: Page, state: CrawlState, url: str) -> None:
        """Visit *url* and recurse into its links until the budget runs out."""
        url = self._normalize_url(url)
        if not url or url in state.visited or state.exhausted:
            return
        if not self._same_origin(url, state.base_url) or self._should_skip(url):
            return

        state.visited.add(url)
        try:
            logger.debug("Crawling %s", url)
            await page.goto(url, wait_until="domcontentloaded", timeout=_NAVIGATION_TIMEOUT)
            await self._settle(page)
            crawled, links = await self._extract_page(page, url)
        except PlaywrightError as exc:
            logger.warning("Error crawling %s: %s", url, exc)
            return
        except Exception as exc:
            logger.warning("Unexpected error crawling %s: %s", url, exc)
            return

        state.pages.append(crawled)
        notify(
            self.on_progress,
            ProgressUpdate(
                progress=min(len(state.visited) / state.budget * 100, _PROGRESS_CEILING),
                message=f"Crawled {len(state.visited)}/{state.budget} pages",
                pages_found=len(state.pages),
                links_found=len(state.visited),
            ),
        )

        for link in links:
            if state.exhausted:
                break
            if self._same_origin(link, state.base_url):
                await self._visit(page, state, link)

    async def _settle(self, page: Page) -> None:
        """Wait a bounded time for network idle; a timeout is good enough."""
        try:
            await page.wait_for_load_state("networkidle", timeout=_SETTLE_TIMEOUT)
        except PlaywrightError:
            logger.debug("Network never went idle on %s, continuing", page.url)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def _extract_page(self, page: Page, url: str) -> tuple[CrawledPage, list[str]]:
        """Return the :class:`CrawledPage` for *url* plus its outgoing links."""
        title = await page.title()

        raw: dict = {"elements": [], "links": []}
        try:
            raw = await page.evaluate(_EXTRACT_SCRIPT, _MAX_LINKS_PER_PAGE) or raw
        except PlaywrightError as exc:
            logger.debug("Error extracting elements from %s: %s", url, exc)

        screenshot: Optional[str] = None
        try:
            screenshot = base64.b64encode(await page.screenshot(full_page=False)).decode()
        except PlaywrightError:
            pass

        crawled = CrawledPage(
            url=url,
            title=title,
            elements=self._to_elements(raw.get("elements") or []),
            screenshot=screenshot,
        )
        return crawled, self._filter_links(raw.get("links") or [])

    @staticmethod
    def _to_elements(raw_elements: list[dict]) -> list[InteractiveElement]:
        """Convert raw snapshots to elements, keeping the first of each locator."""
        elements: list[InteractiveElement] = []
        seen: set[str] = set()
        for raw in raw_elements:
            locator = LocatorStrategy.generate_locator(ElementSnapshot.from_raw(raw))
            if locator in seen:
                continue
            seen.add(locator)
            text = (raw.get("text") or "").strip()
            elements.append(
                InteractiveElement(
                    type=raw.get("kind", "button"),
                    locator=locator,
                    text=text or None,
                    visible=True,
                )
            )
        return elements

    def _filter_links(self, hrefs: list[str]) -> list[str]:
        links: list[str] = []
        seen: set[str] = set()
        for href in hrefs:
            norm = self._normalize_url(href)
            if norm and norm not in seen and not self._should_skip(norm):
                seen.add(norm)
                links.append(norm)
        return links

    # ------------------------------------------------------------------
    # Derived data
    # ------------------------------------------------------------------

    @staticmethod
    def identify_user_flows(pages: list[CrawledPage]) -> list[UserFlow]:
        """Infer common user flows from page URLs, titles and element text."""
        flows: list[UserFlow] = []

        def _any(predicate) -> bool:
            return any(predicate(p) for p in pages)

        if _any(
            lambda p: "login" in p.url.lower()
            or "login" in p.title.lower()
            or any("login" in (e.text or "").lower() for e in p.elements)
        ):
            flows.append(
                UserFlow(
                    name="User Login",
                    steps=("Navigate to login page", "Enter credentials", "Submit form"),
                    priority="critical",
                )
            )

        if _any(
            lambda p: any(k in p.url.lower() for k in ("register", "signup"))
            or any(k in p.title.lower() for k in ("register", "sign up"))
        ):
            flows.append(
                UserFlow(
                    name="User Registration",
                    steps=("Navigate to register page", "Fill registration form", "Submit"),
                    priority="high",
                )
            )

        if _any(lambda p: any(k in p.url.lower() for k in ("checkout", "cart"))):
            flows.append(
                UserFlow(
                    name="Checkout Flow",
                    steps=(
                        "Add to cart",
                        "View cart",
                        "Proceed to checkout",
                        "Complete purchase",
                    ),
                    priority="critical",
                )
            )

        return flows

    @staticmethod
    def extract_interactions(pages: list[CrawledPage]) -> list[Interaction]:
        """Map every clickable/fillable element to the interaction it affords."""
        actions = {"button": "click", "link": "click", "input": "fill", "select": "select"}
        interactions: list[Interaction] = []
        for page in pages:
            for element in page.elements:
                action = actions.get(element.type)
                if action:
                    interactions.append(Interaction(element=element, action=action, page=page.url))
        return interactions

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _origin(url: str) -> str:
        """Return ``scheme://netloc`` for *url*, or ``""`` if it is not http(s)."""
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            return ""
        return f"{parsed.scheme}://{parsed.netloc}"

    def _same_origin(self, url: str, base_url: str) -> bool:
        return self._origin(url) == base_url

    @staticmethod
    def _normalize_url(url: str) -> str:
        """Return a fragment-free version of *url*, or ``""`` for non-http(s) URLs."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return ""
        if parsed.scheme not in {"http", "https"}:
            return ""
        return urlunparse(parsed._replace(fragment=""))

    @staticmethod
    def _should_skip(url: str) -> bool:
        """Return *True* if the URL points to a non-HTML resource."""
        path = urlparse(url).path.lower()
        _, dot, ext = path.rpartition(".")
        return bool(dot) and f".{ext}" in _SKIP_EXTENSIONS
