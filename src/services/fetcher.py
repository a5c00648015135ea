"""
Playwright page fetcher.

One headless Chromium browser is shared for a whole run; every fetch opens its
own page and always closes it. HTML is reduced to title, meta description and
visible body text with BeautifulSoup.
"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Playwright,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from ..models import PageContent
from ..pipeline.errors import FetchError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

_WHITESPACE_RE = re.compile(r"\s+")
_INVISIBLE_TAGS = ["script", "style", "noscript", "template", "svg"]


def collapse_whitespace(text: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def parse_page(html: str, url: str) -> PageContent:
    """Extract title, meta description and visible text from HTML."""
    soup = BeautifulSoup(html, "lxml")

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string

    description = None
    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    if meta and meta.get("content"):
        description = collapse_whitespace(meta["content"]) or None

    for element in soup(_INVISIBLE_TAGS):
        element.decompose()
    body = soup.body or soup
    text = collapse_whitespace(body.get_text(separator=" "))

    return PageContent(url=url, title=title, description=description, text=text)


class PageFetcher:
    """Async context manager owning the browser for one run."""

    def __init__(self, headless: bool = True, user_agent: str = USER_AGENT):
        self.headless = headless
        self.user_agent = user_agent
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def __aenter__(self) -> "PageFetcher":
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport={"width": 1920, "height": 1080},
        )
        logger.debug("🌐 Browser started")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._context = self._browser = self._playwright = None
            logger.debug("🌐 Browser closed")

    async def fetch(self, url: str, timeout_ms: int) -> PageContent:
        """Navigate to `url` and return its visible content.

        Raises:
            FetchError: on navigation timeout, network error or HTTP status >= 400
        """
        if self._context is None:
            raise RuntimeError("PageFetcher must be used as an async context manager")

        page = await self._context.new_page()
        try:
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if response is not None and response.status >= 400:
                raise FetchError(url, f"HTTP {response.status}")
            html = await page.content()
        except PlaywrightTimeout as e:
            raise FetchError(url, f"Navigation timeout after {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise FetchError(url, f"Navigation failed: {str(e)[:200]}") from e
        finally:
            await page.close()

        return parse_page(html, url)
