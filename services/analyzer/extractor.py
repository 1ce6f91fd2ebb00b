"""
Full-text extraction for article pages.

A renderer turns a URL into HTML; readability then keeps the main article
body. Extraction failures are routine (paywalls, anti-bot pages, broken
markup), so ``ContentExtractor.extract`` reports them in its result instead
of raising.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

import httpx
from bs4 import BeautifulSoup
from playwright.async_api import async_playwright
from readability import Document

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.article import ExtractionStatus
from shared.utils.text import normalize_whitespace

logger = get_logger("analyzer.extractor")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class ExtractionResult:
    status: ExtractionStatus
    text: str = ""
    title: Optional[str] = None
    byline: Optional[str] = None
    length: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ExtractionStatus.SUCCESS

    @classmethod
    def failed(cls, error: str) -> "ExtractionResult":
        return cls(status=ExtractionStatus.FAILED, error=error)


class PageRenderer(ABC):
    """Turns a URL into the serialized DOM of the loaded page."""

    @abstractmethod
    async def render(self, url: str, timeout: float) -> str:
        ...


class PlaywrightRenderer(PageRenderer):
    """Headless Chromium in a fresh browser context per page."""

    def __init__(self, settle_ms: int = 2000):
        self.settle_ms = settle_ms

    async def render(self, url: str, timeout: float) -> str:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                context = await browser.new_context(user_agent=USER_AGENT)
                page = await context.new_page()
                await page.goto(url, wait_until="domcontentloaded", timeout=int(timeout * 1000))
                # Let client-side rendering settle
                await page.wait_for_timeout(self.settle_ms)
                return await page.content()
            finally:
                await browser.close()


class HttpxRenderer(PageRenderer):
    """Plain HTTP fetch without JavaScript execution."""

    async def render(self, url: str, timeout: float) -> str:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.text


def build_renderer(name: str) -> PageRenderer:
    if name == "http":
        return HttpxRenderer()
    return PlaywrightRenderer()


def extract_main_content(html: str):
    """Run readability over a page and return (text, title, byline)."""
    doc = Document(html)
    body_html = doc.summary(html_partial=True)
    text = BeautifulSoup(body_html, "html.parser").get_text(separator="\n", strip=True)
    text = "\n".join(normalize_whitespace(line) for line in text.splitlines() if line.strip())

    page = BeautifulSoup(html, "html.parser")
    byline = None
    meta = page.find("meta", attrs={"name": "author"})
    if meta and meta.get("content"):
        byline = normalize_whitespace(meta["content"])

    title = normalize_whitespace(doc.short_title() or "") or None
    return text, title, byline


def is_blocked(url: str, blocked_domains: Iterable[str]) -> bool:
    host = (urlsplit(url).hostname or "").lower()
    return any(host == domain or host.endswith("." + domain) for domain in blocked_domains)


class ContentExtractor:
    """Full-text extraction with a mandatory wall-clock timeout per attempt."""

    def __init__(
        self,
        renderer: Optional[PageRenderer] = None,
        timeout: Optional[float] = None,
        min_length: Optional[int] = None,
        blocked_domains: Optional[Iterable[str]] = None,
    ):
        settings = get_settings().pipeline
        self.renderer = renderer or build_renderer(settings.extraction_renderer)
        self.timeout = timeout if timeout is not None else settings.extraction_timeout
        self.min_length = min_length if min_length is not None else settings.min_content_length
        self.blocked_domains = [
            d.lower() for d in (blocked_domains if blocked_domains is not None else settings.blocked_domains)
        ]

    async def extract(self, url: str) -> ExtractionResult:
        if not url:
            return ExtractionResult.failed("no url")
        if is_blocked(url, self.blocked_domains):
            logger.info(f"🚫 Skipping extraction for blocked domain: {url}")
            return ExtractionResult.failed("blocked domain")

        try:
            html = await asyncio.wait_for(self.renderer.render(url, self.timeout), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ Extraction timed out after {self.timeout}s: {url}")
            return ExtractionResult.failed(f"timed out after {self.timeout:g}s")
        except Exception as e:
            logger.warning(f"Failed to render {url}: {e}")
            return ExtractionResult.failed(f"render failed: {e}")

        try:
            text, title, byline = extract_main_content(html or "")
        except Exception as e:
            logger.warning(f"Readability failed for {url}: {e}")
            return ExtractionResult.failed(f"readability failed: {e}")

        if len(text) < self.min_length:
            logger.info(f"Extracted text too short ({len(text)} chars): {url}")
            return ExtractionResult.failed(f"extracted text below {self.min_length} characters")

        logger.debug(f"Extracted {len(text)} chars from {url}")
        return ExtractionResult(
            status=ExtractionStatus.SUCCESS,
            text=text,
            title=title,
            byline=byline,
            length=len(text),
        )
