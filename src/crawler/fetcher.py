from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from loguru import logger
from playwright.sync_api import sync_playwright
from playwright_stealth import Stealth

from src.config import get_settings
from src.crawler.extractor import ExtractedData, extract_data

USER_AGENTS = [
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15"
    ),
]


class FetchError(Exception):
    """Page could not be fetched or yielded nothing usable. Retried with backoff."""


def get_random_headers() -> dict:
    return {
        "User-Agent": random.choice(USER_AGENTS),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }


class ContentFetcher(ABC):
    @abstractmethod
    def fetch_html(self, url: str) -> str:
        """Return the page HTML; raise FetchError on failure."""
        ...

    def fetch(self, url: str) -> ExtractedData:
        html = self.fetch_html(url)
        if not html or not html.strip():
            raise FetchError(f"Empty page returned for {url}")
        try:
            data = extract_data(html)
        except Exception as e:
            raise FetchError(f"Extraction failed for {url}: {e}") from e
        logger.info(
            f"Extracted {len(data.prices)} prices, {len(data.promotions)} promotions, "
            f"{len(data.menu_items)} menu items from {url}"
        )
        return data

    def close(self) -> None:
        pass


class HttpContentFetcher(ContentFetcher):
    def __init__(self, timeout: Optional[float] = None):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.crawler_timeout_ms / 1000
        self.client = httpx.Client(timeout=self.timeout, follow_redirects=True)

    def fetch_html(self, url: str) -> str:
        try:
            response = self.client.get(url, headers=get_random_headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(f"HTTP {e.response.status_code} from {url}") from e
        except httpx.RequestError as e:
            raise FetchError(f"Request to {url} failed: {e}") from e
        return response.text

    def close(self) -> None:
        self.client.close()


class BrowserContentFetcher(ContentFetcher):
    """Renders the page in headless Chromium, for sites that build their content in JavaScript."""

    def __init__(self, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms or get_settings().crawler_timeout_ms

    def fetch_html(self, url: str) -> str:
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(
                    headless=True,
                    args=[
                        "--disable-blink-features=AutomationControlled",
                        "--no-sandbox",
                        "--disable-dev-shm-usage",
                    ],
                )
                try:
                    context = browser.new_context(
                        user_agent=random.choice(USER_AGENTS),
                        viewport={"width": 1280, "height": 800},
                    )
                    page = context.new_page()
                    Stealth().apply_stealth_sync(page)
                    page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                    return page.content()
                finally:
                    browser.close()
        except Exception as e:
            raise FetchError(f"Browser fetch of {url} failed: {e}") from e


def get_fetcher() -> ContentFetcher:
    if get_settings().crawler_use_browser:
        return BrowserContentFetcher()
    return HttpContentFetcher()
