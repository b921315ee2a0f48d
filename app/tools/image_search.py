from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable
from urllib.parse import quote, quote_plus

import httpx
from bs4 import BeautifulSoup

from app.config import settings
from app.errors import ImageResolutionFailure
from app.services import logger as log_service

BRAVE_IMAGE_SEARCH_URL = "https://api.search.brave.com/res/v1/images/search"
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# Runs in the page: absolute image sources whose rendered size clears the threshold.
_COLLECT_IMAGES_JS = """
(minDim) => Array.from(document.querySelectorAll('img'))
    .filter((img) => img.src && img.src.startsWith('http') && img.width > minDim && img.height > minDim)
    .map((img) => img.src)
"""

Resolver = Callable[[str], Awaitable["str | None"]]


def build_search_phrase(artist: str, title: str) -> str:
    return f"{artist} {title} painting artwork".strip()


def placeholder_image_url(title: str) -> str:
    """Deterministic stand-in image for an artwork whose image could not be resolved."""
    return settings.placeholder_image_url.format(title=quote(title or "Artwork"))


def pick_image(candidates: list[str]) -> str | None:
    """Choose a result image, skipping the leading page image (usually a logo) when possible."""
    urls = [c for c in candidates if isinstance(c, str) and c.startswith(("http://", "https://"))]
    if len(urls) > 1:
        return urls[1]
    return urls[0] if urls else None


def result_metadata_urls(soup: BeautifulSoup) -> list[str]:
    """Full-size URLs from result tiles that carry JSON metadata (Bing's ``a.iusc``)."""
    found: list[str] = []
    for anchor in soup.select("a.iusc"):
        raw_meta = anchor.get("m")
        if not isinstance(raw_meta, str):
            continue
        try:
            meta = json.loads(raw_meta)
        except json.JSONDecodeError:
            continue
        murl = meta.get("murl") if isinstance(meta, dict) else None
        if isinstance(murl, str) and murl.startswith("http"):
            found.append(murl)
    return found


def page_image_urls(soup: BeautifulSoup, *, min_dimension: int = 0) -> list[str]:
    found: list[str] = []
    for img in soup.find_all("img"):
        src = img.get("src") or img.get("data-src") or ""
        if not isinstance(src, str) or not src.startswith("http"):
            continue
        if min_dimension and not _large_enough(img, min_dimension):
            continue
        found.append(src)
    return found


def image_from_search_html(html: str, *, min_dimension: int = 0) -> str | None:
    """Pick a result image out of a static image-search results page."""
    soup = BeautifulSoup(html, "html.parser")
    metadata_urls = result_metadata_urls(soup)
    if metadata_urls:
        return metadata_urls[0]
    return pick_image(page_image_urls(soup, min_dimension=min_dimension))


def _large_enough(img: Any, min_dimension: int) -> bool:
    for attr in ("width", "height"):
        raw = img.get(attr)
        if raw is None:
            continue
        try:
            if int(str(raw).rstrip("px")) <= min_dimension:
                return False
        except ValueError:
            continue
    return True


class ImageResolver:
    """Resolves a search phrase to one image URL.

    The browser provider drives a single shared headless Chromium; the lock
    keeps it to one navigation at a time. A pool of browser sessions would
    replace the lock if image lookups ever need to run in parallel.
    """

    def __init__(
        self,
        provider: str | None = None,
        *,
        search_url: str | None = None,
        timeout_seconds: float | None = None,
        min_dimension: int | None = None,
        brave_api_key: str | None = None,
    ):
        self.provider = (provider or settings.image_provider).lower().strip()
        self.search_url = search_url or settings.image_search_url
        self.timeout_seconds = float(timeout_seconds or settings.image_timeout_seconds)
        self.min_dimension = settings.image_min_dimension if min_dimension is None else int(min_dimension)
        self.brave_api_key = settings.brave_api_key if brave_api_key is None else brave_api_key
        self._lock = asyncio.Lock()
        self._playwright: Any | None = None
        self._browser: Any | None = None

    def _resolvers(self) -> list[tuple[str, Resolver]]:
        if self.provider == "playwright":
            return [("playwright", self._resolve_with_playwright)]
        if self.provider == "brave":
            return [("brave", self._resolve_with_brave)]
        if self.provider == "html":
            return [("html", self._resolve_with_html)]
        if self.provider == "auto":
            chain: list[tuple[str, Resolver]] = [("playwright", self._resolve_with_playwright)]
            if self.brave_api_key:
                chain.append(("brave", self._resolve_with_brave))
            chain.append(("html", self._resolve_with_html))
            return chain
        raise ValueError(f"Unsupported IMAGE_PROVIDER: {self.provider}")

    async def resolve(self, phrase: str) -> str | None:
        """Return an image URL for ``phrase``, or None when no provider found one.

        Raises ``ImageResolutionFailure`` when every provider errored.
        """
        errors: list[str] = []
        answered = False
        async with self._lock:
            for name, resolver in self._resolvers():
                try:
                    url = await resolver(phrase)
                except Exception as exc:
                    errors.append(f"{name}: {exc}")
                    log_service.log_event(
                        event_type="image_provider_error",
                        message=f"Image provider {name} failed",
                        phrase=phrase,
                        error=str(exc),
                    )
                    continue
                if url:
                    return url
                answered = True
        if errors and not answered:
            raise ImageResolutionFailure(f"No image provider succeeded for '{phrase}': {'; '.join(errors)}")
        return None

    def _search_page_url(self, phrase: str) -> str:
        return self.search_url.format(query=quote_plus(phrase))

    async def _get_browser(self) -> Any:
        if self._browser is not None:
            return self._browser
        try:
            from playwright.async_api import async_playwright
        except Exception as exc:  # pragma: no cover - depends on browser install
            raise RuntimeError("Playwright is not installed") from exc

        driver = await async_playwright().start()
        try:
            browser = await driver.chromium.launch(headless=True)
        except BaseException:
            await driver.stop()
            raise
        self._playwright = driver
        self._browser = browser
        return browser

    async def _resolve_with_playwright(self, phrase: str) -> str | None:
        browser = await self._get_browser()
        timeout_ms = int(self.timeout_seconds * 1000)
        page = await browser.new_page(user_agent=USER_AGENT)
        try:  # pragma: no cover - integration behavior
            await page.goto(
                self._search_page_url(phrase),
                wait_until="networkidle",
                timeout=timeout_ms,
            )
            await page.wait_for_selector("img", timeout=timeout_ms)
            candidates = await page.evaluate(_COLLECT_IMAGES_JS, self.min_dimension)
        finally:
            await page.close()
        return pick_image(list(candidates or []))

    async def _resolve_with_brave(self, phrase: str) -> str | None:
        if not self.brave_api_key:
            raise RuntimeError("BRAVE_API_KEY is not configured")

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(
                BRAVE_IMAGE_SEARCH_URL,
                params={"q": phrase, "count": 5, "safesearch": "strict"},
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": self.brave_api_key,
                },
            )
            response.raise_for_status()
            payload = response.json()

        for item in payload.get("results", []) or []:
            properties = item.get("properties") or {}
            thumbnail = item.get("thumbnail") or {}
            url = properties.get("url") or thumbnail.get("src")
            if isinstance(url, str) and url.startswith("http"):
                return url
        return None

    async def _resolve_with_html(self, phrase: str) -> str | None:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True) as client:
            response = await client.get(
                self._search_page_url(phrase),
                headers={"User-Agent": USER_AGENT},
            )
            response.raise_for_status()
        return image_from_search_html(response.text, min_dimension=self.min_dimension)

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
