from __future__ import annotations

import json
import sys
import types
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from app.errors import ImageResolutionFailure
from app.tools.image_search import (
    ImageResolver,
    build_search_phrase,
    image_from_search_html,
    pick_image,
    placeholder_image_url,
)


def test_search_phrase_combines_artist_and_title():
    assert build_search_phrase("Caravaggio", "The Calling of Saint Matthew") == (
        "Caravaggio The Calling of Saint Matthew painting artwork"
    )


def test_placeholder_url_encodes_title():
    url = placeholder_image_url("The Last Supper")
    assert url.startswith("https://")
    assert "The%20Last%20Supper" in url


class TestPickImage:
    def test_skips_leading_logo(self):
        assert pick_image(["https://a/logo.png", "https://a/painting.jpg", "https://a/c.jpg"]) == "https://a/painting.jpg"

    def test_single_candidate(self):
        assert pick_image(["https://a/painting.jpg"]) == "https://a/painting.jpg"

    def test_ignores_non_http(self):
        assert pick_image(["data:image/png;base64,xx", "/relative.png"]) is None


class TestSearchHtml:
    def test_prefers_result_metadata(self):
        meta = json.dumps({"murl": "https://museum.example/full.jpg"})
        html = f"""
            <img src="https://bing.example/logo.png" width="300" height="300">
            <a class="iusc" m='{meta}'><img src="https://bing.example/thumb.jpg"></a>
        """
        assert image_from_search_html(html) == "https://museum.example/full.jpg"

    def test_falls_back_to_large_page_images(self):
        html = """
            <img src="https://bing.example/logo.png">
            <img src="https://bing.example/icon.png" width="16" height="16">
            <img src="https://museum.example/painting.jpg" width="400" height="300">
        """
        assert image_from_search_html(html, min_dimension=100) == "https://museum.example/painting.jpg"

    def test_no_images(self):
        assert image_from_search_html("<html><body>No results</body></html>") is None


class TestImageResolver:
    @pytest.mark.asyncio
    async def test_auto_falls_through_to_next_provider(self):
        resolver = ImageResolver("auto", brave_api_key="")
        with patch.object(resolver, "_resolve_with_playwright", AsyncMock(side_effect=RuntimeError("no browser"))), \
             patch.object(resolver, "_resolve_with_html", AsyncMock(return_value="https://museum.example/p.jpg")):
            assert await resolver.resolve("Giotto Lamentation painting artwork") == "https://museum.example/p.jpg"

    @pytest.mark.asyncio
    async def test_auto_includes_brave_when_key_set(self):
        resolver = ImageResolver("auto", brave_api_key="key")
        assert [name for name, _ in resolver._resolvers()] == ["playwright", "brave", "html"]

    @pytest.mark.asyncio
    async def test_all_providers_failing_raises(self):
        resolver = ImageResolver("auto", brave_api_key="")
        with patch.object(resolver, "_resolve_with_playwright", AsyncMock(side_effect=RuntimeError("no browser"))), \
             patch.object(resolver, "_resolve_with_html", AsyncMock(side_effect=RuntimeError("HTTP 503"))):
            with pytest.raises(ImageResolutionFailure):
                await resolver.resolve("Giotto Lamentation painting artwork")

    @pytest.mark.asyncio
    async def test_clean_miss_returns_none(self):
        resolver = ImageResolver("auto", brave_api_key="")
        with patch.object(resolver, "_resolve_with_playwright", AsyncMock(side_effect=RuntimeError("no browser"))), \
             patch.object(resolver, "_resolve_with_html", AsyncMock(return_value=None)):
            assert await resolver.resolve("Giotto Lamentation painting artwork") is None

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError, match="Unsupported IMAGE_PROVIDER"):
            ImageResolver("flickr")._resolvers()

    @pytest.mark.asyncio
    async def test_brave_requires_key(self):
        resolver = ImageResolver("brave", brave_api_key="")
        with pytest.raises(ImageResolutionFailure):
            await resolver.resolve("anything")

    @pytest.mark.asyncio
    async def test_close_without_browser_is_noop(self):
        await ImageResolver("html").close()


class _FakeDriver:
    def __init__(self, browser=None, launch_error: Exception | None = None):
        self.chromium = SimpleNamespace(launch=AsyncMock(return_value=browser, side_effect=launch_error))
        self.stopped = False

    async def stop(self):
        self.stopped = True


def _fake_playwright_modules(make_driver):
    drivers: list[_FakeDriver] = []

    class _Starter:
        async def start(self):
            driver = make_driver()
            drivers.append(driver)
            return driver

    async_api = types.ModuleType("playwright.async_api")
    async_api.async_playwright = _Starter
    modules = {"playwright": types.ModuleType("playwright"), "playwright.async_api": async_api}
    return modules, drivers


class TestBrowserLifecycle:
    @pytest.mark.asyncio
    async def test_failed_launch_stops_each_driver(self):
        modules, drivers = _fake_playwright_modules(
            lambda: _FakeDriver(launch_error=RuntimeError("Executable doesn't exist"))
        )
        resolver = ImageResolver("playwright")
        with patch.dict(sys.modules, modules):
            for _ in range(5):
                with pytest.raises(ImageResolutionFailure):
                    await resolver.resolve("Fra Angelico Annunciation painting artwork")
            await resolver.close()

        assert len(drivers) == 5
        assert all(driver.stopped for driver in drivers)

    @pytest.mark.asyncio
    async def test_browser_is_reused_and_released_on_close(self):
        browser = SimpleNamespace(close=AsyncMock())
        modules, drivers = _fake_playwright_modules(lambda: _FakeDriver(browser=browser))
        resolver = ImageResolver("playwright")
        with patch.dict(sys.modules, modules):
            assert await resolver._get_browser() is browser
            assert await resolver._get_browser() is browser
            await resolver.close()

        assert len(drivers) == 1
        assert drivers[0].stopped
        browser.close.assert_awaited_once()
