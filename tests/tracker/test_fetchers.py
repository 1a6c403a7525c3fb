"""
Test cases for store fetch strategies.
"""

import httpx
import pytest

from tracker.exceptions import FetchError, ValidationError
from tracker.fetchers import (
    AppStoreFetcher,
    FetcherRegistry,
    PlayStoreFetcher,
    create_fetcher_registry,
    dedupe_apps,
)
from tracker.models import FetchedApp, StoreKind


def transport_for(html: str, status_code: int = 200) -> httpx.MockTransport:
    def handler(request):
        return httpx.Response(status_code, text=html)
    return httpx.MockTransport(handler)


def test_dedupe_apps_keeps_first():
    """Test repeated app ids keep their first occurrence."""
    apps = [
        FetchedApp(app_id="a", name="First A"),
        FetchedApp(app_id="b", name="B"),
        FetchedApp(app_id="a", name="Second A"),
    ]

    assert [(a.app_id, a.name) for a in dedupe_apps(apps)] == [("a", "First A"), ("b", "B")]


class TestPlayStoreFetcher:
    """Test cases for PlayStoreFetcher."""

    def test_parse_detail_links(self, sample_play_store_page):
        """Test apps are read from detail links and normalised."""
        apps = dedupe_apps(PlayStoreFetcher().parse(sample_play_store_page))

        assert [a.app_id for a in apps] == ["com.example.alpha", "com.example.beta"]
        assert apps[0].name == "Alpha Quest"
        assert apps[0].link == "https://play.google.com/store/apps/details?id=com.example.alpha"
        assert apps[1].name == "Beta Runner"

    def test_parse_data_docid_fallback(self):
        """Test data-docid elements are used when no detail links exist."""
        html = '<div data-docid="com.example.gamma" title="Gamma"></div>'

        apps = PlayStoreFetcher().parse(html)

        assert [(a.app_id, a.name) for a in apps] == [("com.example.gamma", "Gamma")]

    def test_parse_empty_page(self):
        """Test a page without listings yields nothing."""
        assert PlayStoreFetcher().parse("<html><body>No apps</body></html>") == []

    @pytest.mark.asyncio
    async def test_fetch(self, sample_play_store_page):
        """Test fetching parses and de-duplicates the page."""
        fetcher = PlayStoreFetcher(transport=transport_for(sample_play_store_page))

        apps = await fetcher.fetch("https://play.google.com/store/apps/category/GAME_ACTION")

        assert len(apps) == 2

    @pytest.mark.asyncio
    async def test_fetch_error_status(self):
        """Test non-success responses raise FetchError."""
        fetcher = PlayStoreFetcher(transport=transport_for("", status_code=429))
        url = "https://play.google.com/store/apps/category/GAME"

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(url)

        assert exc_info.value.url == url

    @pytest.mark.asyncio
    async def test_fetch_timeout(self):
        """Test timeouts raise FetchError."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fetcher = PlayStoreFetcher(transport=httpx.MockTransport(handler))

        with pytest.raises(FetchError, match="Timed out"):
            await fetcher.fetch("https://play.google.com/store/apps/category/GAME")


class TestAppStoreFetcher:
    """Test cases for AppStoreFetcher."""

    def test_parse(self, sample_app_store_page):
        """Test ids come from the last path segment and links are made absolute."""
        apps = AppStoreFetcher().parse(sample_app_store_page)

        assert [a.app_id for a in apps] == ["id111", "id222"]
        assert apps[0].name == "Notes Plus"
        assert apps[0].link == "https://apps.apple.com/us/app/notes-plus/id111?platform=iphone"
        assert apps[1].name == "Photo Frame"
        assert apps[1].link == "https://apps.apple.com/us/app/photo-frame/id222"

    @pytest.mark.asyncio
    async def test_fetch_sends_browser_headers(self, sample_app_store_page):
        """Test requests carry a browser user agent."""
        seen = {}

        def handler(request):
            seen["user_agent"] = request.headers["User-Agent"]
            return httpx.Response(200, text=sample_app_store_page)

        fetcher = AppStoreFetcher(transport=httpx.MockTransport(handler))
        await fetcher.fetch("https://apps.apple.com/us/developer/example/id123456")

        assert seen["user_agent"].startswith("Mozilla/5.0")


class TestFetcherRegistry:
    """Test cases for FetcherRegistry."""

    def test_unknown_kind(self):
        """Test asking for an unregistered kind raises ValidationError."""
        registry = FetcherRegistry()

        with pytest.raises(ValidationError):
            registry.get(StoreKind.PLAYSTORE)
        with pytest.raises(ValidationError):
            registry.get("windows-store")

    def test_create_fetcher_registry(self, monitor_config):
        """Test the built-in strategies are registered with configured limits."""
        registry = create_fetcher_registry(monitor_config)

        assert set(registry.kinds()) == {StoreKind.PLAYSTORE, StoreKind.APPSTORE}
        assert isinstance(registry.get(StoreKind.APPSTORE), AppStoreFetcher)
        assert registry.get(StoreKind.PLAYSTORE).timeout == monitor_config.request_timeout

    @pytest.mark.asyncio
    async def test_fetch_routes_by_kind(self, monitor_config, sample_app_store_page):
        """Test fetch dispatches to the strategy for the kind."""
        registry = create_fetcher_registry(monitor_config, transport=transport_for(sample_app_store_page))

        apps = await registry.fetch("https://apps.apple.com/us/developer/example/id123456", StoreKind.APPSTORE)

        assert len(apps) == 2
