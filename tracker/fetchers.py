"""
Fetch strategies for store listing pages.

Each store kind maps to one StoreFetcher registered in a FetcherRegistry,
so supporting another store means registering one more strategy.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx
import structlog
from asyncio_throttle import Throttler
from bs4 import BeautifulSoup

from .exceptions import FetchError, ValidationError
from .models import FetchedApp, StoreKind

logger = structlog.get_logger(__name__)


def dedupe_apps(apps: List[FetchedApp]) -> List[FetchedApp]:
    """Drop repeated app ids, keeping the first occurrence."""
    seen = set()
    unique = []
    for app in apps:
        if app.app_id not in seen:
            seen.add(app.app_id)
            unique.append(app)
    return unique


class StoreFetcher(ABC):
    """
    Retrieves the apps currently listed on one kind of store page.
    """

    kind: StoreKind
    user_agent = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    def __init__(
        self,
        timeout: float = 15.0,
        rate_limit_per_second: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the fetcher.

        Args:
            timeout: Per-request timeout in seconds
            rate_limit_per_second: Maximum page requests per second
            transport: Optional httpx transport (used to fake the network in tests)
        """
        self.timeout = timeout
        self.throttler = Throttler(rate_limit=rate_limit_per_second)
        self.transport = transport
        self.logger = logger.bind(component=f"{self.kind.value}_fetcher")

    def _client_config(self) -> dict:
        return {
            "timeout": self.timeout,
            "headers": {
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
            "follow_redirects": True,
            "transport": self.transport,
        }

    async def fetch(self, url: str) -> List[FetchedApp]:
        """
        Fetch and parse a store page.

        Raises:
            FetchError: Timeout, transport failure or non-success status
        """
        async with self.throttler:
            try:
                async with httpx.AsyncClient(**self._client_config()) as client:
                    response = await client.get(url)
                    response.raise_for_status()
            except httpx.TimeoutException as e:
                self.logger.warning("Store page request timed out", url=url)
                raise FetchError(f"Timed out fetching {url}", url=url) from e
            except httpx.HTTPError as e:
                self.logger.warning("Store page request failed", url=url, error=str(e))
                raise FetchError(f"Failed to fetch {url}: {e}", url=url) from e

        apps = dedupe_apps(self.parse(response.text))
        self.logger.debug("Parsed store page", url=url, apps=len(apps))
        return apps

    @abstractmethod
    def parse(self, html: str) -> List[FetchedApp]:
        """Extract listed apps from page markup."""


class PlayStoreFetcher(StoreFetcher):
    """Google Play developer, category and collection pages."""

    kind = StoreKind.PLAYSTORE
    details_url = "https://play.google.com/store/apps/details?id={app_id}"
    selectors = [
        'a[href*="/store/apps/details?id="]',
        '[data-docid]',
        '.card-click-target',
    ]

    def parse(self, html: str) -> List[FetchedApp]:
        soup = BeautifulSoup(html, "html.parser")
        apps: List[FetchedApp] = []

        for selector in self.selectors:
            for element in soup.select(selector):
                app_id = None
                href = element.get("href")
                if not href:
                    anchor = element.find("a")
                    href = anchor.get("href") if anchor else None
                if href and "id=" in href:
                    app_id = href.split("id=")[1].split("&")[0]
                if not app_id:
                    app_id = element.get("data-docid")

                titled = element.find(attrs={"title": True})
                name = (
                    (titled.get("title") if titled else None)
                    or element.get("title")
                    or element.get_text(strip=True)
                )

                if app_id and name:
                    apps.append(FetchedApp(
                        app_id=app_id,
                        name=name,
                        link=self.details_url.format(app_id=app_id)
                    ))

            # The first selector that yields apps wins
            if apps:
                break

        return apps


class AppStoreFetcher(StoreFetcher):
    """Apple App Store developer and genre pages."""

    kind = StoreKind.APPSTORE
    user_agent = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
    base_url = "https://apps.apple.com"

    def parse(self, html: str) -> List[FetchedApp]:
        soup = BeautifulSoup(html, "html.parser")
        apps: List[FetchedApp] = []

        for anchor in soup.select('a[href*="/app/"]'):
            href = anchor.get("href")
            if not href:
                continue

            app_id = href.split("/")[-1].split("?")[0]
            image = anchor.find("img")
            name = anchor.get_text(strip=True) or (image.get("alt") if image else None)

            if app_id and name:
                link = href if href.startswith("http") else f"{self.base_url}{href}"
                apps.append(FetchedApp(app_id=app_id, name=name, link=link))

        return apps


class FetcherRegistry:
    """Maps store kinds to fetch strategies."""

    def __init__(self):
        self._fetchers: Dict[StoreKind, StoreFetcher] = {}

    def register(self, kind: StoreKind, fetcher: StoreFetcher) -> None:
        self._fetchers[StoreKind(kind)] = fetcher

    def get(self, kind: StoreKind) -> StoreFetcher:
        try:
            return self._fetchers[StoreKind(kind)]
        except (KeyError, ValueError):
            raise ValidationError(f"No fetcher registered for store kind: {kind}")

    def kinds(self) -> List[StoreKind]:
        return list(self._fetchers)

    async def fetch(self, url: str, kind: StoreKind) -> List[FetchedApp]:
        return await self.get(kind).fetch(url)


def create_fetcher_registry(config, transport: Optional[httpx.AsyncBaseTransport] = None) -> FetcherRegistry:
    """Registry with the built-in Play Store and App Store strategies."""
    registry = FetcherRegistry()
    for fetcher_class in (PlayStoreFetcher, AppStoreFetcher):
        registry.register(
            fetcher_class.kind,
            fetcher_class(
                timeout=config.request_timeout,
                rate_limit_per_second=config.rate_limit_per_second,
                transport=transport
            )
        )
    return registry
