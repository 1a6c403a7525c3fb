"""
Pytest configuration and shared fixtures.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from scheduler.alerting import WebhookNotifier
from scheduler.context import build_context
from scheduler.models import NotifierConfig
from scheduler.pipeline import CheckPipeline
from tracker.database import InMemorySourceStore
from tracker.fetchers import FetcherRegistry
from tracker.models import FetchedApp, IntervalUnit, Source, StoreKind
from utilities.config import MonitorConfig


class FakeFetcher:
    """Fetch strategy returning canned apps, an error, or waiting on a gate."""

    def __init__(self, apps: Optional[List[FetchedApp]] = None):
        self.apps = apps or []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.calls: List[str] = []

    async def fetch(self, url: str) -> List[FetchedApp]:
        self.calls.append(url)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.apps)


@pytest.fixture
def now():
    """Fixed reference time for deterministic tests."""
    return datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """Fresh in-memory store."""
    return InMemorySourceStore()


@pytest.fixture
def make_fetcher():
    """Factory for additional fake fetchers."""
    return FakeFetcher


@pytest.fixture
def fake_fetcher():
    """Fake fetcher listing apps a and b."""
    return FakeFetcher([
        FetchedApp(app_id="a", name="App A", link="https://play.google.com/store/apps/details?id=a"),
        FetchedApp(app_id="b", name="App B", link="https://play.google.com/store/apps/details?id=b"),
    ])


@pytest.fixture
def fetchers(fake_fetcher):
    """Registry serving both store kinds from the fake fetcher."""
    registry = FetcherRegistry()
    registry.register(StoreKind.PLAYSTORE, fake_fetcher)
    registry.register(StoreKind.APPSTORE, fake_fetcher)
    return registry


@pytest.fixture
def disabled_notifier():
    """Notifier with no webhook configured."""
    return WebhookNotifier(NotifierConfig(enabled=True, webhook_url=None))


@pytest.fixture
def pipeline(store, fetchers, disabled_notifier):
    """Check pipeline over the in-memory store and fake fetcher."""
    return CheckPipeline(store, fetchers, disabled_notifier)


@pytest.fixture
def monitor_config():
    """Monitor configuration independent of the environment."""
    return MonitorConfig(
        _env_file=None,
        storage_backend="memory",
        webhook_url=None,
        min_trigger_spacing_seconds=30.0,
        log_file=None
    )


@pytest.fixture
def context(monitor_config, store, fetchers):
    """Application context wired to the in-memory store and fake fetcher."""
    return build_context(monitor_config, store=store, fetchers=fetchers)


@pytest.fixture
def play_source():
    """Never-checked Play Store source, due immediately."""
    return Source(
        name="Play Store Game Action Category",
        url="https://play.google.com/store/apps/category/GAME_ACTION",
        kind=StoreKind.PLAYSTORE,
        check_interval_value=6,
        check_interval_unit=IntervalUnit.HOURS
    )


@pytest.fixture
def app_source():
    """Never-checked App Store source."""
    return Source(
        name="App Store Developer Page",
        url="https://apps.apple.com/us/developer/example/id123456",
        kind=StoreKind.APPSTORE,
        check_interval_value=30,
        check_interval_unit=IntervalUnit.MINUTES
    )


@pytest.fixture
def sample_play_store_page():
    """Play Store category page markup with a repeated listing."""
    return """
    <html>
        <body>
            <div class="cluster">
                <a href="/store/apps/details?id=com.example.alpha&hl=en" title="Alpha Quest">
                    <span>Alpha Quest</span>
                </a>
                <a href="/store/apps/details?id=com.example.beta">Beta Runner</a>
                <a href="/store/apps/details?id=com.example.alpha">Alpha Quest</a>
            </div>
        </body>
    </html>
    """


@pytest.fixture
def sample_app_store_page():
    """App Store developer page markup."""
    return """
    <html>
        <body>
            <a href="https://apps.apple.com/us/app/notes-plus/id111?platform=iphone">Notes Plus</a>
            <a href="/us/app/photo-frame/id222"><img src="icon.png" alt="Photo Frame"></a>
            <a href="/us/developer/example/id123456">Example Inc</a>
        </body>
    </html>
    """
