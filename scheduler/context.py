"""
Wiring for the monitor's shared components.

A single MonitorContext is built at startup and handed to the scheduler
service and entry points, so every trigger path shares one store and one lock.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from scheduler.alerting import WebhookNotifier
from scheduler.due import DueSetSelector
from scheduler.lock import SchedulerLock
from scheduler.models import NotifierConfig, SchedulerConfig
from scheduler.pipeline import CheckPipeline
from scheduler.status_report import StatusReporter
from tracker.analyzer import SourceNameResolver
from tracker.database import SourceStore, create_source_store
from tracker.fetchers import FetcherRegistry, create_fetcher_registry
from tracker.registry import SourceRegistry
from utilities.config import MonitorConfig


@dataclass
class MonitorContext:
    config: MonitorConfig
    scheduler_config: SchedulerConfig
    store: SourceStore
    registry: SourceRegistry
    fetchers: FetcherRegistry
    notifier: WebhookNotifier
    lock: SchedulerLock
    pipeline: CheckPipeline
    selector: DueSetSelector
    reporter: StatusReporter


def scheduler_config_from(config: MonitorConfig) -> SchedulerConfig:
    """Derive scheduler and notifier settings from the environment configuration."""
    return SchedulerConfig(
        tick_seconds=config.tick_seconds,
        min_trigger_spacing_seconds=config.min_trigger_spacing_seconds,
        min_interval_seconds=config.min_interval_seconds,
        timezone=config.timezone,
        notifier_config=NotifierConfig(
            enabled=config.notifications_enabled,
            webhook_url=config.webhook_url,
            timeout=config.notify_timeout
        )
    )


def build_context(
    config: MonitorConfig,
    store: Optional[SourceStore] = None,
    fetchers: Optional[FetcherRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> MonitorContext:
    """
    Build all components from configuration.

    Args:
        config: Monitor configuration
        store: Storage backend to use instead of the configured one
        fetchers: Fetch strategies to use instead of the built-in ones
        transport: Optional httpx transport shared by every HTTP client
    """
    scheduler_config = scheduler_config_from(config)
    if store is None:
        store = create_source_store(config)
    if fetchers is None:
        fetchers = create_fetcher_registry(config, transport=transport)
    notifier = WebhookNotifier(scheduler_config.notifier_config, transport=transport)
    lock = SchedulerLock()

    return MonitorContext(
        config=config,
        scheduler_config=scheduler_config,
        store=store,
        registry=SourceRegistry(
            store, SourceNameResolver(timeout=config.request_timeout, transport=transport)
        ),
        fetchers=fetchers,
        notifier=notifier,
        lock=lock,
        pipeline=CheckPipeline(
            store, fetchers, notifier, fetch_timeout=config.request_timeout * 2
        ),
        selector=DueSetSelector(store, scheduler_config.min_interval_seconds),
        reporter=StatusReporter(store, lock, scheduler_config.min_interval_seconds)
    )
