"""
Check pipeline for a single source.

Steps: start session, fetch, diff against known apps, persist new apps,
complete session, advance last-checked, notify. A fetch or persistence
failure aborts the run, marks the session failed and leaves last-checked
untouched so the source stays due.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import structlog

from scheduler.alerting import WebhookNotifier
from scheduler.models import CheckResult, NotificationResult
from tracker.database import SourceStore
from tracker.exceptions import FetchError, PersistenceError, SourceNotFoundError
from tracker.fetchers import FetcherRegistry, dedupe_apps
from tracker.models import AppItem, FetchedApp, Source, utc_now
from utilities.logger import CheckLogger

logger = structlog.get_logger(__name__)


class CheckPipeline:
    """Runs one check of one source end to end."""

    def __init__(
        self,
        store: SourceStore,
        fetchers: FetcherRegistry,
        notifier: Optional[WebhookNotifier] = None,
        fetch_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the pipeline.

        Args:
            store: Storage backend
            fetchers: Fetch strategies by store kind
            notifier: Notifier for new apps, or None to skip notifications
            fetch_timeout: Upper bound in seconds for one fetch call
            clock: Source of the current time
        """
        self.store = store
        self.fetchers = fetchers
        self.notifier = notifier
        self.fetch_timeout = fetch_timeout
        self.clock = clock
        self.logger = logger.bind(component="check_pipeline")

    async def check_source_by_id(self, source_id: str) -> CheckResult:
        source = await self.store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return await self.check_source(source)

    async def check_source(self, source: Source) -> CheckResult:
        """
        Check one source.

        Raises:
            FetchError: The store page could not be fetched
            PersistenceError: Storage failed while diffing, persisting or advancing last-checked
            SourceNotFoundError: The source was deleted
        """
        started_at = self.clock()
        check_logger = CheckLogger().bind_context(source_id=source.source_id, source_name=source.name)
        check_logger.log_check_start(source.url, source.kind.value)

        session_id, tracked = await self._start_session(source, started_at, check_logger)
        check_logger.bind_context(session_id=session_id)

        try:
            fetched = await self._fetch(source)
        except FetchError as e:
            check_logger.log_error(str(e), step="fetch")
            await self._fail_session(session_id, tracked, str(e), check_logger)
            raise

        check_logger.log_fetched(len(fetched))

        try:
            new_items = await self._persist_new_apps(source, fetched)
        except PersistenceError as e:
            check_logger.log_error(str(e), step="persist")
            await self._fail_session(session_id, tracked, str(e), check_logger)
            raise

        if tracked:
            try:
                await self.store.complete_session(session_id, len(fetched), len(new_items), self.clock())
            except PersistenceError as e:
                check_logger.log_degraded("complete_session", str(e))

        try:
            await self.store.update_last_checked(source.source_id, started_at)
        except PersistenceError as e:
            check_logger.log_error(str(e), step="mark_checked")
            raise

        notifications = await self._notify(source, new_items)

        duration = (self.clock() - started_at).total_seconds()
        check_logger.log_check_complete(len(fetched), len(new_items), duration)

        return CheckResult(
            source_id=source.source_id,
            source_name=source.name,
            session_id=session_id,
            total_items=len(fetched),
            new_items_count=len(new_items),
            new_items=new_items,
            notifications=notifications,
            started_at=started_at,
            duration_seconds=duration
        )

    async def _start_session(
        self,
        source: Source,
        started_at: datetime,
        check_logger: CheckLogger
    ) -> Tuple[str, bool]:
        """Create the audit session. Falls back to an untracked local id on failure."""
        try:
            session = await self.store.create_session(source.source_id, started_at)
            return session.session_id, True
        except SourceNotFoundError:
            raise
        except Exception as e:
            check_logger.log_degraded("create_session", str(e))
            return f"local-{uuid.uuid4().hex[:12]}", False

    async def _fail_session(
        self,
        session_id: str,
        tracked: bool,
        error: str,
        check_logger: CheckLogger
    ) -> None:
        if not tracked:
            return
        try:
            await self.store.fail_session(session_id, error, self.clock())
        except PersistenceError as e:
            check_logger.log_degraded("fail_session", str(e))

    async def _fetch(self, source: Source) -> List[FetchedApp]:
        """Fetch the listing; every failure surfaces as FetchError naming the source."""
        try:
            fetch = self.fetchers.fetch(source.url, source.kind)
            if self.fetch_timeout is not None:
                apps = await asyncio.wait_for(fetch, timeout=self.fetch_timeout)
            else:
                apps = await fetch
        except FetchError as e:
            e.source_id = source.source_id
            raise
        except asyncio.TimeoutError as e:
            raise FetchError(
                f"Timed out fetching {source.url}", url=source.url, source_id=source.source_id
            ) from e
        except Exception as e:
            raise FetchError(
                f"Failed to fetch {source.url}: {e}", url=source.url, source_id=source.source_id
            ) from e
        return dedupe_apps(apps)

    async def _persist_new_apps(self, source: Source, fetched: List[FetchedApp]) -> List[AppItem]:
        existing = await self.store.get_apps(source.source_id)
        known_ids = {app.app_id for app in existing}

        new_items = []
        for app in fetched:
            if app.app_id in known_ids:
                continue
            item = AppItem(
                source_id=source.source_id,
                app_id=app.app_id,
                name=app.name,
                link=app.link,
                discovered_at=self.clock()
            )
            # A False return means another run already stored it
            if await self.store.insert_app_if_absent(item):
                new_items.append(item)
        return new_items

    async def _notify(self, source: Source, new_items: List[AppItem]) -> List[NotificationResult]:
        if not new_items or self.notifier is None:
            return []
        try:
            return await self.notifier.notify_all(new_items, source.kind, source.name)
        except Exception as e:
            self.logger.error(
                "Notification dispatch failed",
                source_id=source.source_id,
                error=str(e)
            )
            return [
                NotificationResult(app_id=item.app_id, app_name=item.name, error=str(e))
                for item in new_items
            ]
