"""
Source registry: registration, interval changes, listing and removal of tracked sources.
"""

import math
from datetime import datetime
from typing import List, Optional, Union

import structlog

from .analyzer import SourceNameResolver, validate_store_url
from .database import SourceStore
from .exceptions import MonitorError, SourceNotFoundError, ValidationError
from .models import (
    MAX_INTERVAL_SECONDS, UNIT_SECONDS, AppItem, BulkIntervalUpdate, IntervalUnit,
    Source, SourcePreview, StoreKind
)

logger = structlog.get_logger(__name__)


def validate_interval(value, unit: Union[str, IntervalUnit]) -> IntervalUnit:
    """
    Validate a check interval.

    Raises:
        ValidationError: value is not a positive finite number, the duration
            is longer than a timedelta can hold, or unit is unknown
    """
    if (isinstance(value, bool) or not isinstance(value, (int, float))
            or (isinstance(value, float) and not math.isfinite(value)) or value <= 0):
        raise ValidationError(f"Check interval must be a positive number, got {value!r}")
    try:
        unit = IntervalUnit(unit)
    except ValueError:
        valid_units = [u.value for u in IntervalUnit]
        raise ValidationError(f"Check interval unit must be one of: {valid_units}")
    if value * UNIT_SECONDS[unit] > MAX_INTERVAL_SECONDS:
        raise ValidationError(f"Check interval of {value} {unit.value} is too long")
    return unit


class SourceRegistry:
    """Manages tracked sources on top of a SourceStore."""

    def __init__(self, store: SourceStore, name_resolver: Optional[SourceNameResolver] = None):
        """
        Initialize the registry.

        Args:
            store: Storage backend
            name_resolver: Resolves display names for sources registered without one
        """
        self.store = store
        self.name_resolver = name_resolver if name_resolver is not None else SourceNameResolver()
        self.logger = logger.bind(component="source_registry")

    async def register(
        self,
        url: str,
        name: Optional[str] = None,
        kind: Optional[Union[str, StoreKind]] = None,
        interval: float = 24,
        unit: Union[str, IntervalUnit] = IntervalUnit.HOURS
    ) -> Source:
        """
        Start tracking a store page.

        The kind is detected from the URL when omitted, and the name is
        resolved from page content when omitted.

        Raises:
            ValidationError: Bad URL, kind, interval or unit
            DuplicateSourceError: URL already tracked
        """
        url = url.strip() if url else ""
        if not url:
            raise ValidationError("URL is required")

        detected_kind = validate_store_url(url)
        if kind is not None:
            try:
                kind = StoreKind(kind)
            except ValueError:
                raise ValidationError(f"Unknown store kind: {kind}")
            if kind != detected_kind:
                raise ValidationError(f"URL does not belong to store kind {kind.value}")
        else:
            kind = detected_kind

        unit = validate_interval(interval, unit)

        if not name or not name.strip():
            name = await self.name_resolver.resolve(url, kind)

        source = await self.store.create_source(Source(
            name=name.strip(),
            url=url,
            kind=kind,
            check_interval_value=interval,
            check_interval_unit=unit
        ))
        self.logger.info(
            "Source registered",
            source_id=source.source_id,
            name=source.name,
            kind=source.kind.value,
            interval=source.interval_text
        )
        return source

    async def get(self, source_id: str) -> Source:
        source = await self.store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    async def list(self) -> List[Source]:
        """All tracked sources, newest created first."""
        return await self.store.list_sources()

    async def remove(self, source_id: str) -> None:
        """Stop tracking a source and delete its apps and sessions."""
        if not await self.store.delete_source(source_id):
            raise SourceNotFoundError(source_id)
        self.logger.info("Source removed", source_id=source_id)

    async def set_interval(self, source_id: str, value: float, unit: Union[str, IntervalUnit]) -> Source:
        unit = validate_interval(value, unit)
        source = await self.store.update_interval(source_id, value, unit)
        self.logger.info("Source interval updated", source_id=source_id, interval=source.interval_text)
        return source

    async def set_interval_bulk(
        self,
        source_ids: List[str],
        value: float,
        unit: Union[str, IntervalUnit]
    ) -> BulkIntervalUpdate:
        """
        Set one check interval on several sources.

        The interval is validated once. A source that cannot be updated is
        logged and counted as failed; the remaining sources are still updated.

        Raises:
            ValidationError: no source ids, or an invalid interval
        """
        if not source_ids:
            raise ValidationError("At least one source id is required")
        unit = validate_interval(value, unit)

        result = BulkIntervalUpdate(total_requested=len(source_ids))
        for source_id in source_ids:
            try:
                await self.store.update_interval(source_id, value, unit)
                result.updated_count += 1
            except MonitorError as e:
                self.logger.warning("Failed to update source interval", source_id=source_id, error=str(e))
                result.failed_ids.append(source_id)

        self.logger.info(
            "Bulk interval update finished",
            updated=result.updated_count,
            requested=result.total_requested,
            value=value,
            unit=unit.value
        )
        return result

    async def preview(self, url: str) -> SourcePreview:
        """
        Detect the kind and resolve the display name of a store page without tracking it.

        Raises:
            ValidationError: Bad or unsupported URL
        """
        url = url.strip() if url else ""
        if not url:
            raise ValidationError("URL is required")
        kind = validate_store_url(url)
        name = await self.name_resolver.resolve(url, kind)
        return SourcePreview(url=url, kind=kind, name=name)

    async def mark_checked(self, source_id: str, timestamp: datetime) -> None:
        await self.store.update_last_checked(source_id, timestamp)

    async def apps(self, source_id: str) -> List[AppItem]:
        """Discovered apps of a source, most recently discovered first."""
        await self.get(source_id)
        return await self.store.get_apps(source_id)
