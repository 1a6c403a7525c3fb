"""
Test cases for the source registry.
"""

from unittest.mock import AsyncMock

import pytest

from tracker.analyzer import SourceNameResolver
from tracker.exceptions import DuplicateSourceError, SourceNotFoundError, ValidationError
from tracker.models import AppItem, IntervalUnit, StoreKind
from tracker.registry import SourceRegistry, validate_interval

PLAY_URL = "https://play.google.com/store/apps/category/GAME_ACTION"
APPLE_URL = "https://apps.apple.com/us/developer/example/id123456"


@pytest.fixture
def name_resolver():
    """Name resolver that never touches the network."""
    resolver = AsyncMock(spec=SourceNameResolver)
    resolver.resolve.return_value = "Resolved Name"
    return resolver


@pytest.fixture
def registry(store, name_resolver):
    """Registry over the in-memory store."""
    return SourceRegistry(store, name_resolver)


class TestValidateInterval:
    """Test cases for interval validation."""

    def test_valid_interval(self):
        """Test valid values return the parsed unit."""
        assert validate_interval(30, "seconds") == IntervalUnit.SECONDS
        assert validate_interval(1.5, IntervalUnit.DAYS) == IntervalUnit.DAYS

    @pytest.mark.parametrize("value", [0, -5, "ten", None, True])
    def test_invalid_value(self, value):
        """Test non-positive and non-numeric values are rejected."""
        with pytest.raises(ValidationError):
            validate_interval(value, "hours")

    def test_invalid_unit(self):
        """Test unknown units are rejected."""
        with pytest.raises(ValidationError):
            validate_interval(5, "weeks")

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_value(self, value):
        """Test NaN and infinite values are rejected."""
        with pytest.raises(ValidationError):
            validate_interval(value, "hours")

    @pytest.mark.parametrize("value,unit", [(1e10, "days"), (1e12, "hours"), (10 ** 30, "seconds")])
    def test_interval_too_long(self, value, unit):
        """Test durations longer than a timedelta can hold are rejected."""
        with pytest.raises(ValidationError, match="too long"):
            validate_interval(value, unit)

    def test_longest_interval_accepted(self):
        """Test a long but representable duration is accepted."""
        assert validate_interval(999_999_999, "days") == IntervalUnit.DAYS

    def test_validation_error_is_value_error(self):
        """Test callers catching ValueError also catch validation failures."""
        with pytest.raises(ValueError):
            validate_interval(0, "hours")


class TestSourceRegistry:
    """Test cases for SourceRegistry."""

    @pytest.mark.asyncio
    async def test_register_detects_kind(self, registry):
        """Test the store kind is detected from the URL."""
        source = await registry.register(PLAY_URL, name="Action Games", interval=6, unit="hours")

        assert source.kind == StoreKind.PLAYSTORE
        assert source.name == "Action Games"
        assert source.check_interval_value == 6
        assert source.check_interval_unit == IntervalUnit.HOURS
        assert source.last_checked is None

    @pytest.mark.asyncio
    async def test_register_resolves_missing_name(self, registry, name_resolver):
        """Test a missing name is resolved from the page."""
        source = await registry.register(APPLE_URL)

        name_resolver.resolve.assert_called_once_with(APPLE_URL, StoreKind.APPSTORE)
        assert source.name == "Resolved Name"

    @pytest.mark.asyncio
    async def test_register_duplicate_url(self, registry):
        """Test registering the same URL twice fails."""
        await registry.register(PLAY_URL, name="First")

        with pytest.raises(DuplicateSourceError):
            await registry.register(PLAY_URL, name="Second")

    @pytest.mark.asyncio
    async def test_register_kind_mismatch(self, registry):
        """Test an explicit kind must match the URL host."""
        with pytest.raises(ValidationError):
            await registry.register(PLAY_URL, name="X", kind="appstore")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "not a url", "https://example.com/apps"])
    async def test_register_invalid_url(self, registry, url):
        """Test empty, malformed and unsupported URLs are rejected."""
        with pytest.raises(ValidationError):
            await registry.register(url, name="X")

    @pytest.mark.asyncio
    async def test_register_invalid_interval(self, registry, store):
        """Test a bad interval is rejected before anything is stored."""
        with pytest.raises(ValidationError):
            await registry.register(PLAY_URL, name="X", interval=0)

        assert await store.list_sources() == []

    @pytest.mark.asyncio
    async def test_set_interval(self, registry):
        """Test changing the interval of a tracked source."""
        source = await registry.register(PLAY_URL, name="X")

        updated = await registry.set_interval(source.source_id, 2, "days")

        assert updated.interval_text == "2 days"

    @pytest.mark.asyncio
    async def test_set_interval_invalid(self, registry):
        """Test invalid interval changes are rejected."""
        source = await registry.register(PLAY_URL, name="X")

        with pytest.raises(ValidationError):
            await registry.set_interval(source.source_id, -1, "hours")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value,unit", [(float("nan"), "hours"), (float("inf"), "days"), (1e10, "days")])
    async def test_set_interval_rejects_unusable_values(self, registry, value, unit):
        """Test values that cannot become a duration never reach the store."""
        source = await registry.register(PLAY_URL, name="X", interval=6)

        with pytest.raises(ValidationError):
            await registry.set_interval(source.source_id, value, unit)

        assert (await registry.get(source.source_id)).interval_text == "6 hours"

    @pytest.mark.asyncio
    async def test_set_interval_missing_source(self, registry):
        """Test changing the interval of an unknown source fails."""
        with pytest.raises(SourceNotFoundError):
            await registry.set_interval("missing", 1, "hours")

    @pytest.mark.asyncio
    async def test_remove(self, registry, store):
        """Test removing a source cascades to its apps."""
        source = await registry.register(PLAY_URL, name="X")
        await store.insert_app_if_absent(AppItem(source_id=source.source_id, app_id="a", name="A"))

        await registry.remove(source.source_id)

        assert await registry.list() == []
        assert await store.count_apps() == 0

    @pytest.mark.asyncio
    async def test_remove_missing_source(self, registry):
        """Test removing an unknown source fails."""
        with pytest.raises(SourceNotFoundError):
            await registry.remove("missing")

    @pytest.mark.asyncio
    async def test_mark_checked(self, registry, now):
        """Test recording the last check time."""
        source = await registry.register(PLAY_URL, name="X")

        await registry.mark_checked(source.source_id, now)

        assert (await registry.get(source.source_id)).last_checked == now

    @pytest.mark.asyncio
    async def test_apps_of_missing_source(self, registry):
        """Test listing apps of an unknown source fails."""
        with pytest.raises(SourceNotFoundError):
            await registry.apps("missing")


class TestBulkInterval:
    """Test cases for set_interval_bulk."""

    @pytest.mark.asyncio
    async def test_updates_every_source(self, registry):
        """Test every listed source gets the new interval."""
        first = await registry.register(PLAY_URL, name="Play")
        second = await registry.register(APPLE_URL, name="Apple")

        result = await registry.set_interval_bulk([first.source_id, second.source_id], 30, "minutes")

        assert result.updated_count == 2
        assert result.total_requested == 2
        assert result.failed_ids == []
        assert result.message == "Updated 2 of 2 sources"
        for source in await registry.list():
            assert source.interval_text == "30 minutes"

    @pytest.mark.asyncio
    async def test_unknown_id_does_not_stop_others(self, registry):
        """Test a missing source is reported and the rest are still updated."""
        first = await registry.register(PLAY_URL, name="Play")
        second = await registry.register(APPLE_URL, name="Apple")

        result = await registry.set_interval_bulk(
            [first.source_id, "missing", second.source_id], 2, "days"
        )

        assert result.updated_count == 2
        assert result.total_requested == 3
        assert result.failed_ids == ["missing"]
        assert result.message == "Updated 2 of 3 sources"
        assert (await registry.get(second.source_id)).interval_text == "2 days"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value,unit", [(0, "hours"), (float("nan"), "hours"), (5, "weeks")])
    async def test_invalid_interval_updates_nothing(self, registry, value, unit):
        """Test the interval is validated once, before any source changes."""
        source = await registry.register(PLAY_URL, name="Play", interval=6)

        with pytest.raises(ValidationError):
            await registry.set_interval_bulk([source.source_id], value, unit)

        assert (await registry.get(source.source_id)).interval_text == "6 hours"

    @pytest.mark.asyncio
    async def test_no_ids(self, registry):
        """Test an empty id list is rejected."""
        with pytest.raises(ValidationError):
            await registry.set_interval_bulk([], 1, "hours")


class TestPreview:
    """Test cases for preview."""

    @pytest.mark.asyncio
    async def test_preview_detects_kind_and_name(self, registry, name_resolver, store):
        """Test a preview resolves kind and name without tracking the page."""
        preview = await registry.preview(f"  {APPLE_URL} ")

        assert preview.url == APPLE_URL
        assert preview.kind == StoreKind.APPSTORE
        assert preview.name == "Resolved Name"
        name_resolver.resolve.assert_called_once_with(APPLE_URL, StoreKind.APPSTORE)
        assert await store.list_sources() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "https://example.com/apps"])
    async def test_preview_invalid_url(self, registry, name_resolver, url):
        """Test unsupported URLs are rejected without resolving a name."""
        with pytest.raises(ValidationError):
            await registry.preview(url)

        name_resolver.resolve.assert_not_called()
