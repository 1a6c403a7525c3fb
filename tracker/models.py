"""
Pydantic models for tracked sources, discovered apps and check sessions.
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class StoreKind(str, Enum):
    """Supported store page kinds."""
    PLAYSTORE = "playstore"
    APPSTORE = "appstore"


class IntervalUnit(str, Enum):
    """Units for a source's check interval."""
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


UNIT_SECONDS = {
    IntervalUnit.SECONDS: 1,
    IntervalUnit.MINUTES: 60,
    IntervalUnit.HOURS: 3600,
    IntervalUnit.DAYS: 86400,
}

# Longest interval a timedelta can represent
MAX_INTERVAL_SECONDS = timedelta.max.total_seconds()


class SessionStatus(str, Enum):
    """Check session lifecycle states."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Source(BaseModel):
    """
    A tracked store listing page (developer, category, collection or genre page).
    """
    source_id: str = Field(default_factory=new_id, description="Unique source identifier")
    name: str = Field(..., description="Display name")
    url: str = Field(..., description="Store page URL, unique across sources")
    kind: StoreKind = Field(..., description="Store kind")

    check_interval_value: float = Field(default=24, gt=0, description="Check interval magnitude")
    check_interval_unit: IntervalUnit = Field(default=IntervalUnit.HOURS, description="Check interval unit")

    last_checked: Optional[datetime] = Field(None, description="Start time of the last successful check")
    created_at: datetime = Field(default_factory=utc_now)

    @validator('url')
    def validate_url(cls, v):
        """Store URLs are compared verbatim, so only surrounding whitespace is removed."""
        v = v.strip()
        if not v:
            raise ValueError('url cannot be empty')
        return v

    @property
    def interval_text(self) -> str:
        value = self.check_interval_value
        if float(value).is_integer():
            value = int(value)
        return f"{value} {self.check_interval_unit.value}"

    class Config:
        """Pydantic configuration."""
        json_encoders = {
            datetime: lambda v: v.isoformat()
        }
        json_schema_extra = {
            "example": {
                "source_id": "6f1c0a4e2b8d4c4f9d1e3a5b7c9d0e1f",
                "name": "Play Store Game Action Category",
                "url": "https://play.google.com/store/apps/category/GAME_ACTION",
                "kind": "playstore",
                "check_interval_value": 6,
                "check_interval_unit": "hours",
                "last_checked": None,
                "created_at": "2024-01-15T10:30:00Z"
            }
        }


class FetchedApp(BaseModel):
    """An app currently listed on a store page, as returned by a fetcher."""
    app_id: str = Field(..., min_length=1, description="Store-scoped app identifier")
    name: str = Field(..., description="App name")
    link: Optional[str] = Field(None, description="App detail page URL")


class AppItem(BaseModel):
    """
    A discovered app belonging to one source. Created once per (source_id, app_id).
    """
    source_id: str = Field(..., description="Owning source identifier")
    app_id: str = Field(..., description="Store-scoped app identifier")
    name: str = Field(..., description="App name")
    link: Optional[str] = Field(None, description="App detail page URL")
    discovered_at: datetime = Field(default_factory=utc_now)

    class Config:
        """Pydantic configuration."""
        json_encoders = {
            datetime: lambda v: v.isoformat()
        }


class CheckSession(BaseModel):
    """
    Audit record of one check pipeline execution against one source.
    """
    session_id: str = Field(default_factory=new_id, description="Unique session identifier")
    source_id: str = Field(..., description="Checked source identifier")
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = Field(None)
    status: SessionStatus = Field(default=SessionStatus.RUNNING)
    apps_found: int = Field(default=0, ge=0, description="Apps seen this run")
    new_apps_found: int = Field(default=0, ge=0, description="Apps discovered this run")
    error: Optional[str] = Field(None, description="Failure reason when status is failed")

    class Config:
        """Pydantic configuration."""
        json_encoders = {
            datetime: lambda v: v.isoformat()
        }


class BulkIntervalUpdate(BaseModel):
    """Outcome of setting one interval on several sources."""
    updated_count: int = Field(default=0, ge=0)
    total_requested: int = Field(default=0, ge=0)
    failed_ids: List[str] = Field(default_factory=list, description="Sources that could not be updated")

    @property
    def message(self) -> str:
        return f"Updated {self.updated_count} of {self.total_requested} sources"


class SourcePreview(BaseModel):
    """Detected kind and resolved name of a store page, without registering it."""
    url: str
    kind: StoreKind
    name: str
