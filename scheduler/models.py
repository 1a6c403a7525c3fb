"""
Models for scheduling, check results and monitoring status.

This module defines Pydantic models for:
- Scheduler and notifier configuration
- Per-source check results and notification outcomes
- Structured trigger results
- Status and statistics reports
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from tracker.models import AppItem, CheckSession


class NotifierConfig(BaseModel):
    """Configuration for webhook notifications."""
    enabled: bool = Field(default=True)
    webhook_url: Optional[str] = Field(default=None, description="Webhook receiving one POST per new app")
    timeout: float = Field(default=10.0, gt=0, description="Per-send timeout in seconds")


class SchedulerConfig(BaseModel):
    """Configuration for the scheduler system."""
    tick_seconds: int = Field(default=60, ge=1, description="Seconds between scheduler cycles")
    min_trigger_spacing_seconds: float = Field(
        default=30.0, ge=0, description="Minimum spacing between externally triggered runs"
    )
    min_interval_seconds: float = Field(
        default=1.0, gt=0, description="Floor for second and minute check intervals"
    )
    timezone: str = Field(default="UTC", description="Timezone for scheduling")

    notifier_config: NotifierConfig = Field(default_factory=NotifierConfig)


class NotificationResult(BaseModel):
    """Outcome of one notification send."""
    app_id: str
    app_name: str
    category: str = Field(default="Unknown")
    success: bool = Field(default=False)
    skipped: bool = Field(default=False, description="Not sent because notifications are disabled")
    status_code: Optional[int] = Field(default=None)
    error: Optional[str] = Field(default=None)


class CheckResult(BaseModel):
    """Result of one completed check pipeline run."""
    source_id: str
    source_name: str
    session_id: str
    total_items: int = Field(default=0)
    new_items_count: int = Field(default=0)
    new_items: List[AppItem] = Field(default_factory=list)
    notifications: List[NotificationResult] = Field(default_factory=list)
    started_at: datetime
    duration_seconds: float = Field(default=0.0)

    @property
    def failed_notifications(self) -> List[NotificationResult]:
        return [n for n in self.notifications if not n.success and not n.skipped]


class SourceCheckOutcome(BaseModel):
    """Per-source entry in a trigger result: either a check result summary or an error."""
    source_id: str
    source_name: Optional[str] = None
    success: bool
    total_items: int = Field(default=0)
    new_items_count: int = Field(default=0)
    session_id: Optional[str] = None
    notifications_failed: int = Field(default=0)
    error: Optional[str] = None
    error_type: Optional[str] = None


class TriggerStatus(str, Enum):
    """How a cycle or trigger call ended."""
    COMPLETED = "completed"
    ALREADY_RUNNING = "already_running"
    TOO_FREQUENT = "too_frequent"
    NO_SOURCES_DUE = "no_sources_due"
    FAILED = "failed"


class TriggerResult(BaseModel):
    """Structured result of a scheduler cycle or an external trigger."""
    status: TriggerStatus
    message: str
    trigger: str = Field(..., description="scheduled, due, all or single")
    holder_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = Field(default=0.0)

    sources_found: int = Field(default=0)
    sources_checked: int = Field(default=0)
    sources_failed: int = Field(default=0)
    total_new_items: int = Field(default=0)
    results: List[SourceCheckOutcome] = Field(default_factory=list)

    last_run: Optional[datetime] = None
    next_allowed_run: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""
        json_encoders = {
            datetime: lambda v: v.isoformat()
        }


class LockStatus(BaseModel):
    held: bool
    holder_id: Optional[str] = None
    acquired_at: Optional[datetime] = None
    last_run: Optional[datetime] = None


class SourceStatus(BaseModel):
    """Scheduling state of one source."""
    source_id: str
    name: str
    kind: str
    interval: str
    last_checked: Optional[datetime] = None
    next_check_time: Optional[datetime] = None
    seconds_until_next_check: Optional[int] = None
    needs_monitoring: bool


class MonitoringStatus(BaseModel):
    generated_at: datetime
    total_sources: int = Field(default=0)
    sources_needing_monitoring: int = Field(default=0)
    scheduler_running: bool = Field(default=False)
    lock: Optional[LockStatus] = None
    sources: List[SourceStatus] = Field(default_factory=list)


class MonitoringStats(BaseModel):
    generated_at: datetime
    total_sources: int = Field(default=0)
    total_apps: int = Field(default=0)
    total_sessions: int = Field(default=0)
    new_apps_24h: int = Field(default=0)


class SessionPage(BaseModel):
    """Paginated check sessions."""
    sessions: List[CheckSession] = Field(default_factory=list)
    total: int = Field(default=0)
    page: int = Field(default=1)
    per_page: int = Field(default=20)
    total_pages: int = Field(default=0)
    has_next: bool = Field(default=False)
    has_prev: bool = Field(default=False)
