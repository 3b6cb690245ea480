"""Pydantic models for dares, quotes, permissions, jobs and the audit trail."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

DARE_STATUSES = ("active", "completed", "archived")

SOURCE_EXTERNAL = "external"
SOURCE_FALLBACK = "database_fallback"
SOURCE_USER = "user"


class Dare(BaseModel):
    """A dare, generated externally or written by a user."""

    id: int
    content: str
    theme: str = "general"
    status: str = Field(default="active", description="'active', 'completed' or 'archived'")
    source: str = SOURCE_USER
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    completion_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int


class DarePage(BaseModel):
    """One page of a dare listing."""

    dares: List[Dare]
    pagination: Pagination


class Quote(BaseModel):
    """A stored quote."""

    id: int
    text: str
    author: str = "Anonymous"
    added_by: Optional[str] = None
    added_at: datetime = Field(default_factory=datetime.now)

    def formatted(self) -> str:
        return f"> {self.text}\n- {self.author}"


class CommandRule(BaseModel):
    """Explicit allow/deny rule for a command."""

    command: str
    allowed: bool
    added_by: Optional[str] = None
    added_at: datetime = Field(default_factory=datetime.now)


class AuditEntry(BaseModel):
    """One dispatched command as recorded in the audit log."""

    id: Optional[int] = None
    source: str
    command: str
    user_id: Optional[str] = None
    channel_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: Optional[str] = None
    success: bool
    error_kind: Optional[str] = None


class JobState(str, Enum):
    """Lifecycle of a background job."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    """A unit of work handed off to the job queue."""

    id: str
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    state: JobState = JobState.WAITING
    progress: int = Field(default=0, ge=0, le=100)
    attempts_made: int = 0
    max_attempts: int = 1
    return_value: Optional[Any] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)
