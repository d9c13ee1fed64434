"""Fork, session and job domain models.

ForkStatus and JobStatus are the enums shared by the ORM and the SDK.
The *Info models are read-side snapshots -- not ORM models.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ForkStatus(str, enum.Enum):
    """Lifecycle states of a fork."""

    ACTIVE = "active"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ForkStatus.COMPLETED, ForkStatus.FAILED)

    def __str__(self) -> str:
        return self.value


# One-directional: nothing leaves a terminal state.
FORK_TRANSITIONS: dict[ForkStatus, frozenset[ForkStatus]] = {
    ForkStatus.ACTIVE: frozenset(
        {ForkStatus.RUNNING, ForkStatus.COMPLETED, ForkStatus.FAILED}
    ),
    ForkStatus.RUNNING: frozenset({ForkStatus.COMPLETED, ForkStatus.FAILED}),
    ForkStatus.COMPLETED: frozenset(),
    ForkStatus.FAILED: frozenset(),
}


class JobStatus(str, enum.Enum):
    """Lifecycle states of a job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class ForkInfo(BaseModel):
    """Snapshot of a fork record."""

    model_config = {"from_attributes": True}

    fork_id: str
    name: Optional[str] = None
    parent_session_id: Optional[str] = None
    fork_session_id: Optional[str] = None
    status: ForkStatus
    version: int = 0
    read: bool = False
    failure_reason: Optional[str] = None
    worker_pid: Optional[int] = None
    stream_path: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    def __str__(self) -> str:
        label = f" ({self.name})" if self.name else ""
        return f"{self.fork_id}{label} [{self.status.value}]"


class SessionInfo(BaseModel):
    """Snapshot of a session record."""

    model_config = {"from_attributes": True}

    session_id: str
    fork_id: Optional[str] = None
    created_at: datetime


class JobInfo(BaseModel):
    """Snapshot of a job record."""

    model_config = {"from_attributes": True}

    job_id: str
    description: str
    status: JobStatus
    fork_id: str
    session_id: Optional[str] = None
    output: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ForkFilter(BaseModel):
    """Criteria for listing forks. Unset fields do not filter."""

    status: Optional[ForkStatus] = None
    unread_only: bool = False
    parent_session_id: Optional[str] = None
    limit: Optional[int] = None
