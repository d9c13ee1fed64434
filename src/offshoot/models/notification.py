"""Notification and acknowledgement models."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from offshoot.models.fork import ForkStatus

# Recipient used when a fork was spawned without a known parent session.
DEFAULT_RECIPIENT = "default"


class NotificationKind(str, enum.Enum):
    """Why a notification was produced."""

    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class Notification(BaseModel):
    """A completion notice addressed to a parent session."""

    model_config = {"from_attributes": True}

    id: int
    session_id: str
    fork_id: str
    kind: NotificationKind
    summary: str
    created_at: datetime

    def __str__(self) -> str:
        return f"{self.fork_id}: {self.summary}"


@dataclass(frozen=True)
class Ack:
    """Result of an idempotent state-changing call.

    Attributes:
        changed: False when the call was a no-op (e.g. a repeated ``complete``).
        fork_id: The fork the call targeted, if any.
        status: Fork status after the call.
        count: Number of records touched (bulk operations).
    """

    changed: bool
    fork_id: Optional[str] = None
    status: Optional[ForkStatus] = None
    count: int = 0
