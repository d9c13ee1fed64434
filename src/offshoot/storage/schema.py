"""SQLAlchemy ORM schema for Offshoot.

Defines all database tables: events, tool_use_index, event_edges,
pending_edges, forks, sessions, jobs, notifications, _offshoot_meta.

IMPORTANT: ForkStatus, JobStatus, EventRole, EdgeType and NotificationKind
enums are imported from the domain models -- they are NOT redefined here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from offshoot.models.event import EdgeType, EventRole
from offshoot.models.fork import ForkStatus, JobStatus
from offshoot.models.notification import NotificationKind


class Base(DeclarativeBase):
    """Base class for all Offshoot ORM models."""

    pass


class EventRow(Base):
    """One emitted unit of agent activity. Append-only.

    ``event_id`` is a UUIDv7 string, so ordering by it is ordering by
    emission time. ``stamped`` is set when the producer supplied the id;
    store-assigned ids only reflect arrival order. ``source_uuid`` is the
    producer's own message id and identifies a replayed line.
    """

    __tablename__ = "events"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    fork_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    role: Mapped[EventRole] = mapped_column(nullable=False)
    parent_tool_use_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tool_use_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    tool_result_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cost_usd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    turn_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    source_uuid: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    stamped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_events_fork", "fork_id", "event_id"),
        Index("ix_events_parent_tool_use", "parent_tool_use_id"),
        Index("ux_events_source_uuid", "fork_id", "source_uuid", unique=True),
    )


class ToolUseIndexRow(Base):
    """Maps a tool-use id to the event that introduced it.

    First introducer wins; later events repeating the id are not indexed.
    """

    __tablename__ = "tool_use_index"

    tool_use_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.event_id"),
        nullable=False,
    )


class EventEdgeRow(Base):
    """A resolved causal edge, always child -> parent."""

    __tablename__ = "event_edges"

    child_event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.event_id"),
        primary_key=True,
    )
    parent_event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.event_id"),
        primary_key=True,
    )
    edge_type: Mapped[EdgeType] = mapped_column(primary_key=True)
    tool_use_id: Mapped[str] = mapped_column(String(128), nullable=False)

    __table_args__ = (
        Index("ix_event_edges_parent", "parent_event_id", "edge_type"),
    )


class PendingEdgeRow(Base):
    """An edge waiting for its introducing event to arrive.

    Keyed by the awaited tool-use id so that indexing that id can resolve
    every waiter with one lookup.
    """

    __tablename__ = "pending_edges"

    child_event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.event_id"),
        primary_key=True,
    )
    tool_use_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    edge_type: Mapped[EdgeType] = mapped_column(primary_key=True)
    fork_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_pending_edges_tool_use", "tool_use_id"),
        Index("ix_pending_edges_fork", "fork_id"),
    )


class ForkRow(Base):
    """A spawned background unit of work.

    ``version`` is bumped on every status change and is part of the
    compare-and-set guard.
    """

    __tablename__ = "forks"

    fork_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    fork_session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[ForkStatus] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    worker_pid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stream_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_forks_status", "status"),
        Index("ix_forks_read", "read"),
        Index("ix_forks_parent_session", "parent_session_id"),
        Index("ix_forks_created", "created_at"),
    )


class SessionRow(Base):
    """An agent conversation context. ``fork_id`` is set at most once."""

    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    fork_id: Mapped[Optional[str]] = mapped_column(
        String(16),
        ForeignKey("forks.fork_id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_sessions_fork", "fork_id"),
    )


class JobRow(Base):
    """Human-readable grouping of a fork's task. ``output`` is set once."""

    __tablename__ = "jobs"

    job_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[JobStatus] = mapped_column(nullable=False)
    fork_id: Mapped[str] = mapped_column(
        String(16),
        ForeignKey("forks.fork_id"),
        nullable=False,
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    output: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_jobs_fork", "fork_id"),
    )


class NotificationRow(Base):
    """A pending completion notice. Deleted when drained."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    fork_id: Mapped[str] = mapped_column(
        String(16),
        ForeignKey("forks.fork_id"),
        nullable=False,
    )
    kind: Mapped[NotificationKind] = mapped_column(nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_notifications_session", "session_id", "id"),
    )


class OffshootMetaRow(Base):
    """Key-value metadata for the database itself (e.g., schema version)."""

    __tablename__ = "_offshoot_meta"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
