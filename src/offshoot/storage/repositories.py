"""Abstract repository interfaces for Offshoot storage.

Defines ABC interfaces for all database operations. No SQLAlchemy
imports here -- pure abstract contracts.

Concrete implementations are in sqlite.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from offshoot.models.event import EdgeType
    from offshoot.models.fork import ForkFilter, ForkStatus, JobStatus
    from offshoot.storage.schema import (
        EventEdgeRow,
        EventRow,
        ForkRow,
        JobRow,
        NotificationRow,
        PendingEdgeRow,
        SessionRow,
    )


class EventRepository(ABC):
    """Abstract interface for the append-only event log."""

    @abstractmethod
    def get(self, event_id: str) -> EventRow | None:
        """Get an event by id. Returns None if not found."""
        ...

    @abstractmethod
    def get_by_source(self, fork_id: str | None, source_uuid: str) -> EventRow | None:
        """Get the event a producer sent under *source_uuid*, if stored."""
        ...

    @abstractmethod
    def save(self, event: EventRow) -> None:
        """Insert a new event."""
        ...

    @abstractmethod
    def page_by_fork(
        self, fork_id: str | None, after_id: str | None, limit: int
    ) -> Sequence[EventRow]:
        """One page of a fork's events in emission order.

        Args:
            fork_id: Fork to read. None reads events with no fork.
            after_id: Keyset cursor; only ids strictly greater are returned.
            limit: Page size.
        """
        ...

    @abstractmethod
    def page_all(self, after_id: str | None, limit: int) -> Sequence[EventRow]:
        """One page of every event in emission order."""
        ...


class ToolUseRepository(ABC):
    """Abstract interface for the tool-use id -> introducing event index."""

    @abstractmethod
    def get_introducer(self, tool_use_id: str) -> str | None:
        """Event id that introduced *tool_use_id*, or None."""
        ...

    @abstractmethod
    def index_if_absent(self, tool_use_id: str, event_id: str) -> bool:
        """Record *event_id* as introducer unless one exists.

        Returns True if this call created the entry.
        """
        ...


class EdgeRepository(ABC):
    """Abstract interface for resolved and pending causal edges."""

    @abstractmethod
    def add_if_absent(
        self,
        child_event_id: str,
        parent_event_id: str,
        edge_type: EdgeType,
        tool_use_id: str,
    ) -> bool:
        """Store an edge unless the same (child, parent, type) exists.

        Returns True if a new edge was written.
        """
        ...

    @abstractmethod
    def get_parents(self, child_event_id: str) -> Sequence[EventEdgeRow]:
        """All edges leaving *child_event_id*."""
        ...

    @abstractmethod
    def page_children(
        self,
        parent_event_id: str,
        edge_type: EdgeType | None,
        after_id: str | None,
        limit: int,
        *,
        tool_use_id: str | None = None,
    ) -> Sequence[EventEdgeRow]:
        """One page of edges pointing at *parent_event_id*, by child id.

        *tool_use_id* narrows to edges created through that tool use, for
        introducers that start several tool calls.
        """
        ...

    @abstractmethod
    def add_pending(
        self,
        child_event_id: str,
        tool_use_id: str,
        edge_type: EdgeType,
        fork_id: str | None,
    ) -> None:
        """Record an edge whose parent is not yet indexed (idempotent)."""
        ...

    @abstractmethod
    def get_pending(self, tool_use_id: str) -> Sequence[PendingEdgeRow]:
        """Pending edges waiting on *tool_use_id*."""
        ...

    @abstractmethod
    def list_pending(self, fork_id: str | None = None) -> Sequence[PendingEdgeRow]:
        """All pending edges, optionally scoped to one fork."""
        ...

    @abstractmethod
    def delete_pending(
        self, child_event_id: str, tool_use_id: str, edge_type: EdgeType
    ) -> None:
        """Remove a pending edge."""
        ...


class ForkRepository(ABC):
    """Abstract interface for fork records."""

    @abstractmethod
    def get(self, fork_id: str) -> ForkRow | None:
        """Get a fork by id. Returns None if not found."""
        ...

    @abstractmethod
    def save(self, fork: ForkRow) -> None:
        """Insert a new fork."""
        ...

    @abstractmethod
    def list(self, flt: ForkFilter) -> Sequence[ForkRow]:
        """Forks matching *flt*, newest first."""
        ...

    @abstractmethod
    def latest(self, parent_session_id: str | None = None) -> ForkRow | None:
        """Most recently created fork, optionally for one parent session."""
        ...

    @abstractmethod
    def compare_and_set_status(
        self,
        fork_id: str,
        expected: ForkStatus,
        version: int,
        new_status: ForkStatus,
        **fields: object,
    ) -> bool:
        """Move status only if (status, version) still match.

        Bumps ``version``. Returns True if the row was updated.
        """
        ...

    @abstractmethod
    def update_fields(self, fork_id: str, **fields: object) -> None:
        """Update non-status columns (worker pid, stream path, session)."""
        ...

    @abstractmethod
    def set_read(
        self,
        fork_ids: Sequence[str] | None = None,
        *,
        parent_session_id: str | None = None,
    ) -> int:
        """Mark forks read. None marks every unread fork, whatever its
        status, optionally scoped to one parent session.

        Returns the number of rows changed.
        """
        ...


class SessionRepository(ABC):
    """Abstract interface for session records."""

    @abstractmethod
    def get(self, session_id: str) -> SessionRow | None:
        ...

    @abstractmethod
    def save(self, session: SessionRow) -> None:
        ...

    @abstractmethod
    def list(self, fork_id: str | None = None) -> Sequence[SessionRow]:
        ...

    @abstractmethod
    def set_fork_once(self, session_id: str, fork_id: str) -> bool:
        """Set ``fork_id`` if still null. Returns True if it was set."""
        ...


class JobRepository(ABC):
    """Abstract interface for job records."""

    @abstractmethod
    def get(self, job_id: str) -> JobRow | None:
        ...

    @abstractmethod
    def save(self, job: JobRow) -> None:
        ...

    @abstractmethod
    def list(self, fork_id: str | None = None) -> Sequence[JobRow]:
        ...

    @abstractmethod
    def compare_and_set_status(
        self, job_id: str, expected: JobStatus, new_status: JobStatus, **fields: object
    ) -> bool:
        """Move status only if it still equals *expected*."""
        ...

    @abstractmethod
    def set_output_once(self, job_id: str, output: str) -> bool:
        """Set ``output`` if still null. Returns True if it was set."""
        ...


class NotificationRepository(ABC):
    """Abstract interface for the notification mailbox."""

    @abstractmethod
    def save(self, notification: NotificationRow) -> None:
        ...

    @abstractmethod
    def take_all(self, session_id: str) -> Sequence[NotificationRow]:
        """Delete and return every notification for *session_id*, oldest first."""
        ...

    @abstractmethod
    def count(self, session_id: str) -> int:
        ...
