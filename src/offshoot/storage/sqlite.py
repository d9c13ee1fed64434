"""SQLite implementations of repository interfaces.

All repositories use SQLAlchemy 2.0-style queries (select() + session.execute()).
Each repository takes a Session in its constructor.

Conditional writes (compare-and-set, set-once) are single UPDATE statements
whose WHERE clause carries the precondition; ``rowcount`` tells the caller
whether it won.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from offshoot.models.event import EdgeType
from offshoot.models.fork import ForkFilter, ForkStatus, JobStatus
from offshoot.storage.repositories import (
    EdgeRepository,
    EventRepository,
    ForkRepository,
    JobRepository,
    NotificationRepository,
    SessionRepository,
    ToolUseRepository,
)
from offshoot.storage.schema import (
    EventEdgeRow,
    EventRow,
    ForkRow,
    JobRow,
    NotificationRow,
    PendingEdgeRow,
    SessionRow,
    ToolUseIndexRow,
)

_NO_SYNC = {"synchronize_session": False}


class SqliteEventRepository(EventRepository):
    """SQLite implementation of the event log."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, event_id: str) -> EventRow | None:
        stmt = select(EventRow).where(EventRow.event_id == event_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def get_by_source(self, fork_id: str | None, source_uuid: str) -> EventRow | None:
        stmt = select(EventRow).where(EventRow.source_uuid == source_uuid)
        if fork_id is None:
            stmt = stmt.where(EventRow.fork_id.is_(None))
        else:
            stmt = stmt.where(EventRow.fork_id == fork_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, event: EventRow) -> None:
        self._session.add(event)
        self._session.flush()

    def page_by_fork(
        self, fork_id: str | None, after_id: str | None, limit: int
    ) -> Sequence[EventRow]:
        if fork_id is None:
            stmt = select(EventRow).where(EventRow.fork_id.is_(None))
        else:
            stmt = select(EventRow).where(EventRow.fork_id == fork_id)
        if after_id is not None:
            stmt = stmt.where(EventRow.event_id > after_id)
        stmt = stmt.order_by(EventRow.event_id).limit(limit)
        return list(self._session.execute(stmt).scalars().all())

    def page_all(self, after_id: str | None, limit: int) -> Sequence[EventRow]:
        stmt = select(EventRow)
        if after_id is not None:
            stmt = stmt.where(EventRow.event_id > after_id)
        stmt = stmt.order_by(EventRow.event_id).limit(limit)
        return list(self._session.execute(stmt).scalars().all())


class SqliteToolUseRepository(ToolUseRepository):
    """SQLite implementation of the tool-use index.

    First introducer wins: index_if_absent checks existence before insert.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_introducer(self, tool_use_id: str) -> str | None:
        stmt = select(ToolUseIndexRow.event_id).where(
            ToolUseIndexRow.tool_use_id == tool_use_id
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def index_if_absent(self, tool_use_id: str, event_id: str) -> bool:
        if self.get_introducer(tool_use_id) is not None:
            return False
        self._session.add(ToolUseIndexRow(tool_use_id=tool_use_id, event_id=event_id))
        self._session.flush()
        return True


class SqliteEdgeRepository(EdgeRepository):
    """SQLite implementation of resolved and pending edges."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _get_edge(
        self, child_event_id: str, parent_event_id: str, edge_type: EdgeType
    ) -> EventEdgeRow | None:
        stmt = select(EventEdgeRow).where(
            EventEdgeRow.child_event_id == child_event_id,
            EventEdgeRow.parent_event_id == parent_event_id,
            EventEdgeRow.edge_type == edge_type,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def add_if_absent(
        self,
        child_event_id: str,
        parent_event_id: str,
        edge_type: EdgeType,
        tool_use_id: str,
    ) -> bool:
        if self._get_edge(child_event_id, parent_event_id, edge_type) is not None:
            return False
        self._session.add(
            EventEdgeRow(
                child_event_id=child_event_id,
                parent_event_id=parent_event_id,
                edge_type=edge_type,
                tool_use_id=tool_use_id,
            )
        )
        self._session.flush()
        return True

    def get_parents(self, child_event_id: str) -> Sequence[EventEdgeRow]:
        stmt = (
            select(EventEdgeRow)
            .where(EventEdgeRow.child_event_id == child_event_id)
            .order_by(EventEdgeRow.parent_event_id)
        )
        return list(self._session.execute(stmt).scalars().all())

    def page_children(
        self,
        parent_event_id: str,
        edge_type: EdgeType | None,
        after_id: str | None,
        limit: int,
        *,
        tool_use_id: str | None = None,
    ) -> Sequence[EventEdgeRow]:
        stmt = select(EventEdgeRow).where(
            EventEdgeRow.parent_event_id == parent_event_id
        )
        if edge_type is not None:
            stmt = stmt.where(EventEdgeRow.edge_type == edge_type)
        if tool_use_id is not None:
            stmt = stmt.where(EventEdgeRow.tool_use_id == tool_use_id)
        if after_id is not None:
            stmt = stmt.where(EventEdgeRow.child_event_id > after_id)
        stmt = stmt.order_by(EventEdgeRow.child_event_id).limit(limit)
        return list(self._session.execute(stmt).scalars().all())

    def _get_pending_row(
        self, child_event_id: str, tool_use_id: str, edge_type: EdgeType
    ) -> PendingEdgeRow | None:
        stmt = select(PendingEdgeRow).where(
            PendingEdgeRow.child_event_id == child_event_id,
            PendingEdgeRow.tool_use_id == tool_use_id,
            PendingEdgeRow.edge_type == edge_type,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def add_pending(
        self,
        child_event_id: str,
        tool_use_id: str,
        edge_type: EdgeType,
        fork_id: str | None,
    ) -> None:
        if self._get_pending_row(child_event_id, tool_use_id, edge_type) is not None:
            return
        self._session.add(
            PendingEdgeRow(
                child_event_id=child_event_id,
                tool_use_id=tool_use_id,
                edge_type=edge_type,
                fork_id=fork_id,
                created_at=datetime.now(timezone.utc),
            )
        )
        self._session.flush()

    def get_pending(self, tool_use_id: str) -> Sequence[PendingEdgeRow]:
        stmt = (
            select(PendingEdgeRow)
            .where(PendingEdgeRow.tool_use_id == tool_use_id)
            .order_by(PendingEdgeRow.child_event_id)
        )
        return list(self._session.execute(stmt).scalars().all())

    def list_pending(self, fork_id: str | None = None) -> Sequence[PendingEdgeRow]:
        stmt = select(PendingEdgeRow)
        if fork_id is not None:
            stmt = stmt.where(PendingEdgeRow.fork_id == fork_id)
        stmt = stmt.order_by(PendingEdgeRow.child_event_id, PendingEdgeRow.tool_use_id)
        return list(self._session.execute(stmt).scalars().all())

    def delete_pending(
        self, child_event_id: str, tool_use_id: str, edge_type: EdgeType
    ) -> None:
        row = self._get_pending_row(child_event_id, tool_use_id, edge_type)
        if row is not None:
            self._session.delete(row)
            self._session.flush()


class SqliteForkRepository(ForkRepository):
    """SQLite implementation of fork records.

    Reads use ``populate_existing`` so that rows touched by a conditional
    UPDATE earlier in the same unit of work are re-read, not served stale
    from the identity map.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, fork_id: str) -> ForkRow | None:
        stmt = (
            select(ForkRow)
            .where(ForkRow.fork_id == fork_id)
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, fork: ForkRow) -> None:
        self._session.add(fork)
        self._session.flush()

    def list(self, flt: ForkFilter) -> Sequence[ForkRow]:
        stmt = select(ForkRow).execution_options(populate_existing=True)
        if flt.status is not None:
            stmt = stmt.where(ForkRow.status == flt.status)
        if flt.unread_only:
            stmt = stmt.where(ForkRow.read.is_(False))
        if flt.parent_session_id is not None:
            stmt = stmt.where(ForkRow.parent_session_id == flt.parent_session_id)
        stmt = stmt.order_by(ForkRow.created_at.desc(), ForkRow.fork_id)
        if flt.limit is not None:
            stmt = stmt.limit(flt.limit)
        return list(self._session.execute(stmt).scalars().all())

    def latest(self, parent_session_id: str | None = None) -> ForkRow | None:
        stmt = select(ForkRow).execution_options(populate_existing=True)
        if parent_session_id is not None:
            stmt = stmt.where(ForkRow.parent_session_id == parent_session_id)
        stmt = stmt.order_by(ForkRow.created_at.desc()).limit(1)
        return self._session.execute(stmt).scalar_one_or_none()

    def compare_and_set_status(
        self,
        fork_id: str,
        expected: ForkStatus,
        version: int,
        new_status: ForkStatus,
        **fields: object,
    ) -> bool:
        stmt = (
            update(ForkRow)
            .where(
                ForkRow.fork_id == fork_id,
                ForkRow.status == expected,
                ForkRow.version == version,
            )
            .values(status=new_status, version=ForkRow.version + 1, **fields)
        )
        result = self._session.execute(stmt, execution_options=_NO_SYNC)
        return result.rowcount == 1

    def update_fields(self, fork_id: str, **fields: object) -> None:
        if not fields:
            return
        stmt = update(ForkRow).where(ForkRow.fork_id == fork_id).values(**fields)
        self._session.execute(stmt, execution_options=_NO_SYNC)

    def set_read(
        self,
        fork_ids: Sequence[str] | None = None,
        *,
        parent_session_id: str | None = None,
    ) -> int:
        stmt = update(ForkRow).where(ForkRow.read.is_(False))
        if fork_ids is not None:
            stmt = stmt.where(ForkRow.fork_id.in_(list(fork_ids)))
        if parent_session_id is not None:
            stmt = stmt.where(ForkRow.parent_session_id == parent_session_id)
        result = self._session.execute(stmt.values(read=True), execution_options=_NO_SYNC)
        return result.rowcount


class SqliteSessionRepository(SessionRepository):
    """SQLite implementation of session records."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, session_id: str) -> SessionRow | None:
        stmt = (
            select(SessionRow)
            .where(SessionRow.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, session: SessionRow) -> None:
        self._session.add(session)
        self._session.flush()

    def list(self, fork_id: str | None = None) -> Sequence[SessionRow]:
        stmt = select(SessionRow).execution_options(populate_existing=True)
        if fork_id is not None:
            stmt = stmt.where(SessionRow.fork_id == fork_id)
        stmt = stmt.order_by(SessionRow.created_at.desc(), SessionRow.session_id)
        return list(self._session.execute(stmt).scalars().all())

    def set_fork_once(self, session_id: str, fork_id: str) -> bool:
        stmt = (
            update(SessionRow)
            .where(SessionRow.session_id == session_id, SessionRow.fork_id.is_(None))
            .values(fork_id=fork_id)
        )
        result = self._session.execute(stmt, execution_options=_NO_SYNC)
        return result.rowcount == 1


class SqliteJobRepository(JobRepository):
    """SQLite implementation of job records."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, job_id: str) -> JobRow | None:
        stmt = (
            select(JobRow)
            .where(JobRow.job_id == job_id)
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, job: JobRow) -> None:
        self._session.add(job)
        self._session.flush()

    def list(self, fork_id: str | None = None) -> Sequence[JobRow]:
        stmt = select(JobRow).execution_options(populate_existing=True)
        if fork_id is not None:
            stmt = stmt.where(JobRow.fork_id == fork_id)
        stmt = stmt.order_by(JobRow.created_at.desc(), JobRow.job_id)
        return list(self._session.execute(stmt).scalars().all())

    def compare_and_set_status(
        self, job_id: str, expected: JobStatus, new_status: JobStatus, **fields: object
    ) -> bool:
        stmt = (
            update(JobRow)
            .where(JobRow.job_id == job_id, JobRow.status == expected)
            .values(status=new_status, **fields)
        )
        result = self._session.execute(stmt, execution_options=_NO_SYNC)
        return result.rowcount == 1

    def set_output_once(self, job_id: str, output: str) -> bool:
        stmt = (
            update(JobRow)
            .where(JobRow.job_id == job_id, JobRow.output.is_(None))
            .values(output=output)
        )
        result = self._session.execute(stmt, execution_options=_NO_SYNC)
        return result.rowcount == 1


class SqliteNotificationRepository(NotificationRepository):
    """SQLite implementation of the mailbox.

    take_all reads and deletes in one ``DELETE ... RETURNING`` statement,
    so a row can be observed by at most one caller.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def save(self, notification: NotificationRow) -> None:
        self._session.add(notification)
        self._session.flush()

    def take_all(self, session_id: str) -> Sequence[NotificationRow]:
        stmt = (
            delete(NotificationRow)
            .where(NotificationRow.session_id == session_id)
            .returning(NotificationRow)
        )
        rows = self._session.scalars(stmt, execution_options=_NO_SYNC).all()
        return sorted(rows, key=lambda r: r.id)

    def count(self, session_id: str) -> int:
        stmt = select(func.count()).select_from(NotificationRow).where(
            NotificationRow.session_id == session_id
        )
        return self._session.execute(stmt).scalar_one()
