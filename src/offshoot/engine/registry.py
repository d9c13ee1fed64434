"""Entity registry for forks, sessions and jobs.

Status changes are compare-and-set: the UPDATE only matches while the row
still has the status *and* version the caller read, so when two writers
race (a liveness sweep and the worker's own ``done`` call, say) exactly one
wins and the other observes ``False``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from offshoot.engine.ids import new_short_id
from offshoot.engine.names import generate_name
from offshoot.exceptions import ForkNotFoundError, InvalidTransitionError
from offshoot.models.fork import (
    FORK_TRANSITIONS,
    ForkFilter,
    ForkInfo,
    ForkStatus,
    JobInfo,
    JobStatus,
    SessionInfo,
)
from offshoot.storage.schema import ForkRow, JobRow, SessionRow

if TYPE_CHECKING:
    from offshoot.store import Store, UnitOfWork

logger = logging.getLogger(__name__)

# Columns a caller may set alongside a status change.
_TRANSITION_FIELDS = frozenset({"failure_reason", "fork_session_id", "worker_pid", "stream_path"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EntityRegistry:
    """CRUD for Fork, Session and Job records."""

    def __init__(self, store: Store) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Forks
    # ------------------------------------------------------------------

    def create_fork(
        self,
        parent_session_id: Optional[str],
        *,
        name: Optional[str] = None,
        fork_id: Optional[str] = None,
        uow: UnitOfWork | None = None,
    ) -> ForkInfo:
        """Create a fork in status ``active``."""
        with self._store.unit_of_work(uow) as u:
            fork_id = fork_id or self._unused_fork_id(u)
            row = ForkRow(
                fork_id=fork_id,
                name=name if name is not None else generate_name(),
                parent_session_id=parent_session_id,
                status=ForkStatus.ACTIVE,
                version=0,
                read=False,
                created_at=_now(),
            )
            u.forks.save(row)
            logger.debug("Created fork %s (parent=%s)", fork_id, parent_session_id)
            return ForkInfo.model_validate(row)

    def get_fork(self, fork_id: str, *, uow: UnitOfWork | None = None) -> ForkInfo | None:
        with self._store.unit_of_work(uow) as u:
            row = u.forks.get(fork_id)
            return ForkInfo.model_validate(row) if row is not None else None

    def require_fork(self, fork_id: str, *, uow: UnitOfWork | None = None) -> ForkInfo:
        """Like :meth:`get_fork` but raises ForkNotFoundError."""
        fork = self.get_fork(fork_id, uow=uow)
        if fork is None:
            raise ForkNotFoundError(fork_id)
        return fork

    def list_forks(self, flt: ForkFilter | None = None) -> list[ForkInfo]:
        with self._store.unit_of_work() as u:
            return [ForkInfo.model_validate(r) for r in u.forks.list(flt or ForkFilter())]

    def latest_fork(self, parent_session_id: Optional[str] = None) -> ForkInfo | None:
        with self._store.unit_of_work() as u:
            row = u.forks.latest(parent_session_id)
            return ForkInfo.model_validate(row) if row is not None else None

    def transition(
        self,
        fork_id: str,
        new_status: ForkStatus,
        *,
        expected: ForkStatus | None = None,
        uow: UnitOfWork | None = None,
        **fields: Any,
    ) -> bool:
        """Compare-and-set a fork's status.

        Args:
            fork_id: Fork to move.
            new_status: Target status.
            expected: Status the caller believes the fork is in. When omitted
                the current status is read and used.
            **fields: Extra columns to set in the same UPDATE
                (``failure_reason``, ``fork_session_id``, ...).

        Returns:
            True if this call moved the fork; False if the fork was no longer
            in *expected* (another writer won the race).

        Raises:
            ForkNotFoundError: Unknown fork id.
            InvalidTransitionError: The state machine forbids the move.
        """
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise TypeError(f"transition() got unexpected fields: {sorted(unknown)}")

        with self._store.unit_of_work(uow) as u:
            row = u.forks.get(fork_id)
            if row is None:
                raise ForkNotFoundError(fork_id)
            current = row.status
            source = expected if expected is not None else current
            if new_status not in FORK_TRANSITIONS[source]:
                raise InvalidTransitionError(fork_id, str(source), str(new_status))
            if current != source:
                logger.debug(
                    "Fork %s CAS lost: expected %s, found %s", fork_id, source, current
                )
                return False

            values = dict(fields)
            if new_status.is_terminal:
                values["completed_at"] = _now()
            won = u.forks.compare_and_set_status(
                fork_id, source, row.version, new_status, **values
            )
            if won:
                logger.debug("Fork %s: %s -> %s", fork_id, source, new_status)
            else:
                logger.debug("Fork %s CAS lost at version %d", fork_id, row.version)
            return won

    def record_worker(
        self,
        fork_id: str,
        *,
        worker_pid: Optional[int] = None,
        stream_path: Optional[str] = None,
        fork_session_id: Optional[str] = None,
        uow: UnitOfWork | None = None,
    ) -> None:
        """Attach launch details to a fork. Does not touch status."""
        fields: dict[str, Any] = {}
        if worker_pid is not None:
            fields["worker_pid"] = worker_pid
        if stream_path is not None:
            fields["stream_path"] = stream_path
        if fork_session_id is not None:
            fields["fork_session_id"] = fork_session_id
        with self._store.unit_of_work(uow) as u:
            if u.forks.get(fork_id) is None:
                raise ForkNotFoundError(fork_id)
            u.forks.update_fields(fork_id, **fields)

    def mark_read(self, fork_id: str, *, uow: UnitOfWork | None = None) -> bool:
        """Acknowledge one fork. Returns True if it was unread."""
        with self._store.unit_of_work(uow) as u:
            if u.forks.get(fork_id) is None:
                raise ForkNotFoundError(fork_id)
            return u.forks.set_read([fork_id]) == 1

    def mark_all_read(
        self, parent_session_id: Optional[str] = None, *, uow: UnitOfWork | None = None
    ) -> int:
        """Mark every unread fork read, running ones included. Returns how many changed."""
        with self._store.unit_of_work(uow) as u:
            return u.forks.set_read(parent_session_id=parent_session_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        session_id: str,
        *,
        fork_id: Optional[str] = None,
        uow: UnitOfWork | None = None,
    ) -> SessionInfo:
        """Create a session row, or return the existing one unchanged."""
        with self._store.unit_of_work(uow) as u:
            existing = u.sessions.get(session_id)
            if existing is not None:
                return SessionInfo.model_validate(existing)
            row = SessionRow(session_id=session_id, fork_id=fork_id, created_at=_now())
            u.sessions.save(row)
            return SessionInfo.model_validate(row)

    def get_session(self, session_id: str) -> SessionInfo | None:
        with self._store.unit_of_work() as u:
            row = u.sessions.get(session_id)
            return SessionInfo.model_validate(row) if row is not None else None

    def list_sessions(self, fork_id: Optional[str] = None) -> list[SessionInfo]:
        with self._store.unit_of_work() as u:
            return [SessionInfo.model_validate(r) for r in u.sessions.list(fork_id)]

    def link_session_fork(
        self, session_id: str, fork_id: str, *, uow: UnitOfWork | None = None
    ) -> bool:
        """Set a session's fork back-reference. Only the first call sticks."""
        with self._store.unit_of_work(uow) as u:
            linked = u.sessions.set_fork_once(session_id, fork_id)
            if not linked:
                logger.debug("Session %s already linked; %s ignored", session_id, fork_id)
            return linked

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(
        self,
        fork_id: str,
        description: str,
        *,
        session_id: Optional[str] = None,
        uow: UnitOfWork | None = None,
    ) -> JobInfo:
        """Create a job in status ``pending``."""
        with self._store.unit_of_work(uow) as u:
            job_id = new_short_id()
            while u.jobs.get(job_id) is not None:
                job_id = new_short_id()
            row = JobRow(
                job_id=job_id,
                description=description,
                status=JobStatus.PENDING,
                fork_id=fork_id,
                session_id=session_id,
                created_at=_now(),
            )
            u.jobs.save(row)
            return JobInfo.model_validate(row)

    def get_job(self, job_id: str) -> JobInfo | None:
        with self._store.unit_of_work() as u:
            row = u.jobs.get(job_id)
            return JobInfo.model_validate(row) if row is not None else None

    def list_jobs(
        self, fork_id: Optional[str] = None, *, uow: UnitOfWork | None = None
    ) -> list[JobInfo]:
        with self._store.unit_of_work(uow) as u:
            return [JobInfo.model_validate(r) for r in u.jobs.list(fork_id)]

    def set_job_status(
        self,
        job_id: str,
        new_status: JobStatus,
        *,
        expected: JobStatus | None = None,
        uow: UnitOfWork | None = None,
    ) -> bool:
        """Compare-and-set a job's status. Finished jobs never change."""
        with self._store.unit_of_work(uow) as u:
            row = u.jobs.get(job_id)
            if row is None:
                return False
            source = expected if expected is not None else row.status
            if source in (JobStatus.COMPLETED, JobStatus.FAILED):
                return False
            fields: dict[str, Any] = {}
            if new_status in (JobStatus.COMPLETED, JobStatus.FAILED):
                fields["completed_at"] = _now()
            return u.jobs.compare_and_set_status(job_id, source, new_status, **fields)

    def set_job_output(
        self, job_id: str, output: str, *, uow: UnitOfWork | None = None
    ) -> bool:
        """Set a job's output once. Later calls are ignored."""
        with self._store.unit_of_work(uow) as u:
            return u.jobs.set_output_once(job_id, output)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _unused_fork_id(self, u: UnitOfWork) -> str:
        fork_id = new_short_id()
        while u.forks.get(fork_id) is not None:
            fork_id = new_short_id()
        return fork_id
