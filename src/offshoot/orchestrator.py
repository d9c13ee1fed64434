"""Fork orchestrator.

Creates forks, launches their workers, feeds worker output into the event
store and exposes the idempotent ``complete`` / ``mark_failed`` contract.

Spawning never waits for the worker: it returns as soon as the launcher has
produced a handle. Events are ingested by one daemon thread per fork (or by
a separate ``follow`` process for detached CLI spawns). A worker that exits
without calling ``complete`` is marked failed by :meth:`ForkOrchestrator.sweep`
or :meth:`ForkOrchestrator.status`, never by an exception.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping, Optional

from offshoot.engine.event_store import EventStore
from offshoot.engine.guard import CascadeGuard
from offshoot.engine.ids import new_event_id
from offshoot.engine.mailbox import NotificationMailbox
from offshoot.engine.registry import EntityRegistry
from offshoot.exceptions import (
    CascadeRejectedError,
    ForkNotFoundError,
    OffshootError,
    WorkerLaunchError,
)
from offshoot.models.config import (
    CALLBACK_TEMPLATE,
    FORK_ENV_VAR,
    LaunchOptions,
    OffshootConfig,
)
from offshoot.models.event import EventRole, NewEvent
from offshoot.models.fork import ForkFilter, ForkStatus, JobStatus
from offshoot.models.notification import DEFAULT_RECIPIENT, Ack, NotificationKind
from offshoot.protocols import LaunchRequest
from offshoot.worker.handle import EXIT_UNKNOWN, pid_alive

if TYPE_CHECKING:
    from offshoot.models.event import EventInfo
    from offshoot.models.fork import ForkInfo, JobInfo, SessionInfo
    from offshoot.models.notification import Notification
    from offshoot.protocols import WorkerHandle, WorkerLauncher
    from offshoot.store import Store

logger = logging.getLogger(__name__)


def recipient_for(parent_session_id: Optional[str]) -> str:
    """Mailbox that notices for a fork with this parent go to."""
    return parent_session_id or DEFAULT_RECIPIENT


class ForkOrchestrator:
    """Fork lifecycle entry points.

    Usage::

        store = Store.open(".offshoot/offshoot.db")
        orch = ForkOrchestrator(store, ClaudeCliLauncher(".offshoot"))
        fork_id = orch.spawn(session_id, "Write tests for the parser")
        ...
        orch.complete(fork_id, "Added 12 tests")      # called by the worker
        orch.drain_notifications(session_id)          # called by the parent
    """

    def __init__(
        self,
        store: Store,
        launcher: WorkerLauncher,
        *,
        config: OffshootConfig | None = None,
        guard: CascadeGuard | None = None,
        owns_store: bool = False,
    ) -> None:
        self._store = store
        self._launcher = launcher
        self._config = config or OffshootConfig()
        self._guard = guard or CascadeGuard(self._config.guard)
        self._registry = EntityRegistry(store)
        self._events = EventStore(store)
        self._mailbox = NotificationMailbox(store)
        self._owns_store = owns_store
        self._handles: dict[str, WorkerHandle] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def registry(self) -> EntityRegistry:
        return self._registry

    @property
    def events(self) -> EventStore:
        return self._events

    @property
    def mailbox(self) -> NotificationMailbox:
        return self._mailbox

    @property
    def guard(self) -> CascadeGuard:
        return self._guard

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def spawn(
        self,
        parent_session_id: Optional[str],
        message: str,
        options: LaunchOptions | Mapping[str, Any] | None = None,
        *,
        origin_fork_id: Optional[str] = None,
        ingest: bool = True,
    ) -> str:
        """Start a fork working on *message* and return its id.

        Args:
            parent_session_id: Session to notify (and to fork from).
            message: Task message, passed to the worker verbatim.
            options: Routing options for the launcher.
            origin_fork_id: Fork the request comes from, if any. Defaults to
                ``OFFSHOOT_FORK_ID`` from the environment.
            ingest: Start an in-process ingestion thread. Pass False when
                another process will :meth:`follow` the worker.

        Raises:
            CascadeRejectedError: The request looks like a self-spawn.
            pydantic.ValidationError: *options* has the wrong shape.
            WorkerLaunchError: The worker did not start. The fork exists and
                is already failed, with a failure notice queued.
        """
        if origin_fork_id is None:
            origin_fork_id = os.environ.get(FORK_ENV_VAR) or None
        decision = self._guard.check(message, origin_fork_id=origin_fork_id)
        if not decision:
            raise CascadeRejectedError(decision.reason or "rejected")

        opts = self._validate_options(options)
        return self._start(parent_session_id, message, opts, ingest=ingest)

    def message_fork(
        self,
        fork_id: str,
        message: str,
        options: LaunchOptions | Mapping[str, Any] | None = None,
        *,
        origin_fork_id: Optional[str] = None,
        ingest: bool = True,
    ) -> str:
        """Continue a fork's conversation as a new fork.

        The new fork resumes the old fork's session without forking it and
        reports to the same parent session.
        """
        if origin_fork_id is None:
            origin_fork_id = os.environ.get(FORK_ENV_VAR) or None
        decision = self._guard.check(message, origin_fork_id=origin_fork_id)
        if not decision:
            raise CascadeRejectedError(decision.reason or "rejected")

        previous = self._registry.require_fork(fork_id)
        resume = previous.fork_session_id or previous.parent_session_id
        if resume is None:
            raise OffshootError(f"Fork {fork_id} has no session to resume")
        opts = self._validate_options(options).model_copy(
            update={"resume_session_id": resume, "fork_session": False}
        )
        return self._start(previous.parent_session_id, message, opts, ingest=ingest)

    def _validate_options(
        self, options: LaunchOptions | Mapping[str, Any] | None
    ) -> LaunchOptions:
        if options is None:
            return LaunchOptions()
        if isinstance(options, LaunchOptions):
            return options
        return LaunchOptions.model_validate(dict(options))

    def _start(
        self,
        parent_session_id: Optional[str],
        message: str,
        opts: LaunchOptions,
        *,
        ingest: bool,
    ) -> str:
        session_id = new_event_id()
        with self._store.unit_of_work() as u:
            fork = self._registry.create_fork(parent_session_id, uow=u)
            if parent_session_id is not None:
                self._registry.create_session(parent_session_id, uow=u)
            self._registry.create_session(session_id, fork_id=fork.fork_id, uow=u)
            self._registry.record_worker(fork.fork_id, fork_session_id=session_id, uow=u)
            self._registry.create_job(fork.fork_id, message, session_id=session_id, uow=u)
            if self._config.record_prompt:
                self._events.append(
                    NewEvent(
                        fork_id=fork.fork_id,
                        session_id=session_id,
                        event_type="prompt",
                        role=EventRole.USER,
                        text=message,
                        payload={"message": message},
                    ),
                    uow=u,
                )
        fork_id = fork.fork_id

        request = LaunchRequest(
            fork_id=fork_id,
            message=message,
            session_id=session_id,
            callback_instruction=CALLBACK_TEMPLATE.format(
                fork_id=fork_id, command=self._config.callback_command
            ),
            options=opts,
            parent_session_id=parent_session_id,
        )
        try:
            handle = self._launcher.launch(request)
        except Exception as exc:
            logger.error("Fork %s failed to launch: %s", fork_id, exc)
            self.mark_failed(fork_id, f"launch failed: {exc}")
            raise WorkerLaunchError(fork_id, str(exc)) from exc

        self._registry.record_worker(
            fork_id, worker_pid=handle.pid, stream_path=handle.stream_path
        )
        with self._lock:
            self._handles[fork_id] = handle
        logger.info("Spawned fork %s (%s)", fork_id, fork.name)

        if ingest:
            thread = threading.Thread(
                target=self._ingest_in_background,
                args=(fork_id, handle),
                name=f"offshoot-ingest-{fork_id}",
                daemon=True,
            )
            with self._lock:
                self._threads[fork_id] = thread
            thread.start()
        return fork_id

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def follow(self, fork_id: str) -> int:
        """Attach to a detached worker and ingest its stream until it exits.

        Returns:
            Number of events ingested.
        """
        fork = self._registry.require_fork(fork_id)
        handle = self._launcher.attach(
            fork_id, pid=fork.worker_pid, stream_path=fork.stream_path
        )
        if handle is None:
            raise OffshootError(f"Fork {fork_id} has no worker to follow")
        with self._lock:
            self._handles[fork_id] = handle
        return self._ingest(fork_id, handle)

    def join(self, fork_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for a fork's ingestion thread. True if it has finished."""
        with self._lock:
            thread = self._threads.get(fork_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _ingest_in_background(self, fork_id: str, handle: WorkerHandle) -> None:
        try:
            self._ingest(fork_id, handle)
        except Exception:
            logger.exception("Ingestion for fork %s stopped", fork_id)

    def _ingest(self, fork_id: str, handle: WorkerHandle) -> int:
        job_ids = [job.job_id for job in self._registry.list_jobs(fork_id)]
        fork = self._registry.require_fork(fork_id)
        known_session = fork.fork_session_id
        count = 0
        for event in handle.events():
            if event.fork_id != fork_id:
                event = event.model_copy(update={"fork_id": fork_id})
            self._events.append(event)
            count += 1
            if count == 1:
                self._mark_running(fork_id, job_ids)
            if event.session_id and event.session_id != known_session:
                self._note_session(fork_id, event.session_id)
                known_session = event.session_id
        logger.debug("Fork %s stream ended after %d event(s)", fork_id, count)
        return count

    def _mark_running(self, fork_id: str, job_ids: list[str]) -> None:
        with self._store.unit_of_work() as u:
            moved = self._registry.transition(
                fork_id, ForkStatus.RUNNING, expected=ForkStatus.ACTIVE, uow=u
            )
            for job_id in job_ids:
                self._registry.set_job_status(
                    job_id, JobStatus.RUNNING, expected=JobStatus.PENDING, uow=u
                )
        if moved:
            logger.debug("Fork %s is running", fork_id)

    def _note_session(self, fork_id: str, session_id: str) -> None:
        with self._store.unit_of_work() as u:
            self._registry.create_session(session_id, fork_id=fork_id, uow=u)
            self._registry.record_worker(fork_id, fork_session_id=session_id, uow=u)
        logger.debug("Fork %s reported session %s", fork_id, session_id)

    # ------------------------------------------------------------------
    # Completion contract
    # ------------------------------------------------------------------

    def complete(self, fork_id: str, summary: str) -> Ack:
        """Mark a fork completed and notify its parent session.

        Idempotent: calling it on a fork that is already completed or failed
        changes nothing and returns ``Ack(changed=False)``.

        Raises:
            ForkNotFoundError: Unknown fork id.
        """
        return self._finish(fork_id, ForkStatus.COMPLETED, summary)

    def mark_failed(self, fork_id: str, reason: str) -> Ack:
        """Mark a fork failed and notify its parent session.

        Idempotent like :meth:`complete`; a no-op on finished forks. This is
        the hook for external liveness timers.
        """
        return self._finish(fork_id, ForkStatus.FAILED, reason)

    def _finish(self, fork_id: str, status: ForkStatus, text: str) -> Ack:
        with self._store.unit_of_work() as u:
            fork = u.forks.get(fork_id)
            if fork is None:
                raise ForkNotFoundError(fork_id)
            if fork.status.is_terminal:
                logger.debug("Fork %s already %s; %s ignored", fork_id, fork.status, status)
                return Ack(changed=False, fork_id=fork_id, status=fork.status)

            self._events.linker.resolve_pending(fork_id, uow=u)

            fields: dict[str, Any] = {}
            if status == ForkStatus.FAILED:
                fields["failure_reason"] = text
            if not self._registry.transition(
                fork_id, status, expected=fork.status, uow=u, **fields
            ):
                current = u.forks.get(fork_id)
                return Ack(
                    changed=False,
                    fork_id=fork_id,
                    status=current.status if current is not None else None,
                )

            job_status = JobStatus.COMPLETED if status == ForkStatus.COMPLETED else JobStatus.FAILED
            for job in self._registry.list_jobs(fork_id, uow=u):
                if status == ForkStatus.COMPLETED:
                    self._registry.set_job_output(job.job_id, text, uow=u)
                self._registry.set_job_status(job.job_id, job_status, uow=u)

            kind = (
                NotificationKind.COMPLETED
                if status == ForkStatus.COMPLETED
                else NotificationKind.FAILED
            )
            self._mailbox.enqueue(
                recipient_for(fork.parent_session_id), fork_id, text, kind=kind, uow=u
            )

        logger.info("Fork %s %s: %s", fork_id, status, text)
        return Ack(changed=True, fork_id=fork_id, status=status, count=1)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def sweep(self) -> list[str]:
        """Fail every unfinished fork whose worker has exited.

        Returns:
            Ids of the forks this sweep marked failed.
        """
        failed: list[str] = []
        for status in (ForkStatus.ACTIVE, ForkStatus.RUNNING):
            for fork in self._registry.list_forks(ForkFilter(status=status)):
                if self._check_liveness(fork):
                    failed.append(fork.fork_id)
        if failed:
            logger.info("Sweep failed %d fork(s): %s", len(failed), ", ".join(failed))
        return failed

    def status(self, fork_id: str) -> ForkInfo:
        """Current fork record, after a liveness check if it is unfinished."""
        fork = self._registry.require_fork(fork_id)
        if not fork.status.is_terminal and self._check_liveness(fork):
            fork = self._registry.require_fork(fork_id)
        return fork

    def _exit_reason(self, fork: ForkInfo) -> Optional[str]:
        """Why an unfinished fork's worker is gone, or None while it may still run."""
        with self._lock:
            handle = self._handles.get(fork.fork_id)
        if handle is not None:
            code = handle.poll()
        elif fork.worker_pid is not None:
            code = None if pid_alive(fork.worker_pid) else EXIT_UNKNOWN
        elif fork.stream_path is None and fork.status == ForkStatus.ACTIVE:
            # The spawning process died before it recorded a worker.
            return "worker never started" if self._launch_expired(fork) else None
        else:
            return None
        if code is None:
            return None
        if code == EXIT_UNKNOWN:
            return "worker exited without calling done"
        return f"exit {code}"

    def _launch_expired(self, fork: ForkInfo) -> bool:
        created = fork.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - created).total_seconds()
        return age >= self._config.launch_timeout

    def _check_liveness(self, fork: ForkInfo) -> bool:
        reason = self._exit_reason(fork)
        if reason is None:
            return False
        return self.mark_failed(fork.fork_id, reason).changed

    def wait(
        self, fork_id: str, timeout: Optional[float] = None, *, poll_interval: Optional[float] = None
    ) -> ForkInfo:
        """Block until the fork finishes or *timeout* elapses.

        Returns the fork record either way; check ``status.is_terminal``.
        """
        interval = poll_interval or self._config.poll_interval
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            fork = self.status(fork_id)
            if fork.status.is_terminal:
                return fork
            if deadline is not None and time.monotonic() >= deadline:
                return fork
            time.sleep(interval)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_fork(self, fork_id: str) -> ForkInfo:
        return self._registry.require_fork(fork_id)

    def list_forks(self, flt: ForkFilter | None = None) -> list[ForkInfo]:
        return self._registry.list_forks(flt)

    def latest_fork(self, parent_session_id: Optional[str] = None) -> ForkInfo | None:
        return self._registry.latest_fork(parent_session_id)

    def get_messages(self, fork_id: str) -> list[EventInfo]:
        """Every event of a fork, in emission order."""
        self._registry.require_fork(fork_id)
        return list(self._events.iter_events(fork_id))

    def list_sessions(self, fork_id: Optional[str] = None) -> list[SessionInfo]:
        return self._registry.list_sessions(fork_id)

    def list_jobs(self, fork_id: Optional[str] = None) -> list[JobInfo]:
        return self._registry.list_jobs(fork_id)

    def mark_read(self, fork_id: str) -> Ack:
        changed = self._registry.mark_read(fork_id)
        return Ack(changed=changed, fork_id=fork_id, count=int(changed))

    def mark_all_read(self, parent_session_id: Optional[str] = None) -> Ack:
        count = self._registry.mark_all_read(parent_session_id)
        return Ack(changed=count > 0, count=count)

    def drain_notifications(self, session_id: Optional[str]) -> list[Notification]:
        """Destructively read the notices queued for *session_id*."""
        return self._mailbox.drain_all(recipient_for(session_id))

    def pending_notifications(self, session_id: Optional[str]) -> int:
        return self._mailbox.pending_count(recipient_for(session_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self, timeout: Optional[float] = 0) -> None:
        """Stop tracking workers. Workers themselves keep running.

        Args:
            timeout: Seconds to wait for each ingestion thread to drain.
        """
        if self._closed:
            return
        self._closed = True
        with self._lock:
            threads = list(self._threads.values())
        if timeout:
            for thread in threads:
                thread.join(timeout)
        if self._owns_store:
            self._store.close()

    def __enter__(self) -> ForkOrchestrator:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()
