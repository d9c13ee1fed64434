"""Protocol definitions for Offshoot.

Defines the pluggable worker interfaces (WorkerLauncher, WorkerHandle)
and the frozen LaunchRequest handed from the orchestrator to a launcher.

No SQLAlchemy imports allowed in this module -- pure domain protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Optional, Protocol, runtime_checkable

from offshoot.models.config import LaunchOptions

if TYPE_CHECKING:
    from offshoot.models.event import NewEvent


@dataclass(frozen=True)
class LaunchRequest:
    """Everything a launcher needs to start one worker.

    Attributes:
        fork_id: Fork the worker runs for.
        message: Task message, passed through verbatim.
        session_id: Session id the worker's conversation must use.
        callback_instruction: Text telling the worker how to report completion.
        options: Routing options (model, working dir, ...), opaque to the core.
        parent_session_id: Session the worker forks from, if any.
    """

    fork_id: str
    message: str
    session_id: str
    callback_instruction: str
    options: LaunchOptions
    parent_session_id: Optional[str] = None


@runtime_checkable
class WorkerHandle(Protocol):
    """A running (or finished) worker process."""

    @property
    def pid(self) -> Optional[int]:
        """OS process id, when the worker is a local process."""
        ...

    @property
    def session_id(self) -> Optional[str]:
        """Session id the worker reported, if known yet."""
        ...

    @property
    def stream_path(self) -> Optional[str]:
        """File the worker's output is written to, for re-attachment."""
        ...

    def events(self) -> Iterator[NewEvent]:
        """Lazy, ordered, finite sequence of the worker's events.

        Ends when the worker process exits.
        """
        ...

    def poll(self) -> Optional[int]:
        """Exit code if the worker has exited, else None."""
        ...

    def terminate(self) -> None:
        """Ask the worker to stop."""
        ...


@runtime_checkable
class WorkerLauncher(Protocol):
    """Starts detached workers."""

    def launch(self, request: LaunchRequest) -> WorkerHandle:
        """Start a worker for *request* and return once it is running.

        Raises:
            Exception: Any error means the worker did not start.
        """
        ...

    def attach(
        self, fork_id: str, *, pid: Optional[int], stream_path: Optional[str]
    ) -> Optional[WorkerHandle]:
        """Re-open a previously launched worker, or None if impossible."""
        ...
