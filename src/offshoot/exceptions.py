"""Offshoot exception hierarchy.

All Offshoot-specific exceptions inherit from OffshootError.
"""


class OffshootError(Exception):
    """Base exception for all Offshoot errors."""


class StoreError(OffshootError):
    """Raised when the backing database rejects or aborts a unit of work."""


class ForkNotFoundError(OffshootError):
    """Raised when a fork id lookup fails."""

    def __init__(self, fork_id: str) -> None:
        self.fork_id = fork_id
        super().__init__(f"Fork not found: {fork_id}")


class InvalidTransitionError(OffshootError):
    """Raised when a status change is not allowed by the fork state machine."""

    def __init__(self, fork_id: str, current: str, requested: str) -> None:
        self.fork_id = fork_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Fork {fork_id} cannot move from '{current}' to '{requested}'"
        )


class InvalidEventError(OffshootError):
    """Raised when an event is not well-formed enough to be stored at all.

    Missing correlation fields are tolerated (stored as null). This is only
    raised for structurally broken input, such as a caller-supplied event id
    that is not a time-ordered identifier.
    """


class CascadeRejectedError(OffshootError):
    """Raised when a spawn request looks like a fork trying to spawn forks."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Spawn rejected: {reason}")


class WorkerLaunchError(OffshootError):
    """Raised when the worker process could not be started.

    The fork record still exists and has already been marked failed.
    """

    def __init__(self, fork_id: str, reason: str) -> None:
        self.fork_id = fork_id
        self.reason = reason
        super().__init__(f"Failed to launch worker for fork {fork_id}: {reason}")


class CorruptEdgeError(OffshootError):
    """Raised internally when a causal edge would point forward in time.

    The linker logs and discards these; they never escape the event store.
    """

    def __init__(self, child_id: str, parent_id: str, tool_use_id: str) -> None:
        self.child_id = child_id
        self.parent_id = parent_id
        self.tool_use_id = tool_use_id
        super().__init__(
            f"Edge {child_id} -> {parent_id} via {tool_use_id!r} violates "
            f"event ordering (child must sort after parent)"
        )
