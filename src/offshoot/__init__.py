"""Offshoot: background forks for agent sessions.

A parent session hands a task to a fork, keeps working, and is told when
the fork finishes. Offshoot records everything the fork emits, links its
events into a causal graph, and delivers completion notices exactly once.
"""

from offshoot._version import __version__

# Core entry points
from offshoot.orchestrator import ForkOrchestrator, recipient_for
from offshoot.store import Store, UnitOfWork

# Components
from offshoot.engine.event_store import EventStore
from offshoot.engine.linker import CausalityLinker
from offshoot.engine.registry import EntityRegistry
from offshoot.engine.mailbox import NotificationMailbox
from offshoot.engine.guard import CascadeGuard

# Models
from offshoot.models.event import EdgeInfo, EdgeType, EventInfo, EventRole, NewEvent, PendingEdgeInfo
from offshoot.models.fork import ForkFilter, ForkInfo, ForkStatus, JobInfo, JobStatus, SessionInfo
from offshoot.models.notification import Ack, Notification, NotificationKind
from offshoot.models.config import GuardConfig, LaunchOptions, OffshootConfig
from offshoot.models.guard import GuardDecision

# Protocols
from offshoot.protocols import LaunchRequest, WorkerHandle, WorkerLauncher

# Exceptions
from offshoot.exceptions import (
    CascadeRejectedError,
    CorruptEdgeError,
    ForkNotFoundError,
    InvalidEventError,
    InvalidTransitionError,
    OffshootError,
    StoreError,
    WorkerLaunchError,
)

__all__ = [
    "__version__",
    # Core
    "ForkOrchestrator",
    "recipient_for",
    "Store",
    "UnitOfWork",
    # Components
    "EventStore",
    "CausalityLinker",
    "EntityRegistry",
    "NotificationMailbox",
    "CascadeGuard",
    # Models
    "EdgeInfo",
    "EdgeType",
    "EventInfo",
    "EventRole",
    "NewEvent",
    "PendingEdgeInfo",
    "ForkFilter",
    "ForkInfo",
    "ForkStatus",
    "JobInfo",
    "JobStatus",
    "SessionInfo",
    "Ack",
    "Notification",
    "NotificationKind",
    "GuardConfig",
    "LaunchOptions",
    "OffshootConfig",
    "GuardDecision",
    # Protocols
    "LaunchRequest",
    "WorkerHandle",
    "WorkerLauncher",
    # Exceptions
    "OffshootError",
    "StoreError",
    "ForkNotFoundError",
    "InvalidTransitionError",
    "InvalidEventError",
    "CascadeRejectedError",
    "WorkerLaunchError",
    "CorruptEdgeError",
]
