"""Shared test fixtures for Offshoot.

Provides in-memory and file-backed stores, repository fixtures bound to a
rollback-only session, and a scripted fake worker launcher.
"""

from __future__ import annotations

import threading
from typing import Iterator, Optional

import pytest
from sqlalchemy.orm import Session, sessionmaker

from offshoot.engine.ids import new_event_id
from offshoot.models.event import EventRole, NewEvent
from offshoot.protocols import LaunchRequest
from offshoot.storage.engine import create_offshoot_engine, init_db
from offshoot.storage.sqlite import (
    SqliteEdgeRepository,
    SqliteEventRepository,
    SqliteForkRepository,
    SqliteJobRepository,
    SqliteNotificationRepository,
    SqliteSessionRepository,
    SqliteToolUseRepository,
)
from offshoot.store import Store


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_offshoot_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    """Session with automatic rollback after each test."""
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sess = SessionLocal()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def event_repo(session: Session) -> SqliteEventRepository:
    return SqliteEventRepository(session)


@pytest.fixture
def tool_use_repo(session: Session) -> SqliteToolUseRepository:
    return SqliteToolUseRepository(session)


@pytest.fixture
def edge_repo(session: Session) -> SqliteEdgeRepository:
    return SqliteEdgeRepository(session)


@pytest.fixture
def fork_repo(session: Session) -> SqliteForkRepository:
    return SqliteForkRepository(session)


@pytest.fixture
def session_repo(session: Session) -> SqliteSessionRepository:
    return SqliteSessionRepository(session)


@pytest.fixture
def job_repo(session: Session) -> SqliteJobRepository:
    return SqliteJobRepository(session)


@pytest.fixture
def notification_repo(session: Session) -> SqliteNotificationRepository:
    return SqliteNotificationRepository(session)


@pytest.fixture
def store() -> Iterator[Store]:
    """In-memory store shared by every thread of the test."""
    s = Store.open(":memory:")
    yield s
    s.close()


@pytest.fixture
def file_store(tmp_path) -> Iterator[Store]:
    """File-backed store for tests that need real SQLite locking."""
    s = Store.open(str(tmp_path / "offshoot.db"))
    yield s
    s.close()


# ------------------------------------------------------------------
# Fake worker
# ------------------------------------------------------------------

class FakeHandle:
    """WorkerHandle that replays scripted events, then reports an exit code.

    With ``hold=True`` the event stream blocks until :meth:`release` is
    called, which lets a test observe a fork while its worker "runs".
    """

    def __init__(
        self,
        events: list[NewEvent],
        *,
        exit_code: Optional[int] = 0,
        pid: Optional[int] = 4242,
        session_id: Optional[str] = None,
        hold: bool = False,
    ) -> None:
        self._events = events
        self._exit_code = exit_code
        self._pid = pid
        self._session_id = session_id
        self._gate = threading.Event()
        if not hold:
            self._gate.set()
        self._finished = threading.Event()
        self.terminated = False

    @property
    def pid(self) -> Optional[int]:
        return self._pid

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def stream_path(self) -> Optional[str]:
        return None

    def release(self) -> None:
        self._gate.set()

    def events(self) -> Iterator[NewEvent]:
        self._gate.wait(5)
        yield from self._events
        self._finished.set()

    def poll(self) -> Optional[int]:
        if not self._finished.is_set():
            return None
        return self._exit_code

    def terminate(self) -> None:
        self.terminated = True
        self._finished.set()


class FakeLauncher:
    """WorkerLauncher that hands out FakeHandles and records requests."""

    def __init__(
        self,
        script: Optional[list[NewEvent]] = None,
        *,
        exit_code: Optional[int] = 0,
        fail_with: Optional[Exception] = None,
        hold: bool = False,
    ) -> None:
        self.script = script if script is not None else default_script()
        self.exit_code = exit_code
        self.fail_with = fail_with
        self.hold = hold
        self.requests: list[LaunchRequest] = []
        self.handles: dict[str, FakeHandle] = {}

    def launch(self, request: LaunchRequest) -> FakeHandle:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeHandle(
            list(self.script),
            exit_code=self.exit_code,
            session_id=request.session_id,
            hold=self.hold,
        )
        self.handles[request.fork_id] = handle
        return handle

    def attach(
        self, fork_id: str, *, pid: Optional[int], stream_path: Optional[str]
    ) -> Optional[FakeHandle]:
        return self.handles.get(fork_id)


def default_script() -> list[NewEvent]:
    """A tiny worker run: init, one tool call, its result, a reply."""
    return [
        NewEvent(event_type="system", role=EventRole.SYSTEM, text="init"),
        NewEvent(
            event_type="assistant",
            role=EventRole.ASSISTANT,
            tool_use_ids=["toolu_1"],
            text="Reading the parser",
        ),
        NewEvent(
            event_type="user",
            role=EventRole.TOOL_RESULT,
            tool_result_ids=["toolu_1"],
            text="def parse(): ...",
        ),
        NewEvent(event_type="assistant", role=EventRole.ASSISTANT, text="Done reading"),
    ]


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


# ------------------------------------------------------------------
# Shared test helpers
# ------------------------------------------------------------------

def make_event(
    *,
    event_id: Optional[str] = None,
    fork_id: Optional[str] = "f1",
    parent_tool_use_id: Optional[str] = None,
    tool_use_ids: Optional[list[str]] = None,
    tool_result_ids: Optional[list[str]] = None,
    text: Optional[str] = None,
) -> NewEvent:
    """Build a NewEvent with an explicit, freshly ordered id."""
    return NewEvent(
        event_id=event_id or new_event_id(),
        fork_id=fork_id,
        event_type="assistant",
        role=EventRole.ASSISTANT,
        parent_tool_use_id=parent_tool_use_id,
        tool_use_ids=tool_use_ids or [],
        tool_result_ids=tool_result_ids or [],
        text=text,
    )
