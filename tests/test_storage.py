"""Tests for the Offshoot storage layer.

Covers: schema creation, schema version stamping and migration, SQLite
pragmas, and the conditional writes of every SQLite repository
(compare-and-set, set-once, destructive drain, source-uuid lookup).
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import inspect, select, text
from sqlalchemy.exc import IntegrityError

from offshoot.engine.ids import new_event_id
from offshoot.models.event import EdgeType, EventRole
from offshoot.models.fork import ForkFilter, ForkStatus, JobStatus
from offshoot.models.notification import NotificationKind
from offshoot.storage.engine import SCHEMA_VERSION, create_offshoot_engine, init_db
from offshoot.storage.schema import (
    EventRow,
    ForkRow,
    JobRow,
    NotificationRow,
    OffshootMetaRow,
    SessionRow,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fork(fork_id: str = "f1", *, status: ForkStatus = ForkStatus.ACTIVE, parent: str | None = "s1") -> ForkRow:
    return ForkRow(
        fork_id=fork_id,
        name="Moth",
        parent_session_id=parent,
        status=status,
        version=0,
        read=False,
        created_at=_now(),
    )


def _event(event_id: str | None = None, fork_id: str = "f1") -> EventRow:
    return EventRow(
        event_id=event_id or new_event_id(),
        fork_id=fork_id,
        event_type="assistant",
        role=EventRole.ASSISTANT,
        tool_use_ids=[],
        tool_result_ids=[],
        payload={},
        created_at=_now(),
    )


# ---------------------------------------------------------------------------
# Engine and schema
# ---------------------------------------------------------------------------

class TestSchema:
    """Tests for create_offshoot_engine and init_db."""

    def test_all_tables_created(self, engine):
        tables = set(inspect(engine).get_table_names())
        assert {
            "events",
            "tool_use_index",
            "event_edges",
            "pending_edges",
            "forks",
            "sessions",
            "jobs",
            "notifications",
            "_offshoot_meta",
        } <= tables

    def test_schema_version_stamped(self, session):
        row = session.execute(
            select(OffshootMetaRow).where(OffshootMetaRow.key == "schema_version")
        ).scalar_one()
        assert row.value == SCHEMA_VERSION

    def test_init_db_is_repeatable(self, engine):
        init_db(engine)
        init_db(engine)
        with engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM _offshoot_meta")).scalar_one()
        assert count == 1

    def test_v1_database_is_migrated(self, tmp_path):
        eng = create_offshoot_engine(str(tmp_path / "v1.db"))
        try:
            with eng.begin() as conn:
                conn.execute(text(
                    "CREATE TABLE events (event_id VARCHAR(36) PRIMARY KEY, fork_id VARCHAR(16), "
                    "session_id VARCHAR(64), event_type VARCHAR(50) NOT NULL, role VARCHAR(11) NOT NULL, "
                    "parent_tool_use_id VARCHAR(128), tool_use_ids JSON, tool_result_ids JSON, "
                    "payload JSON, text TEXT, cost_usd FLOAT, duration_ms INTEGER, "
                    "turn_count INTEGER, created_at DATETIME NOT NULL)"
                ))
                conn.execute(text("CREATE TABLE _offshoot_meta (key VARCHAR(255) PRIMARY KEY, value TEXT NOT NULL)"))
                conn.execute(text("INSERT INTO _offshoot_meta VALUES ('schema_version', '1')"))

            init_db(eng)

            columns = {c["name"] for c in inspect(eng).get_columns("events")}
            assert {"source_uuid", "stamped"} <= columns
            indexes = {i["name"] for i in inspect(eng).get_indexes("events")}
            assert "ux_events_source_uuid" in indexes
            with eng.connect() as conn:
                version = conn.execute(
                    text("SELECT value FROM _offshoot_meta WHERE key = 'schema_version'")
                ).scalar_one()
            assert version == SCHEMA_VERSION
        finally:
            eng.dispose()

    def test_file_database_uses_wal(self, tmp_path):
        eng = create_offshoot_engine(str(tmp_path / "wal.db"))
        try:
            init_db(eng)
            with eng.connect() as conn:
                mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar_one()
                fks = conn.exec_driver_sql("PRAGMA foreign_keys").scalar_one()
            assert mode.lower() == "wal"
            assert fks == 1
        finally:
            eng.dispose()


# ---------------------------------------------------------------------------
# Events, tool-use index, edges
# ---------------------------------------------------------------------------

class TestEventRepository:
    """Tests for SqliteEventRepository."""

    def test_save_and_get(self, event_repo):
        row = _event()
        event_repo.save(row)
        assert event_repo.get(row.event_id) is row

    def test_get_missing(self, event_repo):
        assert event_repo.get(new_event_id()) is None

    def test_page_by_fork_is_ordered_and_keyset(self, event_repo):
        ids = [new_event_id() for _ in range(5)]
        for event_id in reversed(ids):
            event_repo.save(_event(event_id))
        event_repo.save(_event(fork_id="other"))

        first = event_repo.page_by_fork("f1", None, 3)
        assert [r.event_id for r in first] == ids[:3]
        rest = event_repo.page_by_fork("f1", first[-1].event_id, 3)
        assert [r.event_id for r in rest] == ids[3:]

    def test_page_all_includes_every_fork(self, event_repo):
        event_repo.save(_event(fork_id="a"))
        event_repo.save(_event(fork_id="b"))
        assert len(event_repo.page_all(None, 10)) == 2

    def test_get_by_source_is_scoped_to_fork(self, event_repo):
        row = _event()
        row.source_uuid = "u1"
        event_repo.save(row)
        assert event_repo.get_by_source("f1", "u1") is row
        assert event_repo.get_by_source("other", "u1") is None
        assert event_repo.get_by_source("f1", "u2") is None

    def test_source_uuid_unique_per_fork(self, event_repo):
        first, second = _event(), _event()
        first.source_uuid = second.source_uuid = "u1"
        event_repo.save(first)
        with pytest.raises(IntegrityError):
            event_repo.save(second)


class TestToolUseRepository:
    """Tests for SqliteToolUseRepository."""

    def test_first_introducer_wins(self, event_repo, tool_use_repo):
        a, b = _event(), _event()
        event_repo.save(a)
        event_repo.save(b)
        assert tool_use_repo.index_if_absent("toolu_1", a.event_id) is True
        assert tool_use_repo.index_if_absent("toolu_1", b.event_id) is False
        assert tool_use_repo.get_introducer("toolu_1") == a.event_id

    def test_unknown_tool_use(self, tool_use_repo):
        assert tool_use_repo.get_introducer("nope") is None


class TestEdgeRepository:
    """Tests for SqliteEdgeRepository."""

    def test_add_if_absent_is_idempotent(self, event_repo, edge_repo):
        parent, child = _event(), _event()
        event_repo.save(parent)
        event_repo.save(child)
        assert edge_repo.add_if_absent(child.event_id, parent.event_id, EdgeType.CHILD_OF, "t") is True
        assert edge_repo.add_if_absent(child.event_id, parent.event_id, EdgeType.CHILD_OF, "t") is False
        assert len(edge_repo.get_parents(child.event_id)) == 1

    def test_page_children_filters_type_and_tool_use(self, event_repo, edge_repo):
        parent = _event()
        event_repo.save(parent)
        kids = []
        for tool_use_id, edge_type in (
            ("t1", EdgeType.CHILD_OF),
            ("t1", EdgeType.RESPONDS_TO),
            ("t2", EdgeType.CHILD_OF),
        ):
            kid = _event()
            event_repo.save(kid)
            edge_repo.add_if_absent(kid.event_id, parent.event_id, edge_type, tool_use_id)
            kids.append(kid)

        children = edge_repo.page_children(
            parent.event_id, EdgeType.CHILD_OF, None, 10, tool_use_id="t1"
        )
        assert [e.child_event_id for e in children] == [kids[0].event_id]
        all_child_of = edge_repo.page_children(parent.event_id, EdgeType.CHILD_OF, None, 10)
        assert len(all_child_of) == 2

    def test_pending_lifecycle(self, event_repo, edge_repo):
        row = _event()
        event_repo.save(row)
        child = row.event_id
        edge_repo.add_pending(child, "t9", EdgeType.CHILD_OF, "f1")
        edge_repo.add_pending(child, "t9", EdgeType.CHILD_OF, "f1")
        assert len(edge_repo.get_pending("t9")) == 1
        assert len(edge_repo.list_pending("f1")) == 1
        assert edge_repo.list_pending("other") == []

        edge_repo.delete_pending(child, "t9", EdgeType.CHILD_OF)
        assert edge_repo.get_pending("t9") == []


# ---------------------------------------------------------------------------
# Forks, sessions, jobs
# ---------------------------------------------------------------------------

class TestForkRepository:
    """Tests for SqliteForkRepository."""

    def test_compare_and_set_wins_once(self, fork_repo):
        fork_repo.save(_fork())
        assert fork_repo.compare_and_set_status("f1", ForkStatus.ACTIVE, 0, ForkStatus.RUNNING) is True
        # Same precondition again: status and version have both moved on.
        assert fork_repo.compare_and_set_status("f1", ForkStatus.ACTIVE, 0, ForkStatus.FAILED) is False
        row = fork_repo.get("f1")
        assert row.status == ForkStatus.RUNNING
        assert row.version == 1

    def test_compare_and_set_checks_version(self, fork_repo):
        fork_repo.save(_fork())
        assert fork_repo.compare_and_set_status("f1", ForkStatus.ACTIVE, 7, ForkStatus.RUNNING) is False

    def test_compare_and_set_sets_fields(self, fork_repo):
        fork_repo.save(_fork())
        fork_repo.compare_and_set_status(
            "f1", ForkStatus.ACTIVE, 0, ForkStatus.FAILED, failure_reason="exit 1"
        )
        assert fork_repo.get("f1").failure_reason == "exit 1"

    def test_list_filters(self, fork_repo):
        fork_repo.save(_fork("a", parent="s1"))
        fork_repo.save(_fork("b", status=ForkStatus.COMPLETED, parent="s1"))
        fork_repo.save(_fork("c", status=ForkStatus.COMPLETED, parent="s2"))

        done = fork_repo.list(ForkFilter(status=ForkStatus.COMPLETED))
        assert {f.fork_id for f in done} == {"b", "c"}
        mine = fork_repo.list(ForkFilter(parent_session_id="s1"))
        assert {f.fork_id for f in mine} == {"a", "b"}
        assert len(fork_repo.list(ForkFilter(limit=1))) == 1

    def test_set_read_all_touches_every_status(self, fork_repo):
        fork_repo.save(_fork("a"))
        fork_repo.save(_fork("b", status=ForkStatus.RUNNING))
        fork_repo.save(_fork("c", status=ForkStatus.COMPLETED))
        fork_repo.save(_fork("d", status=ForkStatus.FAILED))
        assert fork_repo.set_read() == 4
        assert fork_repo.set_read() == 0
        assert fork_repo.get("a").read is True

    def test_set_read_by_id(self, fork_repo):
        fork_repo.save(_fork("a"))
        assert fork_repo.set_read(["a"]) == 1
        assert fork_repo.set_read(["a"]) == 0


class TestSessionRepository:
    """Tests for SqliteSessionRepository."""

    def test_set_fork_once(self, fork_repo, session_repo):
        fork_repo.save(_fork("a"))
        fork_repo.save(_fork("b"))
        session_repo.save(SessionRow(session_id="s9", created_at=_now()))
        assert session_repo.set_fork_once("s9", "a") is True
        assert session_repo.set_fork_once("s9", "b") is False
        assert session_repo.get("s9").fork_id == "a"


class TestJobRepository:
    """Tests for SqliteJobRepository."""

    def _job(self) -> JobRow:
        return JobRow(
            job_id="j1",
            description="Write tests",
            status=JobStatus.PENDING,
            fork_id="f1",
            created_at=_now(),
        )

    def test_compare_and_set(self, fork_repo, job_repo):
        fork_repo.save(_fork())
        job_repo.save(self._job())
        assert job_repo.compare_and_set_status("j1", JobStatus.PENDING, JobStatus.RUNNING) is True
        assert job_repo.compare_and_set_status("j1", JobStatus.PENDING, JobStatus.FAILED) is False
        assert job_repo.get("j1").status == JobStatus.RUNNING

    def test_output_set_once(self, fork_repo, job_repo):
        fork_repo.save(_fork())
        job_repo.save(self._job())
        assert job_repo.set_output_once("j1", "first") is True
        assert job_repo.set_output_once("j1", "second") is False
        assert job_repo.get("j1").output == "first"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class TestNotificationRepository:
    """Tests for SqliteNotificationRepository."""

    def _notice(self, session_id: str, summary: str) -> NotificationRow:
        return NotificationRow(
            session_id=session_id,
            fork_id="f1",
            kind=NotificationKind.COMPLETED,
            summary=summary,
            created_at=_now(),
        )

    def test_take_all_drains_in_order(self, fork_repo, notification_repo):
        fork_repo.save(_fork())
        for summary in ("one", "two", "three"):
            notification_repo.save(self._notice("s1", summary))
        notification_repo.save(self._notice("s2", "other"))

        taken = notification_repo.take_all("s1")
        assert [n.summary for n in taken] == ["one", "two", "three"]
        assert notification_repo.take_all("s1") == []
        assert notification_repo.count("s2") == 1

    @pytest.mark.parametrize("session_id", ["s1", "nobody"])
    def test_count_empty(self, notification_repo, session_id):
        assert notification_repo.count(session_id) == 0
