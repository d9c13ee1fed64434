"""Engine and session factory for Offshoot storage.

Provides SQLite engine creation with concurrency pragmas,
session factory creation, and database initialization.
"""

from __future__ import annotations

from sqlalchemy import Engine, create_engine, event, select, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from offshoot.storage.schema import Base, OffshootMetaRow

SCHEMA_VERSION = "2"


def create_offshoot_engine(
    db_path: str = ":memory:",
    *,
    url: str | None = None,
) -> Engine:
    """Create a SQLAlchemy engine for Offshoot storage.

    Supports two modes:

    1. **SQLite shorthand** (default): pass a file path or ``":memory:"``.
    2. **Full URL**: pass any SQLAlchemy connection URL via *url=*.

    On SQLite every transaction is opened with ``BEGIN IMMEDIATE`` so that
    concurrent writers (the ingestion thread, a CLI ``done`` call, a hook
    draining the mailbox) serialize on the write lock up front instead of
    failing on lock upgrade. ``busy_timeout`` makes them wait for it.

    In-memory databases live on a single shared connection; callers must
    not run transactions on it concurrently (see :class:`offshoot.store.Store`).

    Args:
        db_path: Path to SQLite database file, or ``":memory:"`` for
            in-memory.  Ignored when *url* is provided.
        url: Full SQLAlchemy database URL.

    Returns:
        Configured SQLAlchemy Engine.
    """
    if url is not None:
        engine = create_engine(url, echo=False)
    elif db_path == ":memory:":
        # One shared connection, so every thread sees the same database.
        engine = create_engine(
            "sqlite://",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(f"sqlite:///{db_path}", echo=False)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
            # Hand transaction control to the "begin" listener below.
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):  # type: ignore[no-untyped-def]
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to the given engine.

    Uses expire_on_commit=False so returned rows stay readable
    after their unit of work has committed.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Initialize the database: create all tables and set schema version.

    Creates all tables defined in Base.metadata. New databases are stamped
    with the current schema version; v1 databases are migrated to v2.
    """
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    with SessionLocal() as session:
        existing = session.execute(
            select(OffshootMetaRow).where(OffshootMetaRow.key == "schema_version")
        ).scalar_one_or_none()

        if existing is None:
            session.add(OffshootMetaRow(key="schema_version", value=SCHEMA_VERSION))
            session.commit()
        elif existing.value == "1":
            # Migrate v1 -> v2: replay detection and producer-stamped ids on events.
            # Same connection as the session: it already holds the write lock.
            columns = [
                r[1] for r in session.execute(text("PRAGMA table_info(events)")).fetchall()
            ]
            if "source_uuid" not in columns:
                session.execute(text("ALTER TABLE events ADD COLUMN source_uuid VARCHAR(64)"))
            if "stamped" not in columns:
                session.execute(
                    text("ALTER TABLE events ADD COLUMN stamped BOOLEAN NOT NULL DEFAULT 0")
                )
            session.execute(
                text(
                    "CREATE UNIQUE INDEX IF NOT EXISTS ux_events_source_uuid "
                    "ON events (fork_id, source_uuid)"
                )
            )
            existing.value = "2"
            session.commit()
