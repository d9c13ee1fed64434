"""Store handle and unit of work.

A :class:`Store` owns one engine and hands out short-lived units of work.
Each unit of work is one SQLAlchemy ``Session`` (one ``BEGIN IMMEDIATE``
transaction on SQLite) with a repository of every kind bound to it: it
commits when the block exits cleanly and rolls back on any exception.

Components accept an optional ``uow`` so several writes can share one
transaction::

    with store.unit_of_work() as uow:
        registry.create_fork(..., uow=uow)
        event_store.append(prompt, uow=uow)

Note:
    An in-memory store keeps one shared connection and runs its units of
    work one at a time. File-backed stores rely on SQLite locking instead.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from offshoot.exceptions import StoreError
from offshoot.storage.engine import create_offshoot_engine, create_session_factory, init_db
from offshoot.storage.sqlite import (
    SqliteEdgeRepository,
    SqliteEventRepository,
    SqliteForkRepository,
    SqliteJobRepository,
    SqliteNotificationRepository,
    SqliteSessionRepository,
    SqliteToolUseRepository,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session, sessionmaker

    from offshoot.models.config import OffshootConfig

logger = logging.getLogger(__name__)


class UnitOfWork:
    """One transaction plus the repositories bound to it."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.events = SqliteEventRepository(session)
        self.tool_uses = SqliteToolUseRepository(session)
        self.edges = SqliteEdgeRepository(session)
        self.forks = SqliteForkRepository(session)
        self.sessions = SqliteSessionRepository(session)
        self.jobs = SqliteJobRepository(session)
        self.notifications = SqliteNotificationRepository(session)


class Store:
    """Injected storage handle shared by every component."""

    def __init__(self, engine: Engine, session_factory: sessionmaker[Session]) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._closed = False
        # A single shared connection (in-memory SQLite) cannot interleave
        # transactions from several threads.
        self._serial: threading.RLock | None = (
            threading.RLock() if isinstance(engine.pool, StaticPool) else None
        )

    @classmethod
    def open(
        cls,
        path: str = ":memory:",
        *,
        url: str | None = None,
        engine: Engine | None = None,
    ) -> Store:
        """Open (or create) an Offshoot database.

        Args:
            path: SQLite path.  ``":memory:"`` for in-memory (default).
            url: Full SQLAlchemy URL; overrides *path*.
            engine: Pre-built engine; overrides both.
        """
        if engine is None:
            engine = create_offshoot_engine(path, url=url)
        init_db(engine)
        logger.debug("Opened store at %s", engine.url)
        return cls(engine, create_session_factory(engine))

    @classmethod
    def from_config(cls, config: OffshootConfig) -> Store:
        """Open the database described by *config*, creating its directory."""
        if config.db_url is None and config.db_path != ":memory:":
            from pathlib import Path

            Path(config.db_path).parent.mkdir(parents=True, exist_ok=True)
        return cls.open(config.db_path, url=config.db_url)

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def unit_of_work(self, uow: UnitOfWork | None = None) -> Iterator[UnitOfWork]:
        """Run a block in one transaction.

        When *uow* is given the block joins it instead: nothing is committed
        here and the owner of *uow* decides the outcome.

        Raises:
            StoreError: If the database rejects the transaction.
        """
        if uow is not None:
            yield uow
            return

        if self._serial is not None:
            with self._serial:
                yield from self._run()
        else:
            yield from self._run()

    def _run(self) -> Iterator[UnitOfWork]:
        session = self._session_factory()
        try:
            yield UnitOfWork(session)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(str(exc)) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose the engine."""
        if self._closed:
            return
        self._closed = True
        self._engine.dispose()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Store(url='{self._engine.url}', closed={self._closed})"
