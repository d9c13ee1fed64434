"""Notification mailbox.

Per-session durable queue of fork completion notices. Draining is
destructive: rows are read and deleted by one ``DELETE ... RETURNING``
inside a write-locked transaction, so across threads and processes each
notice is delivered to exactly one drainer.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from offshoot.models.notification import Notification, NotificationKind
from offshoot.storage.schema import NotificationRow

if TYPE_CHECKING:
    from offshoot.store import Store, UnitOfWork

logger = logging.getLogger(__name__)


class NotificationMailbox:
    """Enqueue and drain completion notices per recipient session."""

    def __init__(self, store: Store) -> None:
        self._store = store
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.Lock()
            return lock

    def enqueue(
        self,
        session_id: str,
        fork_id: str,
        summary: str,
        *,
        kind: NotificationKind = NotificationKind.COMPLETED,
        uow: UnitOfWork | None = None,
    ) -> Notification:
        """Queue a notice for *session_id*."""
        with self._store.unit_of_work(uow) as u:
            row = NotificationRow(
                session_id=session_id,
                fork_id=fork_id,
                kind=kind,
                summary=summary,
                created_at=datetime.now(timezone.utc),
            )
            u.notifications.save(row)
            logger.debug("Queued %s notice for %s from fork %s", kind, session_id, fork_id)
            return Notification.model_validate(row)

    def drain_all(self, session_id: str) -> list[Notification]:
        """Remove and return every pending notice for *session_id*, oldest first.

        A second call, or a concurrent one, returns an empty list.
        """
        with self._lock_for(session_id):
            with self._store.unit_of_work() as u:
                rows = u.notifications.take_all(session_id)
                notices = [Notification.model_validate(r) for r in rows]
        if notices:
            logger.debug("Drained %d notice(s) for %s", len(notices), session_id)
        return notices

    def pending_count(self, session_id: str) -> int:
        """Number of notices waiting for *session_id*. Does not consume them."""
        with self._store.unit_of_work() as u:
            return u.notifications.count(session_id)
