"""Event store for Offshoot.

Append-only log of worker events with a tool-use index for O(1) parent
lookup. Appending runs the causality linker in the same transaction, so a
caller sees an up-to-date graph as soon as ``append`` returns.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterator

from offshoot.engine.ids import is_event_id, new_event_id
from offshoot.engine.linker import CausalityLinker
from offshoot.exceptions import InvalidEventError
from offshoot.models.event import (
    EdgeInfo,
    EdgeType,
    EventInfo,
    NewEvent,
    PendingEdgeInfo,
)
from offshoot.storage.schema import EventRow

if TYPE_CHECKING:
    from offshoot.store import Store, UnitOfWork

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 200


class EventStore:
    """Durable record of every event a fork's agent process emits.

    Reads are lazy: iterators fetch one keyset page per short transaction,
    so a slow consumer never holds the database write lock.
    """

    def __init__(
        self,
        store: Store,
        linker: CausalityLinker | None = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._store = store
        self._linker = linker or CausalityLinker(store)
        self._page_size = page_size

    @property
    def linker(self) -> CausalityLinker:
        return self._linker

    def append(self, event: NewEvent, *, uow: UnitOfWork | None = None) -> str:
        """Store *event* and link it into the graph.

        Missing correlation fields are stored as null/empty; the write is
        never refused for them. Re-appending an id that is already stored, or
        a ``source_uuid`` already stored for the same fork, is a no-op, so a
        worker stream can be replayed after a crash.

        Returns:
            The stored event id (the original one for a replay).

        Raises:
            InvalidEventError: If a caller-supplied id is not a UUIDv7 string.
        """
        if event.event_id is not None and not is_event_id(event.event_id):
            raise InvalidEventError(
                f"event_id must be a lowercase UUIDv7 string, got {event.event_id!r}"
            )
        event_id = event.event_id or new_event_id()

        with self._store.unit_of_work(uow) as u:
            if u.events.get(event_id) is not None:
                logger.debug("Event %s already stored, skipping", event_id)
                return event_id
            if event.source_uuid is not None:
                replayed = u.events.get_by_source(event.fork_id, event.source_uuid)
                if replayed is not None:
                    logger.debug(
                        "Source %s already stored as %s, skipping",
                        event.source_uuid,
                        replayed.event_id,
                    )
                    return replayed.event_id

            row = EventRow(
                event_id=event_id,
                fork_id=event.fork_id,
                session_id=event.session_id,
                event_type=event.event_type,
                role=event.role,
                parent_tool_use_id=event.parent_tool_use_id,
                tool_use_ids=list(event.tool_use_ids),
                tool_result_ids=list(event.tool_result_ids),
                payload=dict(event.payload),
                text=event.text,
                cost_usd=event.cost_usd,
                duration_ms=event.duration_ms,
                turn_count=event.turn_count,
                source_uuid=event.source_uuid,
                stamped=event.event_id is not None,
                created_at=datetime.now(timezone.utc),
            )
            u.events.save(row)

            self._linker.link(row, uow=u)
            for tool_use_id in event.tool_use_ids:
                if u.tool_uses.index_if_absent(tool_use_id, event_id):
                    self._linker.resolve(tool_use_id, uow=u)
                else:
                    logger.debug(
                        "Tool use %s already introduced; %s not indexed",
                        tool_use_id,
                        event_id,
                    )

        logger.debug("Appended %s event %s (fork=%s)", event.event_type, event_id, event.fork_id)
        return event_id

    def get_by_id(self, event_id: str) -> EventInfo | None:
        with self._store.unit_of_work() as u:
            row = u.events.get(event_id)
            return EventInfo.model_validate(row) if row is not None else None

    def introducer_of(self, tool_use_id: str) -> EventInfo | None:
        """The event that introduced *tool_use_id*, if stored."""
        with self._store.unit_of_work() as u:
            event_id = u.tool_uses.get_introducer(tool_use_id)
            if event_id is None:
                return None
            row = u.events.get(event_id)
            return EventInfo.model_validate(row) if row is not None else None

    def children_of(
        self, tool_use_id: str, *, edge_type: EdgeType = EdgeType.CHILD_OF
    ) -> Iterator[EventInfo]:
        """Lazily yield the events linked to *tool_use_id*, ordered by id.

        Yields nothing while the introducing event is unknown.
        """
        with self._store.unit_of_work() as u:
            parent_id = u.tool_uses.get_introducer(tool_use_id)
        if parent_id is None:
            return

        after: str | None = None
        while True:
            with self._store.unit_of_work() as u:
                edges = u.edges.page_children(
                    parent_id, edge_type, after, self._page_size, tool_use_id=tool_use_id
                )
                page = [
                    EventInfo.model_validate(row)
                    for row in (u.events.get(e.child_event_id) for e in edges)
                    if row is not None
                ]
            yield from page
            if len(edges) < self._page_size:
                return
            after = edges[-1].child_event_id

    def iter_events(self, fork_id: str | None) -> Iterator[EventInfo]:
        """Lazily yield a fork's events in emission order."""
        after: str | None = None
        while True:
            with self._store.unit_of_work() as u:
                rows = u.events.page_by_fork(fork_id, after, self._page_size)
                page = [EventInfo.model_validate(row) for row in rows]
            yield from page
            if len(page) < self._page_size:
                return
            after = page[-1].event_id

    def iter_all(self) -> Iterator[EventInfo]:
        """Lazily yield every stored event in emission order."""
        after: str | None = None
        while True:
            with self._store.unit_of_work() as u:
                page = [
                    EventInfo.model_validate(row)
                    for row in u.events.page_all(after, self._page_size)
                ]
            yield from page
            if len(page) < self._page_size:
                return
            after = page[-1].event_id

    def parents_of(self, event_id: str) -> list[EdgeInfo]:
        """Resolved edges leaving *event_id*."""
        with self._store.unit_of_work() as u:
            return [EdgeInfo.model_validate(e) for e in u.edges.get_parents(event_id)]

    def ancestry(self, event_id: str) -> list[EventInfo]:
        """Walk CHILD_OF edges upward from *event_id*, nearest ancestor first."""
        chain: list[EventInfo] = []
        seen = {event_id}
        current = event_id
        with self._store.unit_of_work() as u:
            while True:
                parent = next(
                    (
                        e.parent_event_id
                        for e in u.edges.get_parents(current)
                        if e.edge_type == EdgeType.CHILD_OF
                    ),
                    None,
                )
                if parent is None or parent in seen:
                    break
                row = u.events.get(parent)
                if row is None:
                    break
                chain.append(EventInfo.model_validate(row))
                seen.add(parent)
                current = parent
        return chain

    def pending_edges(self, fork_id: str | None = None) -> list[PendingEdgeInfo]:
        """Edges still waiting for their introducing event."""
        with self._store.unit_of_work() as u:
            return [PendingEdgeInfo.model_validate(p) for p in u.edges.list_pending(fork_id)]
