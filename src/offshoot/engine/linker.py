"""Causality linker.

Turns correlation keys on events into directed edges of the event graph:

- ``parent_tool_use_id = t``  ->  CHILD_OF edge to the event that introduced ``t``
- each ``tool_result_ids`` entry ``t``  ->  RESPONDS_TO edge to that event

Edges only ever point child -> parent. When the introducing event has not
been stored yet (out-of-order delivery), the edge is parked in the pending
edge table under the awaited tool-use id and written the moment that id is
indexed. Nothing is dropped silently: an edge is either resolved, pending,
or rejected with a logged :class:`CorruptEdgeError`. Ordering is only
enforced between events whose ids the producer stamped at emission time.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from offshoot.exceptions import CorruptEdgeError
from offshoot.models.event import EdgeType

if TYPE_CHECKING:
    from offshoot.storage.schema import EventRow
    from offshoot.store import Store, UnitOfWork

logger = logging.getLogger(__name__)


def _check_order(child_id: str, parent_id: str, tool_use_id: str) -> None:
    """Raise CorruptEdgeError unless the child sorts strictly after its parent.

    Only meaningful for producer-stamped ids: ids the store assigns follow
    arrival order, and a child may legitimately arrive before its parent.
    """
    if not child_id > parent_id:
        raise CorruptEdgeError(child_id, parent_id, tool_use_id)


def _is_stamped(u: UnitOfWork, event_id: str) -> bool:
    row = u.events.get(event_id)
    return row is not None and bool(row.stamped)


class CausalityLinker:
    """Derives child -> parent edges from tool-use correlation keys.

    All methods are idempotent and accept an optional unit of work so the
    event store can link inside its append transaction.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    def link(self, event: EventRow, *, uow: UnitOfWork | None = None) -> int:
        """Record (or park) every edge *event* implies.

        Returns:
            Number of edges written now. Parked and rejected edges do not count.
        """
        written = 0
        with self._store.unit_of_work(uow) as u:
            if event.parent_tool_use_id:
                written += self._link_one(
                    u, event, event.parent_tool_use_id, EdgeType.CHILD_OF
                )
            for tool_use_id in event.tool_result_ids or []:
                written += self._link_one(u, event, tool_use_id, EdgeType.RESPONDS_TO)
        return written

    def resolve(self, tool_use_id: str, *, uow: UnitOfWork | None = None) -> int:
        """Write every pending edge waiting on *tool_use_id*, if it is indexed now.

        Returns:
            Number of edges written.
        """
        with self._store.unit_of_work(uow) as u:
            parent_id = u.tool_uses.get_introducer(tool_use_id)
            if parent_id is None:
                return 0
            written = 0
            for pending in u.edges.get_pending(tool_use_id):
                written += self._write(
                    u, pending.child_event_id, parent_id, pending.edge_type, tool_use_id
                )
                u.edges.delete_pending(
                    pending.child_event_id, tool_use_id, pending.edge_type
                )
            return written

    def resolve_pending(
        self, fork_id: str | None = None, *, uow: UnitOfWork | None = None
    ) -> int:
        """Flush every resolvable pending edge, optionally for one fork.

        Edges whose introducer still has not arrived stay pending and are
        reported with a warning.

        Returns:
            Number of edges written.
        """
        with self._store.unit_of_work(uow) as u:
            written = 0
            waiting = 0
            for pending in u.edges.list_pending(fork_id):
                parent_id = u.tool_uses.get_introducer(pending.tool_use_id)
                if parent_id is None:
                    waiting += 1
                    continue
                written += self._write(
                    u,
                    pending.child_event_id,
                    parent_id,
                    pending.edge_type,
                    pending.tool_use_id,
                )
                u.edges.delete_pending(
                    pending.child_event_id, pending.tool_use_id, pending.edge_type
                )
            if waiting:
                logger.warning(
                    "%d edge(s) for fork %s still wait on an unseen tool use",
                    waiting,
                    fork_id or "<any>",
                )
            return written

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _link_one(
        self,
        u: UnitOfWork,
        event: EventRow,
        tool_use_id: str,
        edge_type: EdgeType,
    ) -> int:
        parent_id = u.tool_uses.get_introducer(tool_use_id)
        if parent_id is None:
            u.edges.add_pending(event.event_id, tool_use_id, edge_type, event.fork_id)
            logger.debug(
                "Parked %s edge %s -> ? via %s", edge_type, event.event_id, tool_use_id
            )
            return 0
        return self._write(u, event.event_id, parent_id, edge_type, tool_use_id)

    def _write(
        self,
        u: UnitOfWork,
        child_id: str,
        parent_id: str,
        edge_type: EdgeType,
        tool_use_id: str,
    ) -> int:
        stamped = _is_stamped(u, child_id) and _is_stamped(u, parent_id)
        if child_id == parent_id or stamped:
            try:
                _check_order(child_id, parent_id, tool_use_id)
            except CorruptEdgeError as exc:
                logger.warning("Dropping corrupt %s edge: %s", edge_type, exc)
                return 0
        if u.edges.add_if_absent(child_id, parent_id, edge_type, tool_use_id):
            logger.debug("Linked %s %s -> %s", edge_type, child_id, parent_id)
            return 1
        return 0
