"""Parsing of the worker's NDJSON output stream.

The ``claude`` CLI in ``--output-format stream-json`` mode writes one JSON
object per line. Each object becomes one :class:`NewEvent`:

- ``type`` is kept verbatim as ``event_type``.
- ``role`` is derived: ``assistant`` -> assistant; ``user`` -> user, or
  tool-result when the message carries ``tool_result`` blocks; everything
  else (``system``, ``result``, ``error``, unknown) -> system.
- ``tool_use`` content blocks contribute ``tool_use_ids``;
  ``tool_result`` blocks contribute ``tool_result_ids``.
- ``parent_tool_use_id`` is taken from the top level when present.
- Cost, duration and turn count are lifted from ``result`` events.
- The line's ``uuid`` becomes ``source_uuid`` so a replayed stream is
  recognised.

Lines that are blank or not JSON objects are skipped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Iterator, Optional

from offshoot.models.event import EventRole, NewEvent

logger = logging.getLogger(__name__)


def _content_blocks(obj: dict[str, Any]) -> list[dict[str, Any]]:
    message = obj.get("message")
    if isinstance(message, dict):
        content = message.get("content")
    else:
        content = obj.get("content")
    if isinstance(content, list):
        return [b for b in content if isinstance(b, dict)]
    return []


def _block_text(block: dict[str, Any]) -> Optional[str]:
    if block.get("type") == "text" and isinstance(block.get("text"), str):
        return block["text"]
    if block.get("type") == "tool_result":
        content = block.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts = [
                c.get("text")
                for c in content
                if isinstance(c, dict) and isinstance(c.get("text"), str)
            ]
            return "\n".join(parts) if parts else None
    return None


def _extract_text(obj: dict[str, Any], blocks: list[dict[str, Any]]) -> Optional[str]:
    parts = [t for t in (_block_text(b) for b in blocks) if t]
    if parts:
        return "\n".join(parts)
    for key in ("result", "message", "content", "error"):
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"]
    return None


def _role_for(event_type: str, blocks: list[dict[str, Any]]) -> EventRole:
    if event_type == "assistant":
        return EventRole.ASSISTANT
    if event_type == "user":
        if any(b.get("type") == "tool_result" for b in blocks):
            return EventRole.TOOL_RESULT
        return EventRole.USER
    return EventRole.SYSTEM


def _number(obj: dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None


def session_id_of(obj: dict[str, Any]) -> Optional[str]:
    """Session id carried by a raw stream object, if any."""
    for key in ("session_id", "sessionId"):
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def event_from_object(
    obj: dict[str, Any],
    *,
    fork_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> NewEvent:
    """Build a NewEvent from one decoded stream object."""
    event_type = obj.get("type") if isinstance(obj.get("type"), str) else "unknown"
    blocks = _content_blocks(obj)

    tool_use_ids = [
        b["id"] for b in blocks if b.get("type") == "tool_use" and isinstance(b.get("id"), str)
    ]
    tool_result_ids = [
        b["tool_use_id"]
        for b in blocks
        if b.get("type") == "tool_result" and isinstance(b.get("tool_use_id"), str)
    ]
    parent = obj.get("parent_tool_use_id")
    source = obj.get("uuid")

    duration = _number(obj, "duration_ms")
    turns = _number(obj, "num_turns")
    return NewEvent(
        fork_id=fork_id,
        session_id=session_id_of(obj) or session_id,
        event_type=event_type,
        role=_role_for(event_type, blocks),
        parent_tool_use_id=parent if isinstance(parent, str) else None,
        tool_use_ids=tool_use_ids,
        tool_result_ids=tool_result_ids,
        payload=obj,
        text=_extract_text(obj, blocks),
        cost_usd=_number(obj, "total_cost_usd", "cost_usd"),
        duration_ms=int(duration) if duration is not None else None,
        turn_count=int(turns) if turns is not None else None,
        source_uuid=source if isinstance(source, str) else None,
    )


def parse_line(
    line: str,
    *,
    fork_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> NewEvent | None:
    """Parse one NDJSON line. Returns None for blank or non-object lines."""
    line = line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON stream line: %.80s", line)
        return None
    if not isinstance(obj, dict):
        return None
    return event_from_object(obj, fork_id=fork_id, session_id=session_id)


def parse_lines(
    lines: Iterable[str],
    *,
    fork_id: Optional[str] = None,
) -> Iterator[NewEvent]:
    """Lazily parse a stream, carrying the session id forward once seen."""
    session_id: Optional[str] = None
    for line in lines:
        event = parse_line(line, fork_id=fork_id, session_id=session_id)
        if event is None:
            continue
        session_id = event.session_id or session_id
        yield event
