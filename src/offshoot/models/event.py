"""Event domain models.

NewEvent is what producers hand to the event store.
EventInfo is the read-side model returned by queries.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class EventRole(str, enum.Enum):
    """Who produced an event."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL_RESULT = "tool-result"

    def __str__(self) -> str:
        return self.value


class EdgeType(str, enum.Enum):
    """Kinds of causal edges between events. Edges always point child -> parent."""

    CHILD_OF = "CHILD_OF"
    RESPONDS_TO = "RESPONDS_TO"

    def __str__(self) -> str:
        return self.value


class NewEvent(BaseModel):
    """An event as emitted by a worker, before it is stored.

    ``event_id`` is optional: producers that stamp events at emission time
    pass it so that delayed delivery keeps emission order. Otherwise the
    store assigns one on append.
    ``source_uuid`` is the producer's own message id, when it has one; a
    second event with the same ``source_uuid`` in the same fork is a replay.
    """

    event_id: Optional[str] = None
    fork_id: Optional[str] = None
    session_id: Optional[str] = None
    event_type: str = "unknown"
    role: EventRole = EventRole.SYSTEM
    parent_tool_use_id: Optional[str] = None
    tool_use_ids: list[str] = Field(default_factory=list)
    tool_result_ids: list[str] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    text: Optional[str] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[int] = None
    turn_count: Optional[int] = None
    source_uuid: Optional[str] = None

    @field_validator("parent_tool_use_id", "source_uuid", mode="before")
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("tool_use_ids", "tool_result_ids", mode="before")
    @classmethod
    def _drop_blank_ids(cls, v: object) -> object:
        if v is None:
            return []
        if isinstance(v, (list, tuple)):
            seen: list[str] = []
            for item in v:
                if isinstance(item, str) and item.strip() and item not in seen:
                    seen.append(item)
            return seen
        return v


class EventInfo(BaseModel):
    """A stored event. Immutable once written."""

    model_config = {"from_attributes": True}

    event_id: str
    fork_id: Optional[str] = None
    session_id: Optional[str] = None
    event_type: str
    role: EventRole
    parent_tool_use_id: Optional[str] = None
    tool_use_ids: list[str] = Field(default_factory=list)
    tool_result_ids: list[str] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    text: Optional[str] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[int] = None
    turn_count: Optional[int] = None
    source_uuid: Optional[str] = None
    created_at: datetime

    @field_validator("tool_use_ids", "tool_result_ids", "payload", mode="before")
    @classmethod
    def _null_to_empty(cls, v: object, info: ValidationInfo) -> object:
        if v is None:
            return {} if info.field_name == "payload" else []
        return v

    def __str__(self) -> str:
        snippet = (self.text or "").replace("\n", " ")
        if len(snippet) > 60:
            snippet = snippet[:57] + "..."
        return f"{self.event_id[:13]} [{self.role.value}] {snippet}"


class EdgeInfo(BaseModel):
    """A resolved causal edge."""

    model_config = {"from_attributes": True}

    child_event_id: str
    parent_event_id: str
    edge_type: EdgeType
    tool_use_id: str


class PendingEdgeInfo(BaseModel):
    """An edge whose parent event has not been seen yet."""

    model_config = {"from_attributes": True}

    child_event_id: str
    tool_use_id: str
    edge_type: EdgeType
    fork_id: Optional[str] = None
    created_at: datetime
