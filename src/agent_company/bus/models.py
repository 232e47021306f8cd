"""Agent message records exchanged over the bus."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from agent_company.storage.common import utc_now_iso

BROADCAST_AGENT_ID = "broadcast"


class AgentMessageType(str, Enum):
    TASK_ASSIGN = "task_assign"
    TASK_COMPLETE = "task_complete"
    TASK_FAILED = "task_failed"
    ESCALATE = "escalate"
    STATUS_REQUEST = "status_request"
    STATUS_RESPONSE = "status_response"
    REVIEW_REQUEST = "review_request"
    REVIEW_RESPONSE = "review_response"
    CONFLICT_ESCALATE = "conflict_escalate"


class MessageBusError(RuntimeError):
    """Invalid message or queue backend failure."""


@dataclass(slots=True, frozen=True)
class AgentMessage:
    """One addressed message between two agents."""

    id: str
    type: AgentMessageType
    from_agent: str
    to_agent: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    @classmethod
    def create(
        cls,
        message_type: AgentMessageType,
        from_agent: str,
        to_agent: str,
        payload: dict[str, Any] | None = None,
    ) -> AgentMessage:
        return cls(
            id=f"msg-{uuid4().hex}",
            type=message_type,
            from_agent=from_agent,
            to_agent=to_agent,
            payload=dict(payload or {}),
            timestamp=utc_now_iso(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "from": self.from_agent,
            "to": self.to_agent,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AgentMessage:
        return cls(
            id=str(raw["id"]),
            type=AgentMessageType(raw["type"]),
            from_agent=str(raw["from"]),
            to_agent=str(raw["to"]),
            payload=dict(raw.get("payload") or {}),
            timestamp=str(raw.get("timestamp", "")),
        )
