"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from gym_agents.core.types import (
    ApprovalStatus,
    AutonomyMode,
    ConversationStatus,
    CreatedBy,
    MessageDirection,
    SessionStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "input": self.input}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(id=data["id"], name=data["name"], input=dict(data.get("input") or {}))


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one tool call. status is "ok", "error" or "pending"."""

    tool_call_id: str
    name: str
    output: Any = None
    error: Optional[str] = None
    status: str = "ok"

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @classmethod
    def ok(cls, call: ToolCall, output: Any) -> ToolResult:
        return cls(tool_call_id=call.id, name=call.name, output=output)

    @classmethod
    def failure(cls, call: ToolCall, error: str) -> ToolResult:
        return cls(tool_call_id=call.id, name=call.name, error=error, status="error")

    @classmethod
    def pending(cls, call: ToolCall) -> ToolResult:
        return cls(tool_call_id=call.id, name=call.name, status="pending")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolResult:
        return cls(
            tool_call_id=data["tool_call_id"],
            name=data["name"],
            output=data.get("output"),
            error=data.get("error"),
            status=data.get("status", "ok"),
        )


@dataclass
class TurnRecord:
    """One model call plus the tool calls and results it triggered."""

    session_id: str
    turn_index: int
    response_blocks: list[dict[str, Any]]
    stop_reason: str = ""
    results: list[ToolResult] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: float = 0.0
    created_at: datetime = field(default_factory=utcnow)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [
            ToolCall(id=b["id"], name=b["name"], input=dict(b.get("input") or {}))
            for b in self.response_blocks
            if b.get("type") == "tool_use"
        ]

    @property
    def text(self) -> str:
        return "\n".join(b["text"] for b in self.response_blocks if b.get("type") == "text")

    def to_dict(self) -> dict[str, Any]:
        return {
            "turn_index": self.turn_index,
            "response_blocks": self.response_blocks,
            "stop_reason": self.stop_reason,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, session_id: str, data: dict[str, Any]) -> TurnRecord:
        return cls(
            session_id=session_id,
            turn_index=data["turn_index"],
            response_blocks=list(data.get("response_blocks") or []),
            stop_reason=data.get("stop_reason", ""),
            results=[ToolResult.from_dict(r) for r in data.get("results") or []],
        )


@dataclass
class SessionRecord:
    id: str
    account_id: str
    role: str
    goal: str
    created_by: CreatedBy
    autonomy_mode: AutonomyMode
    tool_groups: list[str]
    max_turns: int
    budget_cents: float
    timeout_seconds: float
    status: SessionStatus = SessionStatus.CREATED
    turns_used: int = 0
    cost_cents: float = 0.0
    system_prompt: str = ""
    conversation_id: Optional[str] = None
    parent_session_id: Optional[str] = None
    context_turns: list[TurnRecord] = field(default_factory=list)
    cancel_requested: bool = False
    summary: Optional[str] = None
    error: Optional[str] = None
    annotations: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Conversation:
    id: str
    account_id: str
    contact_id: str
    channel: str
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    status: ConversationStatus = ConversationStatus.OPEN
    assigned_role: str = "front_desk"
    session_id: Optional[str] = None
    subject: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    conversation_id: str
    direction: MessageDirection
    channel: str
    content: str
    sender: Optional[str] = None
    external_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PendingApproval:
    id: str
    session_id: str
    account_id: str
    tool_call: ToolCall
    status: ApprovalStatus = ApprovalStatus.PENDING
    note: Optional[str] = None
    continuation_session_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None


@dataclass
class Memory:
    id: str
    account_id: str
    category: str
    content: str
    subject_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class OwnerTask:
    id: str
    account_id: str
    session_id: Optional[str]
    title: str
    detail: str
    status: str = "open"
    created_at: datetime = field(default_factory=utcnow)
