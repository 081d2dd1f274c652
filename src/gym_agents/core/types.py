"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class SessionStatus(StrEnum):
    CREATED = "created"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    BUDGET_EXCEEDED = "budget_exceeded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.BUDGET_EXCEEDED,
        SessionStatus.CANCELLED,
    }
)

# Allowed state machine edges. awaiting_approval is a stopping point for the
# runtime; resumption happens in a continuation session.
SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.CREATED: frozenset({SessionStatus.RUNNING, SessionStatus.FAILED, SessionStatus.CANCELLED}),
    SessionStatus.RUNNING: frozenset(
        {
            SessionStatus.AWAITING_APPROVAL,
            SessionStatus.COMPLETED,
            SessionStatus.FAILED,
            SessionStatus.BUDGET_EXCEEDED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.AWAITING_APPROVAL: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
}


class AutonomyMode(StrEnum):
    FULL_AUTO = "full_auto"
    SEMI_AUTO = "semi_auto"
    DRAFT_ONLY = "draft_only"


class ApprovalDecision(StrEnum):
    AUTO_EXECUTE = "auto_execute"
    REQUIRE_APPROVAL = "require_approval"
    REJECT = "reject"


class ApprovalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ConversationStatus(StrEnum):
    OPEN = "open"
    WAITING_MEMBER = "waiting_member"
    WAITING_AGENT = "waiting_agent"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


OPEN_CONVERSATION_STATUSES = (
    ConversationStatus.OPEN,
    ConversationStatus.WAITING_MEMBER,
    ConversationStatus.WAITING_AGENT,
)


class MessageDirection(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CreatedBy(StrEnum):
    COMMAND = "command"
    EVENT = "event"
    SCHEDULE = "schedule"
    APPROVAL = "approval"


def role_label(role: str) -> str:
    """Format a role slug into a readable label ('front_desk' -> 'Front Desk')."""
    return " ".join(w[:1].upper() + w[1:] for w in role.replace("-", "_").split("_") if w)
