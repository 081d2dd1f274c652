"""Exception hierarchy.

Infrastructure errors (model, store) are fatal to a session once retries are
exhausted. Policy and delivery errors are converted into tool results so the
agent can correct itself.
"""

from __future__ import annotations


class GymAgentsError(Exception):
    """Base class for all project errors."""


class ModelCallError(GymAgentsError):
    """The language model provider failed or timed out."""


class StoreError(GymAgentsError):
    """A durable store write could not be completed."""


class ToolPolicyError(GymAgentsError):
    """A tool call was refused before dispatch (not allowed or malformed)."""


class DeliveryError(GymAgentsError):
    """An outbound side-effect provider failed or timed out."""


class ConversationNotFoundError(GymAgentsError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class SessionNotFoundError(GymAgentsError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ApprovalNotFoundError(GymAgentsError):
    def __init__(self, approval_id: str):
        super().__init__(f"Pending approval {approval_id} not found")
        self.approval_id = approval_id


class InvalidTransitionError(GymAgentsError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid session transition {current} -> {target}")
        self.current = current
        self.target = target
