"""Conversation handoff between roles (front desk to GM, GM to another role, ...).

A handoff reassigns the conversation, which detaches whichever session was
linked, then starts a session for the target role whose goal carries the
reason, the contact's identity and the conversation transcript.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional, Sequence

from gym_agents.ai.runtime import SessionConfig
from gym_agents.config import HandoffConfig
from gym_agents.core.events import ErrorEvent, SessionEvent
from gym_agents.core.session import SessionManager
from gym_agents.core.types import ConversationStatus, CreatedBy, MessageDirection, role_label
from gym_agents.errors import ConversationNotFoundError
from gym_agents.log import get_logger
from gym_agents.storage.conversation_repo import ConversationRepository
from gym_agents.storage.models import Conversation, ConversationMessage

logger = get_logger(__name__)

MESSAGE_EXCERPT_CHARS = 500


def _format_message(message: ConversationMessage, previous_role: str) -> str:
    if message.direction == MessageDirection.INBOUND:
        arrow, label = "←", message.sender or "Contact"
    else:
        arrow, label = "→", role_label(message.sender or previous_role)
    return f"{arrow} **{label}** ({message.channel}): {message.content[:MESSAGE_EXCERPT_CHARS]}"


def _summarize_older(older: Sequence[ConversationMessage]) -> list[str]:
    inbound = sum(1 for m in older if m.direction == MessageDirection.INBOUND)
    lines = [
        f"_[{len(older)} earlier messages truncated]_",
        f"Earlier summary: {inbound} from the contact and {len(older) - inbound} from the team, "
        f"between {older[0].created_at:%Y-%m-%d %H:%M} and {older[-1].created_at:%Y-%m-%d %H:%M} UTC.",
    ]
    first_inbound = next((m for m in older if m.direction == MessageDirection.INBOUND), None)
    if first_inbound is not None:
        lines.append(f"The thread opened with: {first_inbound.content[:200]}")
    return lines


def build_handoff_goal(
    conversation: Conversation,
    messages: Sequence[ConversationMessage],
    previous_role: str,
    reason: str,
    context: Optional[str] = None,
    history_limit: int = 50,
) -> str:
    """Goal text for the receiving role.

    Only the most recent history_limit messages are quoted; older ones are
    replaced by a marked summary.
    """
    from_label = role_label(previous_role)
    parts = [
        f"## Handoff from {from_label}",
        f"{from_label} has handed this conversation to you. This needs your attention.",
        "",
        f"**Handoff Reason:** {reason}",
    ]
    if context:
        parts.append(f"**Additional Context:** {context}")
    parts.append("")

    parts.append(f"**Contact:** {conversation.contact_name or 'Unknown'}")
    if conversation.contact_email:
        parts.append(f"**Email:** {conversation.contact_email}")
    if conversation.contact_phone:
        parts.append(f"**Phone:** {conversation.contact_phone}")
    parts.append(f"**Channel:** {conversation.channel}")
    parts.append(f"**Contact ID:** {conversation.contact_id}")
    parts.append(f"**Conversation ID:** {conversation.id}")
    parts.append("")

    if messages:
        shown = list(messages[-history_limit:]) if history_limit > 0 else []
        older = list(messages[: len(messages) - len(shown)])
        parts.append(f"## Full Conversation History ({len(messages)} messages)")
        if older:
            parts.extend(_summarize_older(older))
            parts.append(f"Most recent {len(shown)} messages:")
        parts.extend(_format_message(m, previous_role) for m in shown)
        parts.append("")
    else:
        parts.append("## Full Conversation History (0 messages)")
        parts.append("")

    parts.append("## Your Task")
    parts.append("1. Use `get_conversation_history` to review the full thread if needed.")
    parts.append("2. Use `get_member_detail` to pull this contact's profile, attendance, payments, and account status.")
    parts.append("3. Evaluate the situation with the handoff reason in mind.")
    parts.append("4. Respond directly, offer a resolution, or hand off further.")
    parts.append(f'5. Use `send_reply` with conversation_id="{conversation.id}" to communicate with the contact.')
    parts.append("6. Use `request_input` to brief the owner when a decision is theirs.")
    return "\n".join(parts)


class HandoffService:
    def __init__(
        self,
        manager: SessionManager,
        conversations: ConversationRepository,
        config: HandoffConfig,
    ):
        self._manager = manager
        self._conversations = conversations
        self._config = config

    async def _prepare(
        self,
        conversation_id: str,
        target_role: str,
        reason: str,
        context: Optional[str],
        created_by: CreatedBy,
    ) -> Optional[SessionConfig]:
        conversation = await self._conversations.get(conversation_id)
        if conversation is None:
            return None
        previous_role = conversation.assigned_role
        await self._conversations.reassign(conversation_id, target_role, ConversationStatus.ESCALATED)
        messages = await self._conversations.list_messages(conversation_id)
        goal = build_handoff_goal(
            conversation, messages, previous_role, reason, context, self._config.history_limit
        )
        logger.info(
            "conversation_handoff",
            conversation_id=conversation_id,
            previous_role=previous_role,
            target_role=target_role,
            message_count=len(messages),
        )
        return self._manager.session_config(
            account_id=conversation.account_id,
            role=target_role,
            goal=goal,
            created_by=created_by,
            tool_groups=list(self._config.tool_groups),
            autonomy_mode=self._config.autonomy_mode,
            max_turns=self._config.max_turns,
            budget_cents=self._config.budget_cents,
            conversation_id=conversation_id,
        )

    async def handoff(
        self,
        conversation_id: str,
        target_role: str,
        reason: str,
        context: Optional[str] = None,
        created_by: CreatedBy = CreatedBy.EVENT,
    ) -> AsyncIterator[SessionEvent]:
        """Reassign the conversation and yield the new session's events."""
        config = await self._prepare(conversation_id, target_role, reason, context, created_by)
        if config is None:
            yield ErrorEvent(message=f"Conversation {conversation_id} not found")
            return
        async for event in self._manager.stream(config):
            yield event

    async def escalate_to_manager(
        self, conversation_id: str, reason: str, context: Optional[str] = None
    ) -> AsyncIterator[SessionEvent]:
        async for event in self.handoff(conversation_id, "gm", reason, context):
            yield event

    async def launch(
        self,
        conversation_id: str,
        target_role: str,
        reason: str,
        context: Optional[str] = None,
        created_by: CreatedBy = CreatedBy.EVENT,
    ) -> str:
        """Reassign now and run the receiving session in the background. Returns its id."""
        config = await self._prepare(conversation_id, target_role, reason, context, created_by)
        if config is None:
            raise ConversationNotFoundError(conversation_id)
        return self._manager.launch(config)
