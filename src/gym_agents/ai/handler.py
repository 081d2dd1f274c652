"""Inbound handler: routes a message, then starts a session for the owning role."""

from __future__ import annotations

from typing import AsyncIterator, Optional, Sequence

from gym_agents.ai.runtime import SessionConfig
from gym_agents.config import RoutingConfig
from gym_agents.core.events import SessionEvent
from gym_agents.core.router import ChannelRouter, InboundMessage, RouteResult
from gym_agents.core.session import SessionManager
from gym_agents.core.types import CreatedBy, MessageDirection, role_label
from gym_agents.log import get_logger
from gym_agents.storage.conversation_repo import ConversationRepository
from gym_agents.storage.models import ConversationMessage

logger = get_logger(__name__)

HISTORY_EXCERPT_CHARS = 500


def build_inbound_goal(
    route: RouteResult,
    history: Sequence[ConversationMessage],
    total_messages: Optional[int] = None,
) -> str:
    """Goal for the role that owns the conversation.

    history is the recent thread including the new message as its last entry.
    total_messages counts the whole thread; anything older than history is
    marked as omitted.
    """
    conversation, message = route.conversation, route.message
    parts = [
        "## Inbound Message",
        f"A {message.channel} message just arrived that needs your attention.",
        "",
        f"**Contact:** {conversation.contact_name or 'Unknown'}",
    ]
    if conversation.contact_email:
        parts.append(f"**Email:** {conversation.contact_email}")
    if conversation.contact_phone:
        parts.append(f"**Phone:** {conversation.contact_phone}")
    parts.append(f"**Channel:** {message.channel}")
    parts.append(f"**Contact ID:** {conversation.contact_id}")
    parts.append(f"**Conversation ID:** {conversation.id}")
    parts.append("")

    parts.append("## New Message")
    parts.append(f"> {message.content}")
    parts.append("")

    prior = [m for m in history if m.id != message.id]
    omitted = max((total_messages or 0) - len(history), 0)
    if prior or omitted:
        parts.append(f"## Conversation History ({len(prior) + omitted} prior messages)")
        if omitted:
            parts.append(
                f"_[{omitted} earlier messages omitted; use `get_conversation_history` to read them]_"
            )
        for m in prior:
            if m.direction == MessageDirection.INBOUND:
                arrow, label = "←", m.sender or "Contact"
            else:
                arrow, label = "→", role_label(m.sender) if m.sender else "You"
            parts.append(f"{arrow} **{label}** ({m.channel}): {m.content[:HISTORY_EXCERPT_CHARS]}")
        parts.append("")

    parts.append("## Your Task")
    parts.append("1. Use `get_member_detail` to look up this contact's profile, attendance, and account status.")
    parts.append("2. Consider the conversation history and the new message.")
    parts.append("3. Decide on the best response: helpful, warm, and concise.")
    parts.append(f'4. Use `send_reply` with conversation_id="{conversation.id}" to send your response.')
    parts.append(
        "5. If this needs a manager (billing dispute, cancellation request, complaint), "
        "use `handoff_conversation` instead."
    )
    return "\n".join(parts)


class InboundHandler:
    """Handles the full flow: message -> conversation -> role session -> events."""

    def __init__(
        self,
        router: ChannelRouter,
        manager: SessionManager,
        conversations: ConversationRepository,
        config: RoutingConfig,
    ):
        self._router = router
        self._manager = manager
        self._conversations = conversations
        self._config = config

    async def handle(self, inbound: InboundMessage) -> AsyncIterator[SessionEvent]:
        """Route the message and yield the owning role's session events."""
        route = await self._router.route_inbound(inbound)
        async for event in self._run(route, inbound):
            yield event

    async def handle_in_background(self, inbound: InboundMessage) -> str:
        """Route the message and run the session without a listener. Returns the session id."""
        route = await self._router.route_inbound(inbound)
        return self._manager.launch(await self._session_config(route, inbound))

    async def _run(self, route: RouteResult, inbound: InboundMessage) -> AsyncIterator[SessionEvent]:
        config = await self._session_config(route, inbound)
        async for event in self._manager.stream(config):
            yield event

    async def _session_config(self, route: RouteResult, inbound: InboundMessage) -> SessionConfig:
        history = await self._conversations.list_messages(
            route.conversation.id, limit=self._config.history_limit
        )
        total = await self._conversations.count_messages(route.conversation.id)
        goal = build_inbound_goal(route, history, total)
        logger.info(
            "inbound_session_requested",
            conversation_id=route.conversation.id,
            role=route.assigned_role,
            is_new=route.is_new,
            history=len(history),
            total_messages=total,
        )
        return self._manager.session_config(
            account_id=inbound.account_id,
            role=route.assigned_role,
            goal=goal,
            created_by=CreatedBy.EVENT,
            conversation_id=route.conversation.id,
        )
