"""Channel router: resolves inbound messages to a conversation and its owning role.

The router never starts sessions. Callers decide what to do with the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from gym_agents.config import RoutingConfig
from gym_agents.core.types import MessageDirection
from gym_agents.errors import ConversationNotFoundError
from gym_agents.log import get_logger
from gym_agents.storage.conversation_repo import ConversationRepository
from gym_agents.storage.models import Conversation, ConversationMessage

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class InboundMessage:
    account_id: str
    channel: str  # email, sms, whatsapp, chat, ...
    content: str
    contact_id: str
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    external_id: Optional[str] = None  # provider message id
    subject: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sender(self) -> str:
        return self.contact_name or self.contact_email or self.contact_phone or "unknown"


@dataclass(frozen=True, slots=True)
class RouteResult:
    conversation: Conversation
    message: ConversationMessage
    is_new: bool
    assigned_role: str


class ChannelRouter:
    def __init__(self, conversations: ConversationRepository, config: RoutingConfig):
        self._conversations = conversations
        self._config = config

    def resolve_role(self, channel: str) -> str:
        return self._config.channel_roles.get(channel, self._config.default_role)

    async def route_inbound(self, inbound: InboundMessage) -> RouteResult:
        """Attach an inbound message to the contact's open conversation, creating one if needed."""
        conversation = await self._conversations.find_open(
            inbound.account_id, inbound.contact_id, inbound.channel
        )
        is_new = conversation is None
        if conversation is None:
            conversation = await self._conversations.create(
                account_id=inbound.account_id,
                contact_id=inbound.contact_id,
                channel=inbound.channel,
                assigned_role=self.resolve_role(inbound.channel),
                contact_name=inbound.contact_name,
                contact_email=inbound.contact_email,
                contact_phone=inbound.contact_phone,
                subject=inbound.subject,
            )

        message = await self._append(conversation, inbound)
        logger.info(
            "inbound_routed",
            conversation_id=conversation.id,
            channel=inbound.channel,
            is_new=is_new,
            assigned_role=conversation.assigned_role,
        )
        return RouteResult(
            conversation=conversation,
            message=message,
            is_new=is_new,
            assigned_role=conversation.assigned_role,
        )

    async def route_to_conversation(self, conversation_id: str, inbound: InboundMessage) -> RouteResult:
        """Append to a known thread, e.g. a reply carrying a conversation reference."""
        conversation = await self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        message = await self._append(conversation, inbound)
        return RouteResult(
            conversation=conversation,
            message=message,
            is_new=False,
            assigned_role=conversation.assigned_role,
        )

    async def _append(self, conversation: Conversation, inbound: InboundMessage) -> ConversationMessage:
        return await self._conversations.add_message(
            conversation_id=conversation.id,
            direction=MessageDirection.INBOUND,
            channel=inbound.channel,
            content=inbound.content,
            sender=inbound.sender,
            external_id=inbound.external_id,
            metadata=inbound.metadata,
        )
