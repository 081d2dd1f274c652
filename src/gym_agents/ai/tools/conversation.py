"""Conversation tools: read a thread, reply on it, or hand it to another role.

send_reply records the outbound message on the thread after the delivery
provider confirms it, so the thread only shows what was actually dispatched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from gym_agents.ai.tools.base import Tool, ToolContext, model_confidence
from gym_agents.core.types import ConversationStatus, CreatedBy, MessageDirection
from gym_agents.errors import ConversationNotFoundError, DeliveryError
from gym_agents.log import get_logger
from gym_agents.services.delivery import DeliveryService, OutboundMessage
from gym_agents.storage.conversation_repo import ConversationRepository
from gym_agents.storage.models import Conversation

if TYPE_CHECKING:
    from gym_agents.ai.handoff import HandoffService

logger = get_logger(__name__)

CONFIDENCE_PROPERTY = {
    "type": "number",
    "minimum": 0,
    "maximum": 1,
    "description": "Your confidence (0-1) that this is the right action without owner review.",
}


async def _load_owned(
    repo: ConversationRepository, conversation_id: str, ctx: ToolContext
) -> Conversation | dict[str, Any]:
    conversation = await repo.get(conversation_id)
    if conversation is None or conversation.account_id != ctx.account_id:
        return {"error": f"Conversation {conversation_id} not found"}
    return conversation


class GetConversationHistoryTool(Tool):
    group = "conversation"
    read_only = True

    def __init__(self, conversations: ConversationRepository):
        self._conversations = conversations

    @property
    def name(self) -> str:
        return "get_conversation_history"

    @property
    def description(self) -> str:
        return (
            "Load the message history for a conversation. Returns messages in chronological "
            "order with direction (inbound/outbound), sender, and channel."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "conversation_id": {"type": "string", "description": "Conversation ID to load history for."},
                "limit": {"type": "integer", "minimum": 1, "description": "Max messages to return (default 50)."},
            },
            "required": ["conversation_id"],
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        loaded = await _load_owned(self._conversations, tool_input["conversation_id"], ctx)
        if isinstance(loaded, dict):
            return loaded
        messages = await self._conversations.list_messages(loaded.id, limit=tool_input.get("limit", 50))
        return {
            "count": len(messages),
            "messages": [
                {
                    "direction": m.direction.value,
                    "channel": m.channel,
                    "sender": m.sender,
                    "content": m.content,
                    "timestamp": m.created_at.isoformat(),
                }
                for m in messages
            ],
        }


class SendReplyTool(Tool):
    group = "conversation"

    def __init__(self, conversations: ConversationRepository, delivery: DeliveryService):
        self._conversations = conversations
        self._delivery = delivery

    @property
    def name(self) -> str:
        return "send_reply"

    @property
    def description(self) -> str:
        return (
            "Send a reply in a conversation. Handles channel routing (email, SMS), safety checks "
            "(opt-out, daily send limit), and records the message in the conversation thread."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "conversation_id": {"type": "string", "description": "Conversation to reply in."},
                "content": {"type": "string", "minLength": 1, "description": "Reply text. Warm and personal."},
                "subject": {"type": "string", "description": "Email subject. Omit to reuse the thread subject."},
                "channel_override": {
                    "type": "string",
                    "enum": ["email", "sms"],
                    "description": "Override channel. Defaults to the conversation's primary channel.",
                },
                "confidence": CONFIDENCE_PROPERTY,
            },
            "required": ["conversation_id", "content"],
        }

    def confidence(self, tool_input: dict[str, Any], ctx: ToolContext) -> Optional[float]:
        return model_confidence(tool_input)

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        loaded = await _load_owned(self._conversations, tool_input["conversation_id"], ctx)
        if isinstance(loaded, dict):
            return loaded
        conversation = loaded
        if conversation.assigned_role != ctx.role:
            return {
                "error": (
                    f"Conversation is now handled by {conversation.assigned_role}; "
                    f"the {ctx.role} role can no longer reply on it."
                )
            }

        channel = tool_input.get("channel_override") or conversation.channel
        recipient = conversation.contact_email if channel == "email" else conversation.contact_phone
        subject = tool_input.get("subject") or conversation.subject or "Re: Your message"
        try:
            receipt = await self._delivery.send(
                OutboundMessage(
                    account_id=ctx.account_id,
                    channel=channel,
                    recipient=recipient or "",
                    body=tool_input["content"],
                    recipient_name=conversation.contact_name,
                    subject=subject if channel == "email" else None,
                    session_id=ctx.session_id,
                    conversation_id=conversation.id,
                )
            )
        except DeliveryError as e:
            return {"error": str(e)}

        await self._conversations.add_message(
            conversation_id=conversation.id,
            direction=MessageDirection.OUTBOUND,
            channel=channel,
            content=tool_input["content"],
            sender=ctx.role,
            external_id=receipt.external_id,
        )
        if conversation.status in (ConversationStatus.OPEN, ConversationStatus.WAITING_AGENT):
            await self._conversations.update_status(conversation.id, ConversationStatus.WAITING_MEMBER)

        return {
            "status": receipt.status,
            "message_id": receipt.external_id,
            "channel": channel,
            "conversation_id": conversation.id,
        }


class HandoffConversationTool(Tool):
    group = "conversation"

    def __init__(self, conversations: ConversationRepository, handoff: HandoffService):
        self._conversations = conversations
        self._handoff = handoff

    @property
    def name(self) -> str:
        return "handoff_conversation"

    @property
    def description(self) -> str:
        return (
            "Hand a conversation to another role (default: gm). Use this when the situation is "
            "beyond your authority: cancellation requests, refund disputes, complaints about staff, "
            "legal mentions, or anything you are unsure about. The new role picks up the "
            "conversation with full history. After handing off, stop working on this conversation."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "conversation_id": {"type": "string", "description": "Conversation to hand off."},
                "target_role": {"type": "string", "description": "Role to hand off to (default gm)."},
                "reason": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Why you are handing off: what triggered it and relevant context.",
                },
                "context": {"type": "string", "description": "Optional extra notes for the next role."},
            },
            "required": ["conversation_id", "reason"],
        }

    def requires_approval(self, tool_input: dict[str, Any], ctx: ToolContext) -> bool:
        return False

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        loaded = await _load_owned(self._conversations, tool_input["conversation_id"], ctx)
        if isinstance(loaded, dict):
            return loaded
        target_role = tool_input.get("target_role") or "gm"
        if target_role == loaded.assigned_role:
            return {"error": f"Conversation is already assigned to {target_role}"}
        try:
            session_id = await self._handoff.launch(
                conversation_id=loaded.id,
                target_role=target_role,
                reason=tool_input["reason"],
                context=tool_input.get("context"),
                created_by=CreatedBy.EVENT,
            )
        except ConversationNotFoundError as e:
            return {"error": str(e)}
        except Exception as e:
            logger.error("handoff_launch_failed", conversation_id=loaded.id, error=str(e))
            return {"error": f"Failed to hand off: {e}"}

        return {
            "handed_off": True,
            "conversation_id": loaded.id,
            "previous_role": loaded.assigned_role,
            "new_role": target_role,
            "reason": tool_input["reason"],
            "session_id": session_id,
        }
