"""Action tools: outreach to members and requests for owner input."""

from __future__ import annotations

from typing import Any, Optional

from gym_agents.ai.tools.base import Tool, ToolContext, model_confidence
from gym_agents.ai.tools.conversation import CONFIDENCE_PROPERTY
from gym_agents.errors import DeliveryError
from gym_agents.services.delivery import DeliveryService, OutboundMessage
from gym_agents.services.members import MemberDirectory
from gym_agents.storage.outbound_repo import TaskRepository


class SendEmailTool(Tool):
    group = "action"

    def __init__(self, directory: MemberDirectory, delivery: DeliveryService):
        self._directory = directory
        self._delivery = delivery

    @property
    def name(self) -> str:
        return "send_email"

    @property
    def description(self) -> str:
        return (
            "Send a new outreach email to a member who has no open conversation "
            "(e.g. a win-back or check-in). For replies in an existing thread use send_reply."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "member_id": {"type": "string", "description": "Member to email."},
                "subject": {"type": "string", "minLength": 1},
                "body": {"type": "string", "minLength": 1, "description": "Plain text email body."},
                "confidence": CONFIDENCE_PROPERTY,
            },
            "required": ["member_id", "subject", "body"],
        }

    def confidence(self, tool_input: dict[str, Any], ctx: ToolContext) -> Optional[float]:
        return model_confidence(tool_input)

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        member = await self._directory.get_member(ctx.account_id, tool_input["member_id"])
        if member is None:
            return {"error": f"Member {tool_input['member_id']} not found"}
        try:
            receipt = await self._delivery.send(
                OutboundMessage(
                    account_id=ctx.account_id,
                    channel="email",
                    recipient=member.get("email") or "",
                    body=tool_input["body"],
                    recipient_name=member.get("name"),
                    subject=tool_input["subject"],
                    session_id=ctx.session_id,
                )
            )
        except DeliveryError as e:
            return {"error": str(e)}
        return {"status": receipt.status, "message_id": receipt.external_id, "member_id": member["id"]}


class RequestInputTool(Tool):
    group = "action"

    def __init__(self, tasks: TaskRepository):
        self._tasks = tasks

    @property
    def name(self) -> str:
        return "request_input"

    @property
    def description(self) -> str:
        return "Brief the business owner and ask for a decision or information you cannot get yourself."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "title": {"type": "string", "minLength": 1, "description": "One-line summary."},
                "detail": {"type": "string", "minLength": 1, "description": "What you need and why."},
            },
            "required": ["title", "detail"],
        }

    def requires_approval(self, tool_input: dict[str, Any], ctx: ToolContext) -> bool:
        return False

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        task = await self._tasks.create(
            account_id=ctx.account_id,
            title=tool_input["title"],
            detail=tool_input["detail"],
            session_id=ctx.session_id,
        )
        return {"task_id": task.id, "status": task.status}
