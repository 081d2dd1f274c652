"""Data access tools: read-only lookups against the member directory."""

from __future__ import annotations

from typing import Any

from gym_agents.ai.tools.base import Tool, ToolContext
from gym_agents.services.members import MemberDirectory


class GetMemberDetailTool(Tool):
    group = "data"
    read_only = True

    def __init__(self, directory: MemberDirectory):
        self._directory = directory

    @property
    def name(self) -> str:
        return "get_member_detail"

    @property
    def description(self) -> str:
        return (
            "Look up one member's profile: contact details, membership status and type, "
            "attendance, payment history, and renewal date."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "member_id": {"type": "string", "description": "Member or lead ID"},
            },
            "required": ["member_id"],
            "additionalProperties": False,
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        member = await self._directory.get_member(ctx.account_id, tool_input["member_id"])
        if member is None:
            return {"error": f"Member {tool_input['member_id']} not found"}
        return {"member": member}


class SearchMembersTool(Tool):
    group = "data"
    read_only = True

    def __init__(self, directory: MemberDirectory):
        self._directory = directory

    @property
    def name(self) -> str:
        return "search_members"

    @property
    def description(self) -> str:
        return "Search members by name, email, phone, or status. Returns up to `limit` matches."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "minLength": 1, "description": "Search text"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 50, "description": "Max results (default 10)"},
            },
            "required": ["query"],
            "additionalProperties": False,
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        matches = await self._directory.search(
            ctx.account_id, tool_input["query"], limit=tool_input.get("limit", 10)
        )
        return {"count": len(matches), "members": matches}
