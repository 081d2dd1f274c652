"""Learning tools: business memories the agent can record and recall."""

from __future__ import annotations

from typing import Any

from gym_agents.ai.tools.base import Tool, ToolContext
from gym_agents.storage.memory_repo import MemoryRepository

MEMORY_CATEGORIES = ["owner_preference", "member_fact", "pattern", "policy"]


class SaveMemoryTool(Tool):
    group = "learning"

    def __init__(self, memories: MemoryRepository):
        self._memories = memories

    @property
    def name(self) -> str:
        return "save_memory"

    @property
    def description(self) -> str:
        return (
            "Remember a durable fact about this business or one of its members "
            "(owner preferences, member circumstances, recurring patterns)."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "category": {"type": "string", "enum": MEMORY_CATEGORIES},
                "content": {"type": "string", "minLength": 1},
                "member_id": {"type": "string", "description": "Member this fact is about, if any."},
            },
            "required": ["category", "content"],
        }

    def requires_approval(self, tool_input: dict[str, Any], ctx: ToolContext) -> bool:
        return False

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        memory = await self._memories.save(
            account_id=ctx.account_id,
            category=tool_input["category"],
            content=tool_input["content"],
            subject_id=tool_input.get("member_id"),
        )
        return {"memory_id": memory.id, "saved": True}


class ListMemoriesTool(Tool):
    group = "learning"
    read_only = True

    def __init__(self, memories: MemoryRepository):
        self._memories = memories

    @property
    def name(self) -> str:
        return "list_memories"

    @property
    def description(self) -> str:
        return "List remembered facts for this business, optionally only those about one member."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "member_id": {"type": "string"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 100},
            },
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        memories = await self._memories.list_for_account(
            ctx.account_id,
            subject_id=tool_input.get("member_id"),
            limit=tool_input.get("limit", 50),
        )
        return {
            "count": len(memories),
            "memories": [
                {"category": m.category, "content": m.content, "member_id": m.subject_id}
                for m in memories
            ],
        }
