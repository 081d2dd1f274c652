"""Tool registry: the closed catalog of tools and the only path to executing them."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Iterable, Optional

from jsonschema.exceptions import best_match
from jsonschema.protocols import Validator
from jsonschema.validators import validator_for

from gym_agents.ai.tools.base import Tool, ToolContext
from gym_agents.log import get_logger
from gym_agents.storage.models import ToolCall, ToolResult

if TYPE_CHECKING:
    from gym_agents.ai.tools.services import ToolServices

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools, keyed by unique name and grouped."""

    def __init__(self, tool_timeout: float = 30.0):
        self._tools: dict[str, Tool] = {}
        self._validators: dict[str, Validator] = {}
        self._tool_timeout = tool_timeout

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        validator_cls = validator_for(tool.input_schema)
        validator_cls.check_schema(tool.input_schema)
        self._tools[tool.name] = tool
        self._validators[tool.name] = validator_cls(tool.input_schema)
        logger.debug("tool_registered", tool_name=tool.name, group=tool.group)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def group_names(self) -> list[str]:
        return sorted({t.group for t in self._tools.values()})

    def tools_for_groups(self, groups: Iterable[str]) -> list[Tool]:
        """Tools in the given groups, in registration order."""
        wanted = set(groups)
        return [t for t in self._tools.values() if t.group in wanted]

    def check_call(self, call: ToolCall, ctx: ToolContext) -> Optional[str]:
        """Policy check before dispatch. Returns an error message, or None if the call may proceed."""
        tool = self._tools.get(call.name)
        if tool is None:
            return f"Unknown tool '{call.name}'"
        if tool.group not in ctx.allowed_groups:
            return f"Tool '{call.name}' is not available to the {ctx.role} role"
        if not isinstance(call.input, dict):
            return f"Invalid input for {call.name}: expected an object"
        error = best_match(self._validators[call.name].iter_errors(call.input))
        if error is not None:
            path = "/".join(str(p) for p in error.absolute_path)
            where = f" at '{path}'" if path else ""
            return f"Invalid input for {call.name}{where}: {error.message}"
        return None

    async def execute(self, call: ToolCall, ctx: ToolContext) -> ToolResult:
        """Validate and run one call. Tool failures come back as error results, never raised."""
        policy_error = self.check_call(call, ctx)
        if policy_error:
            logger.info("tool_call_refused", tool=call.name, session_id=ctx.session_id, error=policy_error)
            return ToolResult.failure(call, policy_error)

        tool = self._tools[call.name]
        try:
            payload = await asyncio.wait_for(tool.execute(call.input, ctx), timeout=self._tool_timeout)
        except asyncio.TimeoutError:
            logger.warning("tool_timeout", tool=call.name, session_id=ctx.session_id)
            return ToolResult.failure(call, f"{call.name} timed out after {self._tool_timeout:g} seconds")
        except Exception as e:
            logger.error("tool_execution_error", tool=call.name, session_id=ctx.session_id, error=str(e))
            return ToolResult.failure(call, f"Error executing {call.name}: {e}")

        if isinstance(payload, dict) and payload.get("error"):
            return ToolResult.failure(call, str(payload["error"]))
        return ToolResult.ok(call, payload)

    def discover_and_register(self, services: ToolServices) -> None:
        """Import and register all built-in tools."""
        from gym_agents.ai.tools.action import RequestInputTool, SendEmailTool
        from gym_agents.ai.tools.conversation import (
            GetConversationHistoryTool,
            HandoffConversationTool,
            SendReplyTool,
        )
        from gym_agents.ai.tools.data import GetMemberDetailTool, SearchMembersTool
        from gym_agents.ai.tools.learning import ListMemoriesTool, SaveMemoryTool

        self.register(GetMemberDetailTool(services.members))
        self.register(SearchMembersTool(services.members))
        self.register(GetConversationHistoryTool(services.conversations))
        self.register(SendReplyTool(services.conversations, services.delivery))
        self.register(HandoffConversationTool(services.conversations, services.handoff_starter))
        self.register(SendEmailTool(services.members, services.delivery))
        self.register(RequestInputTool(services.tasks))
        self.register(SaveMemoryTool(services.memories))
        self.register(ListMemoriesTool(services.memories))
        logger.info("tools_registered", count=len(self._tools), groups=self.group_names())
