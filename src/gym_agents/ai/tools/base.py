"""Abstract tool interface for agent tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from gym_agents.core.types import AutonomyMode


@dataclass(frozen=True)
class ToolContext:
    """What a tool may know about the session invoking it."""

    session_id: str
    account_id: str
    role: str
    autonomy_mode: AutonomyMode
    allowed_groups: frozenset[str]
    conversation_id: Optional[str] = None
    credentials: dict[str, str] = field(default_factory=dict)


class Tool(ABC):
    """Base class for all agent-callable tools.

    execute() returns a JSON-serializable dict; a top-level "error" key marks a
    domain failure the model should see and react to. Exceptions raised by
    execute() are converted to the same shape by the registry.
    """

    #: Tool group this tool belongs to ("data", "conversation", "action", "learning").
    group: str = ""
    #: Read-only tools are never gated.
    read_only: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @abstractmethod
    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        """Run the tool and return its result payload."""
        ...

    def requires_approval(self, tool_input: dict[str, Any], ctx: ToolContext) -> bool:
        """Whether this call wants sign-off outside full autonomy. Must not do I/O."""
        return not self.read_only

    def confidence(self, tool_input: dict[str, Any], ctx: ToolContext) -> Optional[float]:
        """Self-assessed confidence in [0, 1] for this call, if the tool reports one."""
        return None

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def model_confidence(tool_input: dict[str, Any]) -> Optional[float]:
    """Read the model's own "confidence" field from a tool input, clamped to [0, 1]."""
    value = tool_input.get("confidence")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return min(max(float(value), 0.0), 1.0)
