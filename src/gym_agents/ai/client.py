"""AI client abstraction with an Anthropic API backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from gym_agents.config import AnthropicConfig, ModelConfig
from gym_agents.log import get_logger
from gym_agents.storage.models import ToolCall

logger = get_logger(__name__)

DONE_STOP_REASON = "end_turn"


@dataclass
class ModelResponse:
    """Unified response from any AI backend.

    content_blocks is the serializable form persisted in the turn log and
    replayed as the assistant message on later turns.
    """

    content_blocks: list[dict[str, Any]]
    stop_reason: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = field(default=None, repr=False)

    @property
    def text(self) -> str:
        return "\n".join(b["text"] for b in self.content_blocks if b.get("type") == "text")

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [
            ToolCall(id=b["id"], name=b["name"], input=dict(b.get("input") or {}))
            for b in self.content_blocks
            if b.get("type") == "tool_use"
        ]

    @property
    def done(self) -> bool:
        """Explicit completion marker: no tool requests and a natural end of turn."""
        return not self.tool_calls and self.stop_reason == DONE_STOP_REASON


class AIClient(ABC):
    """Abstract base class for AI backends."""

    @abstractmethod
    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        """Send a conversation to the model and return its response."""
        ...


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, model: ModelConfig):
        import anthropic

        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )
        self._model = model

    @property
    def model_name(self) -> str:
        return self._model.model

    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self._model.model,
            "max_tokens": self._model.max_tokens,
            "system": system,
            "messages": messages,
            "temperature": self._model.temperature,
        }
        if tools:
            kwargs["tools"] = tools

        logger.debug("api_request", model=self._model.model, message_count=len(messages))
        response = await self._client.messages.create(**kwargs)
        logger.debug(
            "api_response",
            model=self._model.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )

        blocks: list[dict[str, Any]] = []
        for block in response.content:
            if block.type == "text":
                blocks.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                blocks.append(
                    {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                )
        return ModelResponse(
            content_blocks=blocks,
            stop_reason=response.stop_reason or "",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            raw=response,
        )
