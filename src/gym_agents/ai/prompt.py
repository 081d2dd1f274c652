"""System prompt layering and turn-log to Anthropic message conversion.

build_messages() is a pure function of the persisted turn log. Replaying the
same log always produces the same message list, serialized byte for byte.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from gym_agents.storage.models import ToolResult, TurnRecord

if TYPE_CHECKING:
    from gym_agents.ai.tools.base import Tool
    from gym_agents.core.roles import RoleDefinition

KICKOFF_MESSAGE = "Begin working on your goal. Call tools as needed and reply with a short summary when you are done."
CONTINUE_MESSAGE = "Continue."
EMPTY_RESPONSE_TEXT = "(no output)"
PENDING_RESULT_TEXT = "This call is awaiting owner approval and has not been executed."
SKIPPED_RESULT_TEXT = "Not executed: an earlier call in the same turn is awaiting approval."


def build_system_prompt(
    role: RoleDefinition,
    tools: Iterable[Tool],
    goal: str,
    memories: str = "",
) -> str:
    """Layer role identity, tool list, business memories and the goal."""
    parts = [f"# Role: {role.title}"]
    if role.instructions:
        parts.append(role.instructions)
    if role.escalate_to:
        parts.append(f"When something is beyond your authority, hand off to: {', '.join(role.escalate_to)}.")

    tool_lines = [f"- `{t.name}`: {t.description}" for t in tools]
    if tool_lines:
        parts.append("## Tools\n" + "\n".join(tool_lines))

    if memories:
        parts.append(memories)

    parts.append(f"## Goal\n{goal}")
    parts.append(
        "When the goal is complete, reply with a brief summary and no tool calls. "
        "Tool errors are returned to you; adjust your input or approach and carry on."
    )
    return "\n\n".join(parts)


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def _tool_result_block(call_id: str, result: ToolResult | None) -> dict[str, Any]:
    if result is None:
        return {"type": "tool_result", "tool_use_id": call_id, "content": SKIPPED_RESULT_TEXT, "is_error": True}
    if result.is_pending:
        return {"type": "tool_result", "tool_use_id": call_id, "content": PENDING_RESULT_TEXT}
    if result.is_error:
        return {"type": "tool_result", "tool_use_id": call_id, "content": result.error or "error", "is_error": True}
    return {"type": "tool_result", "tool_use_id": call_id, "content": _dumps(result.output)}


def build_messages(turns: Sequence[TurnRecord]) -> list[dict[str, Any]]:
    """Reconstruct the model conversation from a turn log.

    Every tool_use block is answered by a tool_result in the following user
    message. A text-only turn is followed by a nudge to continue.
    """
    messages: list[dict[str, Any]] = [{"role": "user", "content": KICKOFF_MESSAGE}]
    for turn in turns:
        blocks = turn.response_blocks or [{"type": "text", "text": EMPTY_RESPONSE_TEXT}]
        messages.append({"role": "assistant", "content": blocks})

        calls = turn.tool_calls
        if calls:
            by_id = {r.tool_call_id: r for r in turn.results}
            messages.append(
                {"role": "user", "content": [_tool_result_block(c.id, by_id.get(c.id)) for c in calls]}
            )
        else:
            messages.append({"role": "user", "content": CONTINUE_MESSAGE})
    return messages


def render_prompt(system: str, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None) -> str:
    """Canonical serialized form of one model request."""
    return _dumps({"system": system, "messages": messages, "tools": tools or []})


def replay_prompt(system: str, context_turns: Sequence[TurnRecord], turns: Sequence[TurnRecord]) -> str:
    """The request a session would send after its persisted turns."""
    return render_prompt(system, build_messages([*context_turns, *turns]))
