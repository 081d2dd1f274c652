"""Approval gate: decides whether a requested tool call runs now, waits, or is refused.

A pure function of (tool, input, context, threshold). No I/O.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from gym_agents.core.types import ApprovalDecision, AutonomyMode

if TYPE_CHECKING:
    from gym_agents.ai.tools.base import Tool, ToolContext

DEFAULT_CONFIDENCE_THRESHOLD = 0.8


def decide(
    tool: Tool,
    tool_input: dict[str, Any],
    ctx: ToolContext,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> ApprovalDecision:
    """Default policy.

    - tool outside the session's allowed groups: reject
    - read-only: auto-execute
    - full_auto: auto-execute
    - draft_only: every side-effecting call requires approval
    - semi_auto: auto-execute when the tool does not ask for approval or reports
      confidence at or above the threshold, otherwise require approval
    """
    if tool.group not in ctx.allowed_groups:
        return ApprovalDecision.REJECT
    if tool.read_only:
        return ApprovalDecision.AUTO_EXECUTE

    match ctx.autonomy_mode:
        case AutonomyMode.FULL_AUTO:
            return ApprovalDecision.AUTO_EXECUTE
        case AutonomyMode.DRAFT_ONLY:
            return ApprovalDecision.REQUIRE_APPROVAL
        case AutonomyMode.SEMI_AUTO:
            if not tool.requires_approval(tool_input, ctx):
                return ApprovalDecision.AUTO_EXECUTE
            confidence = tool.confidence(tool_input, ctx)
            if confidence is not None and confidence >= confidence_threshold:
                return ApprovalDecision.AUTO_EXECUTE
            return ApprovalDecision.REQUIRE_APPROVAL
        case _:
            return ApprovalDecision.REQUIRE_APPROVAL


class ApprovalGate:
    """decide() bound to a configured confidence threshold."""

    def __init__(self, confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD):
        self.confidence_threshold = confidence_threshold

    def __call__(self, tool: Tool, tool_input: dict[str, Any], ctx: ToolContext) -> ApprovalDecision:
        return decide(tool, tool_input, ctx, self.confidence_threshold)
