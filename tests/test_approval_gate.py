"""Approval policy across autonomy modes."""

from __future__ import annotations

from typing import Any, Optional
from unittest.mock import MagicMock

import pytest

from gym_agents.ai.tools.base import Tool, ToolContext, model_confidence
from gym_agents.ai.tools.registry import ToolRegistry
from gym_agents.core.approval import ApprovalGate, decide
from gym_agents.core.types import ApprovalDecision, AutonomyMode

ALL_GROUPS = frozenset({"data", "conversation", "action", "learning"})


class LookupTool(Tool):
    group = "data"
    read_only = True
    name = "lookup"
    description = "read"
    input_schema = {"type": "object"}

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        return {}


class OutreachTool(Tool):
    group = "action"
    name = "outreach"
    description = "write"
    input_schema = {"type": "object"}

    def __init__(self, wants_approval: bool = True):
        self._wants_approval = wants_approval

    def requires_approval(self, tool_input: dict[str, Any], ctx: ToolContext) -> bool:
        return self._wants_approval

    def confidence(self, tool_input: dict[str, Any], ctx: ToolContext) -> Optional[float]:
        return model_confidence(tool_input)

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        return {}


def ctx(mode: AutonomyMode, groups: frozenset[str] = ALL_GROUPS) -> ToolContext:
    return ToolContext(
        session_id="s-1",
        account_id="acct-1",
        role="gm",
        autonomy_mode=mode,
        allowed_groups=groups,
    )


@pytest.mark.parametrize("mode", list(AutonomyMode))
def test_read_only_always_auto_executes(mode):
    assert decide(LookupTool(), {}, ctx(mode)) == ApprovalDecision.AUTO_EXECUTE


@pytest.mark.parametrize("mode", list(AutonomyMode))
def test_tool_outside_allowed_groups_is_rejected(mode):
    assert decide(LookupTool(), {}, ctx(mode, frozenset({"action"}))) == ApprovalDecision.REJECT
    assert decide(OutreachTool(), {}, ctx(mode, frozenset({"data"}))) == ApprovalDecision.REJECT


def test_full_auto_executes_side_effects():
    assert decide(OutreachTool(), {}, ctx(AutonomyMode.FULL_AUTO)) == ApprovalDecision.AUTO_EXECUTE


@pytest.mark.parametrize(
    "tool_input",
    [{}, {"confidence": 1.0}, {"confidence": 0.99}],
)
def test_draft_only_requires_approval_even_when_confident(tool_input):
    assert decide(OutreachTool(), tool_input, ctx(AutonomyMode.DRAFT_ONLY)) == ApprovalDecision.REQUIRE_APPROVAL


def test_draft_only_ignores_tool_opt_out():
    tool = OutreachTool(wants_approval=False)
    assert decide(tool, {}, ctx(AutonomyMode.DRAFT_ONLY)) == ApprovalDecision.REQUIRE_APPROVAL


@pytest.mark.parametrize(
    "tool_input, expected",
    [
        ({}, ApprovalDecision.REQUIRE_APPROVAL),
        ({"confidence": 0.5}, ApprovalDecision.REQUIRE_APPROVAL),
        ({"confidence": 0.8}, ApprovalDecision.AUTO_EXECUTE),
        ({"confidence": 0.93}, ApprovalDecision.AUTO_EXECUTE),
        ({"confidence": "high"}, ApprovalDecision.REQUIRE_APPROVAL),
    ],
)
def test_semi_auto_uses_confidence_threshold(tool_input, expected):
    assert decide(OutreachTool(), tool_input, ctx(AutonomyMode.SEMI_AUTO)) == expected


def test_semi_auto_executes_when_tool_does_not_ask():
    tool = OutreachTool(wants_approval=False)
    assert decide(tool, {}, ctx(AutonomyMode.SEMI_AUTO)) == ApprovalDecision.AUTO_EXECUTE


def test_gate_threshold_is_configurable():
    strict = ApprovalGate(confidence_threshold=0.95)
    assert strict(OutreachTool(), {"confidence": 0.9}, ctx(AutonomyMode.SEMI_AUTO)) == ApprovalDecision.REQUIRE_APPROVAL
    assert strict(OutreachTool(), {"confidence": 0.96}, ctx(AutonomyMode.SEMI_AUTO)) == ApprovalDecision.AUTO_EXECUTE


def test_model_confidence_parsing():
    assert model_confidence({"confidence": 0.7}) == 0.7
    assert model_confidence({"confidence": 3}) == 1.0
    assert model_confidence({"confidence": -1}) == 0.0
    assert model_confidence({"confidence": True}) is None
    assert model_confidence({}) is None


def test_every_builtin_side_effect_needs_approval_in_draft_only():
    registry = ToolRegistry()
    services = MagicMock()
    registry.discover_and_register(services)

    side_effecting = [t for t in registry.all_tools() if not t.read_only]
    assert {t.name for t in side_effecting} >= {"send_reply", "send_email", "handoff_conversation", "save_memory"}
    for tool in side_effecting:
        assert decide(tool, {"confidence": 1.0}, ctx(AutonomyMode.DRAFT_ONLY)) == ApprovalDecision.REQUIRE_APPROVAL
