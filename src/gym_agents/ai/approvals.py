"""Resolution of pending approvals.

A suspended session is never resumed in place. Resolving its pending call
closes it and starts a continuation session that carries the prior turn log,
with the pending result replaced by the real outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from gym_agents.ai.runtime import SessionConfig
from gym_agents.ai.tools.base import ToolContext
from gym_agents.core.session import SessionManager
from gym_agents.core.types import ApprovalStatus, CreatedBy, SessionStatus
from gym_agents.errors import ApprovalNotFoundError, InvalidTransitionError
from gym_agents.log import get_logger
from gym_agents.storage.approval_repo import ApprovalRepository
from gym_agents.storage.models import SessionRecord, ToolResult, TurnRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class ApprovalOutcome:
    approval_id: str
    status: ApprovalStatus
    result: ToolResult
    parent_session_id: str
    continuation_session_id: str


def _replace_result(turns: list[TurnRecord], result: ToolResult) -> list[TurnRecord]:
    """Copy of the turn log with the pending result for result.tool_call_id swapped out."""
    out: list[TurnRecord] = []
    for turn in turns:
        if any(r.tool_call_id == result.tool_call_id for r in turn.results):
            turn = replace(
                turn,
                results=[result if r.tool_call_id == result.tool_call_id else r for r in turn.results],
            )
        out.append(turn)
    return out


class ApprovalService:
    def __init__(self, manager: SessionManager, approvals: ApprovalRepository):
        self._manager = manager
        self._approvals = approvals

    async def resolve(self, approval_id: str, approved: bool, note: Optional[str] = None) -> ApprovalOutcome:
        approval = await self._approvals.get(approval_id)
        if approval is None or approval.status != ApprovalStatus.PENDING:
            raise ApprovalNotFoundError(approval_id)

        deps = self._manager.deps
        parent = await deps.sessions.require(approval.session_id)
        if parent.status != SessionStatus.AWAITING_APPROVAL:
            raise InvalidTransitionError(parent.status, SessionStatus.COMPLETED)

        status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        verdict = status.value
        call = approval.tool_call

        # The parent leaves awaiting_approval before anything runs; a parent
        # cancelled since the check above raises InvalidTransitionError here.
        await deps.sessions.update_status(parent.id, SessionStatus.COMPLETED)
        if not await self._approvals.resolve(approval_id, status, note):
            raise ApprovalNotFoundError(approval_id)

        if approved:
            result = await deps.registry.execute(call, self._context(parent))
        else:
            reason = f"The owner rejected this action: {note}" if note else "The owner rejected this action."
            result = ToolResult.failure(call, reason)

        try:
            await deps.sessions.update_status(
                parent.id, SessionStatus.COMPLETED, summary=f"Pending {call.name} call {verdict}"
            )
            await deps.sessions.annotate(
                parent.id,
                f"{call.name} {verdict}" + (f": {note}" if note else "") + (f" ({result.error})" if result.is_error else ""),
                author="approval",
            )
        except Exception as e:
            logger.warning("approval_audit_not_recorded", approval_id=approval_id, parent_session_id=parent.id, error=str(e))

        turns = await deps.sessions.list_turns(parent.id)
        config = self._continuation_config(parent, [*parent.context_turns, *_replace_result(turns, result)])
        await self._approvals.set_continuation(approval_id, config.id)
        self._manager.launch(config)

        logger.info(
            "approval_resolved",
            approval_id=approval_id,
            status=verdict,
            tool=call.name,
            parent_session_id=parent.id,
            continuation_session_id=config.id,
        )
        return ApprovalOutcome(
            approval_id=approval_id,
            status=status,
            result=result,
            parent_session_id=parent.id,
            continuation_session_id=config.id,
        )

    @staticmethod
    def _context(parent: SessionRecord) -> ToolContext:
        return ToolContext(
            session_id=parent.id,
            account_id=parent.account_id,
            role=parent.role,
            autonomy_mode=parent.autonomy_mode,
            allowed_groups=frozenset(parent.tool_groups),
            conversation_id=parent.conversation_id,
        )

    @staticmethod
    def _continuation_config(parent: SessionRecord, context_turns: list[TurnRecord]) -> SessionConfig:
        # The continuation spends what is left of the parent's budget, but always gets one turn.
        return SessionConfig(
            account_id=parent.account_id,
            role=parent.role,
            goal=parent.goal,
            tool_groups=list(parent.tool_groups),
            autonomy_mode=parent.autonomy_mode,
            max_turns=max(parent.max_turns - parent.turns_used, 1),
            budget_cents=max(parent.budget_cents - parent.cost_cents, 0.0),
            created_by=CreatedBy.APPROVAL,
            timeout_seconds=parent.timeout_seconds or None,
            conversation_id=parent.conversation_id,
            parent_session_id=parent.id,
            context_turns=context_turns,
            system_prompt=parent.system_prompt,
        )
