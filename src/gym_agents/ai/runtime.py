"""Session runtime: the bounded turn loop between a role-scoped agent and the model.

Each turn is persisted (response, tool calls and their results in one row,
together with the session counters) before the next turn begins. Events are
published as they happen; a slow or absent consumer never holds up the loop.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from gym_agents.ai.client import AIClient, ModelResponse
from gym_agents.ai.prompt import build_messages, build_system_prompt
from gym_agents.ai.tools.base import ToolContext
from gym_agents.ai.tools.registry import ToolRegistry
from gym_agents.config import PricingConfig, RuntimeConfig
from gym_agents.core.approval import ApprovalGate
from gym_agents.core.budget import BudgetGuard, estimate_cost_cents
from gym_agents.core.events import (
    AwaitingApproval,
    BudgetExceeded,
    DoneEvent,
    ErrorEvent,
    EventChannel,
    MessageEvent,
    SessionCreated,
    SessionEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from gym_agents.core.roles import RoleCatalog
from gym_agents.core.types import ApprovalDecision, AutonomyMode, CreatedBy, SessionStatus
from gym_agents.errors import GymAgentsError, ModelCallError, StoreError
from gym_agents.log import get_logger, session_log_context
from gym_agents.storage.approval_repo import ApprovalRepository
from gym_agents.storage.conversation_repo import ConversationRepository
from gym_agents.storage.memory_repo import MemoryRepository
from gym_agents.storage.models import SessionRecord, ToolCall, ToolResult, TurnRecord
from gym_agents.storage.session_repo import SessionRepository

logger = get_logger(__name__)

T = TypeVar("T")


async def link_conversation(
    conversations: ConversationRepository,
    sessions: SessionRepository,
    conversation_id: str,
    session_id: str,
) -> bool:
    """Point a conversation at session_id.

    Replaces the current pointer only when it is empty or names a session that
    is no longer running. A lost race is logged and reported, never raised.
    """
    conversation = await conversations.get(conversation_id)
    if conversation is None:
        logger.warning("session_link_conversation_missing", conversation_id=conversation_id)
        return False

    expected: Optional[str] = conversation.session_id
    if expected == session_id:
        return True
    if expected is not None:
        current = await sessions.get(expected)
        if (
            current is not None
            and not current.status.is_terminal
            and current.status != SessionStatus.AWAITING_APPROVAL
        ):
            logger.warning(
                "session_link_conflict",
                conversation_id=conversation_id,
                session_id=session_id,
                linked_session_id=expected,
            )
            return False

    linked = await conversations.link_session(conversation_id, session_id, expected_session_id=expected)
    if linked:
        logger.info("session_linked", conversation_id=conversation_id, session_id=session_id)
    else:
        logger.warning("session_link_lost_race", conversation_id=conversation_id, session_id=session_id)
    return linked


@dataclass
class SessionConfig:
    """Immutable inputs of one session. The id is chosen up front."""

    account_id: str
    role: str
    goal: str
    tool_groups: list[str]
    autonomy_mode: AutonomyMode
    max_turns: int
    budget_cents: float
    created_by: CreatedBy = CreatedBy.COMMAND
    timeout_seconds: Optional[float] = None
    conversation_id: Optional[str] = None
    parent_session_id: Optional[str] = None
    context_turns: list[TurnRecord] = field(default_factory=list)
    credentials: dict[str, str] = field(default_factory=dict)
    system_prompt: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class RuntimeDeps:
    """Collaborators shared by every session runtime."""

    client: AIClient
    registry: ToolRegistry
    sessions: SessionRepository
    approvals: ApprovalRepository
    conversations: ConversationRepository
    roles: RoleCatalog
    runtime: RuntimeConfig
    pricing: PricingConfig
    memories: Optional[MemoryRepository] = None
    gate: Optional[ApprovalGate] = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    clock: Callable[[], float] = time.monotonic


class SessionRuntime:
    """Drives one session from created to a terminal or suspended state."""

    def __init__(self, config: SessionConfig, deps: RuntimeDeps, cancel_event: Optional[asyncio.Event] = None):
        self.config = config
        self._deps = deps
        self._cancel_event = cancel_event or asyncio.Event()
        self._gate = deps.gate or ApprovalGate(deps.runtime.approval_confidence_threshold)
        self._channel: Optional[EventChannel] = None
        self._ctx = ToolContext(
            session_id=config.id,
            account_id=config.account_id,
            role=config.role,
            autonomy_mode=config.autonomy_mode,
            allowed_groups=frozenset(config.tool_groups),
            conversation_id=config.conversation_id,
            credentials=dict(config.credentials),
        )
        self._guard = BudgetGuard(
            max_turns=config.max_turns,
            max_cost_cents=config.budget_cents,
            timeout_seconds=config.timeout_seconds,
            clock=deps.clock,
        )
        self._turns: list[TurnRecord] = []
        self._log = logger.bind(role=config.role)

    @property
    def session_id(self) -> str:
        return self.config.id

    @property
    def turns(self) -> list[TurnRecord]:
        return list(self._turns)

    async def run(self, channel: EventChannel) -> SessionStatus:
        """Run to completion. Never raises except on task cancellation."""
        self._channel = channel
        with session_log_context(self.config.id, self.config.account_id):
            try:
                return await self._run()
            except asyncio.CancelledError:
                self._log.warning("session_task_cancelled")
                await self._terminate(
                    SessionStatus.CANCELLED,
                    DoneEvent(summary="Session cancelled", status=SessionStatus.CANCELLED.value),
                    summary="Session cancelled",
                )
                raise
            except Exception as e:
                self._log.exception("session_crashed", error=str(e))
                await self._terminate(SessionStatus.FAILED, ErrorEvent(message=f"Session failed: {e}"), error=str(e))
                return SessionStatus.FAILED
            finally:
                channel.close()

    async def _emit(self, event: SessionEvent) -> None:
        if self._channel is not None:
            await self._channel.publish(event)

    async def _run(self) -> SessionStatus:
        cfg = self.config
        tools = self._deps.registry.tools_for_groups(cfg.tool_groups)
        tool_defs = [t.to_api_dict() for t in tools]
        system_prompt = cfg.system_prompt or await self._build_system_prompt(tools)

        record = SessionRecord(
            id=cfg.id,
            account_id=cfg.account_id,
            role=cfg.role,
            goal=cfg.goal,
            created_by=cfg.created_by,
            autonomy_mode=cfg.autonomy_mode,
            tool_groups=list(cfg.tool_groups),
            max_turns=cfg.max_turns,
            budget_cents=cfg.budget_cents,
            timeout_seconds=cfg.timeout_seconds or 0.0,
            system_prompt=system_prompt,
            conversation_id=cfg.conversation_id,
            parent_session_id=cfg.parent_session_id,
            context_turns=list(cfg.context_turns),
        )
        try:
            await self._store("create_session", lambda: self._deps.sessions.create(record))
        except StoreError as e:
            # Nothing was persisted, so there is no session to mark failed.
            await self._emit(ErrorEvent(message=str(e)))
            return SessionStatus.FAILED

        await self._emit(SessionCreated(session_id=cfg.id, role=cfg.role))
        if cfg.conversation_id:
            try:
                await link_conversation(
                    self._deps.conversations, self._deps.sessions, cfg.conversation_id, cfg.id
                )
            except Exception as e:
                self._log.warning("session_link_failed", conversation_id=cfg.conversation_id, error=str(e))
        await self._store(
            "mark_running", lambda: self._deps.sessions.update_status(cfg.id, SessionStatus.RUNNING)
        )
        self._log.info("session_started", goal_chars=len(cfg.goal), tool_count=len(tools))

        while True:
            if await self._cancel_requested():
                return await self._terminate(
                    SessionStatus.CANCELLED,
                    DoneEvent(summary="Session cancelled", status=SessionStatus.CANCELLED.value),
                    summary="Session cancelled",
                )

            reason = self._guard.check()
            if reason:
                self._log.info(
                    "session_budget_exhausted",
                    reason=reason,
                    turns_used=self._guard.turns_used,
                    cost_cents=round(self._guard.cost_cents, 4),
                )
                return await self._terminate(
                    SessionStatus.BUDGET_EXCEEDED,
                    BudgetExceeded(
                        reason=reason,
                        turns_used=self._guard.turns_used,
                        cost_cents=self._guard.cost_cents,
                    ),
                    summary=f"Budget exhausted: {reason}",
                )

            turn_index = len(self._turns)
            messages = build_messages([*cfg.context_turns, *self._turns])
            try:
                response = await self._call_model(system_prompt, messages, tool_defs)
            except ModelCallError as e:
                return await self._terminate(SessionStatus.FAILED, ErrorEvent(message=str(e)), error=str(e))

            cost = estimate_cost_cents(response.input_tokens, response.output_tokens, self._deps.pricing)
            if response.text:
                await self._emit(MessageEvent(content=response.text))

            results, pending_call = await self._dispatch(response.tool_calls)

            turn = TurnRecord(
                session_id=cfg.id,
                turn_index=turn_index,
                response_blocks=response.content_blocks,
                stop_reason=response.stop_reason,
                results=results,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                cost_cents=cost,
            )
            self._guard.record_turn(cost)
            try:
                await self._store(
                    "persist_turn",
                    lambda: self._deps.sessions.persist_turn(
                        turn, self._guard.turns_used, self._guard.cost_cents
                    ),
                )
            except StoreError as e:
                return await self._terminate(SessionStatus.FAILED, ErrorEvent(message=str(e)), error=str(e))
            self._turns.append(turn)
            self._log.debug("turn_persisted", turn=turn_index, tool_calls=len(results), cost_cents=round(cost, 4))

            if pending_call is not None:
                return await self._suspend(pending_call)

            if response.done:
                summary = response.text or "Session completed"
                return await self._terminate(
                    SessionStatus.COMPLETED,
                    DoneEvent(summary=summary, status=SessionStatus.COMPLETED.value),
                    summary=summary,
                )

    async def _build_system_prompt(self, tools) -> str:
        role = self._deps.roles.get(self.config.role)
        memories = ""
        if self._deps.memories is not None:
            try:
                memories = await self._deps.memories.render_for_prompt(self.config.account_id)
            except Exception as e:
                self._log.warning("memories_unavailable", error=str(e))
        return build_system_prompt(role, tools, self.config.goal, memories)

    async def _cancel_requested(self) -> bool:
        if self._cancel_event.is_set():
            return True
        try:
            return await self._store(
                "check_cancel", lambda: self._deps.sessions.is_cancel_requested(self.config.id)
            )
        except StoreError as e:
            self._log.warning("cancel_flag_unreadable", error=str(e))
            return False

    async def _call_model(
        self, system: str, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> ModelResponse:
        attempts = self._deps.runtime.model_retries + 1
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._deps.client.complete(system, messages, tools or None),
                    timeout=self._deps.runtime.model_timeout_seconds,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                self._log.warning(
                    "model_call_failed",
                    attempt=attempt,
                    error=str(e) or type(e).__name__,
                )
                if attempt < attempts:
                    await self._deps.sleep(self._deps.runtime.retry_backoff_seconds * attempt)
        raise ModelCallError(f"Model call failed after {attempts} attempts: {last_error or 'unknown error'}")

    async def _store(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        attempts = self._deps.runtime.store_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await fn()
            except asyncio.CancelledError:
                raise
            except GymAgentsError:
                raise
            except Exception as e:
                self._log.warning("store_write_failed", op=op, attempt=attempt, error=str(e))
                if attempt == attempts:
                    raise StoreError(f"{op} failed after {attempts} attempts: {e}") from e
                await self._deps.sleep(self._deps.runtime.retry_backoff_seconds * attempt)
        raise StoreError(f"{op} failed")

    async def _dispatch(self, calls: list[ToolCall]) -> tuple[list[ToolResult], Optional[ToolCall]]:
        """Run calls in request order until one needs approval. Later calls are skipped."""
        results: list[ToolResult] = []
        pending: Optional[ToolCall] = None
        for call in calls:
            if pending is not None:
                results.append(
                    ToolResult.failure(call, "Not executed: an earlier call in this turn is awaiting approval")
                )
                continue

            await self._emit(ToolCallEvent(name=call.name, input=call.input, tool_call_id=call.id))
            result = await self._dispatch_one(call)
            results.append(result)
            if result.is_pending:
                pending = call
                continue
            await self._emit(
                ToolResultEvent(
                    name=call.name,
                    tool_call_id=call.id,
                    output=result.output,
                    error=result.error,
                )
            )
        return results, pending

    async def _dispatch_one(self, call: ToolCall) -> ToolResult:
        registry = self._deps.registry
        policy_error = registry.check_call(call, self._ctx)
        if policy_error:
            self._log.info("tool_call_refused", tool=call.name, error=policy_error)
            return ToolResult.failure(call, policy_error)

        tool = registry.get(call.name)
        decision = self._gate(tool, call.input, self._ctx)
        if decision == ApprovalDecision.REJECT:
            return ToolResult.failure(call, f"Tool '{call.name}' was rejected by the approval policy")
        if decision == ApprovalDecision.REQUIRE_APPROVAL:
            self._log.info("tool_call_needs_approval", tool=call.name)
            return ToolResult.pending(call)

        result = await registry.execute(call, self._ctx)
        self._log.info("tool_executed", tool=call.name, ok=not result.is_error)
        return result

    async def _suspend(self, call: ToolCall) -> SessionStatus:
        cfg = self.config
        try:
            approval = await self._store(
                "create_approval",
                lambda: self._deps.approvals.create(cfg.id, cfg.account_id, call),
            )
        except StoreError as e:
            return await self._terminate(SessionStatus.FAILED, ErrorEvent(message=str(e)), error=str(e))
        return await self._terminate(
            SessionStatus.AWAITING_APPROVAL,
            AwaitingApproval(tool_call=call.to_dict(), approval_id=approval.id),
        )

    async def _terminate(
        self,
        status: SessionStatus,
        event: SessionEvent,
        summary: Optional[str] = None,
        error: Optional[str] = None,
    ) -> SessionStatus:
        """Record the final state, release the conversation, then tell the consumer."""
        cfg = self.config
        try:
            await self._store(
                "update_status",
                lambda: self._deps.sessions.update_status(cfg.id, status, summary=summary, error=error),
            )
        except Exception as e:
            self._log.error("session_status_not_recorded", status=status.value, error=str(e))

        if cfg.conversation_id and status != SessionStatus.AWAITING_APPROVAL:
            try:
                await self._deps.conversations.unlink_session(cfg.conversation_id, cfg.id)
            except Exception as e:
                self._log.warning("conversation_unlink_failed", conversation_id=cfg.conversation_id, error=str(e))

        self._log.info(
            "session_finished",
            status=status.value,
            turns_used=self._guard.turns_used,
            cost_cents=round(self._guard.cost_cents, 4),
        )
        await self._emit(event)
        return status
