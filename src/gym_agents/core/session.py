"""Session manager: starts runtimes under supervision and hands back event handles."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from gym_agents.ai.runtime import RuntimeDeps, SessionConfig, SessionRuntime, link_conversation
from gym_agents.core.events import EventChannel, SessionEvent
from gym_agents.core.types import CreatedBy, SessionStatus
from gym_agents.errors import InvalidTransitionError
from gym_agents.log import get_logger
from gym_agents.services.supervisor import TaskSupervisor

logger = get_logger(__name__)


class SessionHandle:
    """Caller's view of a running session.

    Iterate it for events. aclose() stops listening without stopping the
    session; cancel() asks the session to stop at its next turn boundary.
    """

    def __init__(
        self,
        session_id: str,
        channel: EventChannel,
        task: asyncio.Task,
        cancel_event: asyncio.Event,
    ):
        self.session_id = session_id
        self._channel = channel
        self._task = task
        self._cancel_event = cancel_event

    def __aiter__(self) -> AsyncIterator[SessionEvent]:
        return self._channel.__aiter__()

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self._cancel_event.set()

    async def wait(self) -> SessionStatus:
        """Wait for the runtime to stop and return its final status."""
        return await asyncio.shield(self._task)

    async def aclose(self) -> None:
        self._channel.detach()

    async def collect(self) -> list[SessionEvent]:
        """Consume every event until the stream ends."""
        return [event async for event in self]


class SessionManager:
    """Owns the set of in-process sessions."""

    def __init__(self, deps: RuntimeDeps, supervisor: TaskSupervisor):
        self._deps = deps
        self._supervisor = supervisor
        self._active: dict[str, tuple[SessionRuntime, asyncio.Event]] = {}

    @property
    def deps(self) -> RuntimeDeps:
        return self._deps

    def active_session_ids(self) -> list[str]:
        return list(self._active)

    def session_config(
        self,
        account_id: str,
        role: str,
        goal: str,
        created_by: CreatedBy = CreatedBy.COMMAND,
        **overrides: Any,
    ) -> SessionConfig:
        """Session config seeded from the role's defaults."""
        definition = self._deps.roles.get(role)
        params: dict[str, Any] = {
            "tool_groups": list(definition.tool_groups),
            "autonomy_mode": definition.default_autonomy,
            "max_turns": definition.max_turns,
            "budget_cents": definition.budget_cents,
            "timeout_seconds": self._deps.runtime.session_timeout_seconds,
        }
        params.update({k: v for k, v in overrides.items() if v is not None})
        return SessionConfig(account_id=account_id, role=role, goal=goal, created_by=created_by, **params)

    def start(self, config: SessionConfig) -> SessionHandle:
        channel = EventChannel(
            maxsize=self._deps.runtime.event_buffer_size,
            emit_timeout=self._deps.runtime.event_emit_timeout_seconds,
        )
        cancel_event = asyncio.Event()
        runtime = SessionRuntime(config, self._deps, cancel_event=cancel_event)
        self._active[config.id] = (runtime, cancel_event)

        async def _run() -> SessionStatus:
            try:
                return await runtime.run(channel)
            finally:
                self._active.pop(config.id, None)

        task = self._supervisor.spawn(_run, name=f"session:{config.id}")
        logger.info("session_spawned", session_id=config.id, role=config.role, created_by=config.created_by.value)
        return SessionHandle(config.id, channel, task, cancel_event)

    async def stream(self, config: SessionConfig) -> AsyncIterator[SessionEvent]:
        """Start a session and yield its events. Closing the stream detaches, it does not cancel."""
        handle = self.start(config)
        try:
            async for event in handle:
                yield event
        finally:
            await handle.aclose()

    def launch(self, config: SessionConfig) -> str:
        """Run stream() in the background. Returns the session id."""

        async def _drain() -> None:
            async for event in self.stream(config):
                if event.terminal:
                    logger.info("background_session_finished", session_id=config.id, event_type=event.type)

        self._supervisor.spawn(_drain, name=f"stream:{config.id}")
        return config.id

    async def cancel(self, session_id: str) -> bool:
        """Request cooperative cancellation. Works for sessions in other processes via the store."""
        active = self._active.get(session_id)
        if active is not None:
            active[1].set()
        requested = await self._deps.sessions.request_cancel(session_id)
        if requested and active is None:
            await self._cancel_suspended(session_id)
        logger.info("session_cancel_requested", session_id=session_id, in_process=active is not None, accepted=requested)
        return requested or active is not None

    async def _cancel_suspended(self, session_id: str) -> None:
        """A session awaiting approval has no runtime to notice the flag, so close it here."""
        record = await self._deps.sessions.get(session_id)
        if record is None or record.status != SessionStatus.AWAITING_APPROVAL:
            return
        try:
            await self._deps.sessions.update_status(
                session_id, SessionStatus.CANCELLED, summary="Cancelled while awaiting approval"
            )
        except InvalidTransitionError:
            logger.info("session_cancel_lost_to_approval", session_id=session_id)
            return
        if record.conversation_id:
            await self._deps.conversations.unlink_session(record.conversation_id, session_id)

    async def link_conversation(self, conversation_id: str, session_id: str) -> bool:
        return await link_conversation(
            self._deps.conversations, self._deps.sessions, conversation_id, session_id
        )
