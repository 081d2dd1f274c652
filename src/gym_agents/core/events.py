"""Session events and the bounded channel that carries them to consumers.

The runtime is the only producer. Persistence never waits on a consumer: if the
consumer stalls past the emit timeout or detaches, the channel stops accepting
events and the runtime carries on.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, ClassVar, Optional

from gym_agents.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SessionEvent:
    type: ClassVar[str] = "event"
    terminal: ClassVar[bool] = False

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **asdict(self)}


@dataclass(frozen=True, slots=True)
class SessionCreated(SessionEvent):
    type: ClassVar[str] = "session_created"
    session_id: str
    role: str = ""


@dataclass(frozen=True, slots=True)
class MessageEvent(SessionEvent):
    type: ClassVar[str] = "message"
    content: str


@dataclass(frozen=True, slots=True)
class ToolCallEvent(SessionEvent):
    type: ClassVar[str] = "tool_call"
    name: str
    input: dict[str, Any]
    tool_call_id: str = ""


@dataclass(frozen=True, slots=True)
class ToolResultEvent(SessionEvent):
    type: ClassVar[str] = "tool_result"
    name: str
    tool_call_id: str = ""
    output: Any = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AwaitingApproval(SessionEvent):
    type: ClassVar[str] = "awaiting_approval"
    terminal: ClassVar[bool] = True
    tool_call: dict[str, Any] = field(default_factory=dict)
    approval_id: str = ""


@dataclass(frozen=True, slots=True)
class ErrorEvent(SessionEvent):
    type: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True
    message: str


@dataclass(frozen=True, slots=True)
class DoneEvent(SessionEvent):
    type: ClassVar[str] = "done"
    terminal: ClassVar[bool] = True
    summary: str
    status: str = "completed"


@dataclass(frozen=True, slots=True)
class BudgetExceeded(SessionEvent):
    type: ClassVar[str] = "budget_exceeded"
    terminal: ClassVar[bool] = True
    reason: str
    turns_used: int = 0
    cost_cents: float = 0.0


_CLOSED = object()


class EventChannel:
    """Bounded single-producer/single-consumer queue of SessionEvents."""

    def __init__(self, maxsize: int = 64, emit_timeout: float = 5.0):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._emit_timeout = emit_timeout
        self._detached = False
        self._closed = False

    @property
    def detached(self) -> bool:
        return self._detached

    async def publish(self, event: SessionEvent) -> bool:
        """Offer an event to the consumer. Returns False if it was not delivered."""
        if self._detached or self._closed:
            return False
        try:
            await asyncio.wait_for(self._queue.put(event), timeout=self._emit_timeout)
        except asyncio.TimeoutError:
            self._detached = True
            logger.warning("event_consumer_stalled", event_type=event.type)
            return False
        return True

    def close(self) -> None:
        """Producer side: no more events. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # The consumer drains what is buffered, then stops on the closed flag.
            pass

    def detach(self) -> None:
        """Consumer side: stop listening. Pending events are discarded."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[SessionEvent]:
        while not self._detached:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if item.terminal:
                return
