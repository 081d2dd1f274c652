"""Shared fixtures: a scripted model client, a temp SQLite store and a wired app."""

from __future__ import annotations

import copy
import inspect
import itertools
from typing import Any, Callable

import pytest
import pytest_asyncio

from gym_agents.ai.client import AIClient, ModelResponse
from gym_agents.app import GymAgentsApp
from gym_agents.config import AppConfig, DeliveryConfig, RuntimeConfig, StorageConfig
from gym_agents.core.events import SessionEvent
from gym_agents.core.types import AutonomyMode, CreatedBy, SessionStatus
from gym_agents.services.members import InMemoryMemberDirectory
from gym_agents.storage.database import Database
from gym_agents.storage.models import SessionRecord

ACCOUNT = "acct-1"

MEMBERS = {
    ACCOUNT: [
        {
            "id": "m-100",
            "name": "Dana Whitfield",
            "email": "dana@example.com",
            "phone": "+15550100",
            "status": "active",
            "visits_last_30_days": 2,
        },
        {
            "id": "m-101",
            "name": "Luis Ortega",
            "email": "luis@example.com",
            "status": "frozen",
            "visits_last_30_days": 0,
        },
    ],
    "acct-2": [{"id": "m-900", "name": "Other Gym Member", "email": "x@example.com"}],
}

_ids = itertools.count(1)


def text_response(text: str, stop_reason: str = "end_turn", **usage: int) -> ModelResponse:
    return ModelResponse(content_blocks=[{"type": "text", "text": text}], stop_reason=stop_reason, **usage)


def tool_response(*calls: tuple[str, dict[str, Any]], text: str | None = None, **usage: int) -> ModelResponse:
    blocks: list[dict[str, Any]] = []
    if text:
        blocks.append({"type": "text", "text": text})
    for name, tool_input in calls:
        blocks.append({"type": "tool_use", "id": f"toolu_{next(_ids)}", "name": name, "input": tool_input})
    return ModelResponse(content_blocks=blocks, stop_reason="tool_use", **usage)


class ScriptedClient(AIClient):
    """Plays back responses in order.

    An entry may be a ModelResponse, an exception to raise, or a callable taking
    the request messages and returning (or awaiting to) a ModelResponse. Once
    the script runs out every call completes with "Done.".
    """

    def __init__(self, responses: list[Any] | None = None):
        self.responses: list[Any] = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        self.calls.append({"system": system, "messages": copy.deepcopy(messages), "tools": tools})
        if not self.responses:
            return text_response("Done.")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(messages)
            if inspect.isawaitable(item):
                item = await item
        return item


def make_config(tmp_path, **overrides: Any) -> AppConfig:
    runtime = overrides.pop("runtime", None) or RuntimeConfig(
        retry_backoff_seconds=0.0,
        model_timeout_seconds=5.0,
        tool_timeout_seconds=5.0,
        event_emit_timeout_seconds=1.0,
    )
    return AppConfig(
        data_dir=str(tmp_path),
        storage=StorageConfig(db_path=str(tmp_path / "gym_agents.db")),
        runtime=runtime,
        delivery=overrides.pop("delivery", None) or DeliveryConfig(daily_send_limit=100),
        **overrides,
    )


def make_session_record(
    session_id: str,
    status: SessionStatus = SessionStatus.RUNNING,
    role: str = "front_desk",
    conversation_id: str | None = None,
) -> SessionRecord:
    return SessionRecord(
        id=session_id,
        account_id=ACCOUNT,
        role=role,
        goal="test goal",
        created_by=CreatedBy.COMMAND,
        autonomy_mode=AutonomyMode.FULL_AUTO,
        tool_groups=["data"],
        max_turns=5,
        budget_cents=10.0,
        timeout_seconds=60.0,
        status=status,
        conversation_id=conversation_id,
    )


async def collect(events) -> list[SessionEvent]:
    return [event async for event in events]


def types_of(events: list[SessionEvent]) -> list[str]:
    return [e.type for e in events]


@pytest.fixture
def client() -> ScriptedClient:
    return ScriptedClient()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def app_factory(tmp_path, client):
    """Build initialized apps sharing the scripted client; all are stopped at teardown."""
    apps: list[GymAgentsApp] = []

    async def _make(**overrides: Any) -> GymAgentsApp:
        provider = overrides.pop("delivery_provider", None)
        app = GymAgentsApp(
            make_config(tmp_path, **overrides),
            ai_client=client,
            members=InMemoryMemberDirectory(copy.deepcopy(MEMBERS)),
            delivery_provider=provider,
        )
        await app.initialize()
        apps.append(app)
        return app

    yield _make
    for app in apps:
        await app.stop()


@pytest_asyncio.fixture
async def app(app_factory) -> GymAgentsApp:
    return await app_factory()


@pytest.fixture
def run_session(app: GymAgentsApp) -> Callable[..., Any]:
    """Run a session to its end and return (events, session record)."""

    async def _run(role: str = "gm", goal: str = "Check on at-risk members", **overrides: Any):
        config = app.session_manager.session_config(ACCOUNT, role, goal, **overrides)
        events = await collect(app.session_manager.stream(config))
        await app.supervisor.join()
        record = await app.sessions.require(config.id)
        return events, record

    return _run
