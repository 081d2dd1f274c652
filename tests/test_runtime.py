"""Turn loop behaviour: caps, suspension, failures, feedback and cancellation."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import ACCOUNT, collect, text_response, tool_response, types_of

from gym_agents.ai.client import ModelResponse
from gym_agents.config import RuntimeConfig
from gym_agents.core.events import (
    AwaitingApproval,
    BudgetExceeded,
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    SessionCreated,
    ToolResultEvent,
)
from gym_agents.core.types import SessionStatus


@pytest.mark.asyncio
async def test_done_response_completes(client, run_session):
    client.responses = [text_response("Nothing needs attention today.")]

    events, record = await run_session()

    assert types_of(events) == ["session_created", "message", "done"]
    assert isinstance(events[0], SessionCreated)
    assert events[0].session_id == record.id
    assert events[-1] == DoneEvent(summary="Nothing needs attention today.", status="completed")
    assert record.status == SessionStatus.COMPLETED
    assert record.turns_used == 1
    assert record.summary == "Nothing needs attention today."


@pytest.mark.asyncio
async def test_turn_cap_stops_before_third_model_call(app, client, run_session):
    client.responses = [tool_response(("search_members", {"query": "Dana"})) for _ in range(3)]

    events, record = await run_session(max_turns=2)

    assert types_of(events) == [
        "session_created",
        "tool_call",
        "tool_result",
        "tool_call",
        "tool_result",
        "budget_exceeded",
    ]
    assert events[-1] == BudgetExceeded(reason="turns", turns_used=2, cost_cents=0.0)
    assert len(client.calls) == 2
    assert len(client.responses) == 1
    assert record.status == SessionStatus.BUDGET_EXCEEDED
    assert record.turns_used == 2

    turns = await app.sessions.list_turns(record.id)
    assert [t.turn_index for t in turns] == [0, 1]
    assert all(len(t.results) == 1 and not t.results[0].is_error for t in turns)


@pytest.mark.asyncio
async def test_cost_cap_projects_next_turn(client, run_session):
    # 100k input tokens at $3/M with a 1.3 markup is about 39 cents per turn.
    client.responses = [
        tool_response(("search_members", {"query": "Dana"}), input_tokens=100_000),
        tool_response(("search_members", {"query": "Luis"}), input_tokens=100_000),
    ]

    events, record = await run_session(role="front_desk", budget_cents=50)

    assert isinstance(events[-1], BudgetExceeded)
    assert events[-1].reason == "cost"
    assert events[-1].turns_used == 1
    assert events[-1].cost_cents == pytest.approx(39.0)
    assert len(client.calls) == 1
    assert record.cost_cents == pytest.approx(39.0)


@pytest.mark.asyncio
async def test_low_confidence_send_suspends_session(app, client, run_session):
    client.responses = [
        tool_response(
            (
                "send_email",
                {"member_id": "m-100", "subject": "We miss you", "body": "Come back soon!", "confidence": 0.4},
            )
        ),
        text_response("should never be requested"),
    ]

    events, record = await run_session(role="gm")

    assert types_of(events) == ["session_created", "tool_call", "awaiting_approval"]
    assert sum(isinstance(e, AwaitingApproval) for e in events) == 1
    assert events[-1].tool_call["name"] == "send_email"
    assert len(client.calls) == 1
    assert record.status == SessionStatus.AWAITING_APPROVAL

    pending = await app.approvals.list_pending(ACCOUNT)
    assert [p.id for p in pending] == [events[-1].approval_id]
    assert pending[0].tool_call.input["confidence"] == 0.4
    assert await app.outbound.count_last_day(ACCOUNT) == 0

    turns = await app.sessions.list_turns(record.id)
    assert turns[-1].results[0].is_pending


@pytest.mark.asyncio
async def test_calls_after_pending_call_are_not_executed(app, client, run_session):
    client.responses = [
        tool_response(
            ("send_email", {"member_id": "m-100", "subject": "Hi", "body": "Checking in"}),
            ("save_memory", {"category": "pattern", "content": "Dana prefers mornings"}),
        )
    ]

    events, record = await run_session(role="gm")

    assert types_of(events) == ["session_created", "tool_call", "awaiting_approval"]
    turns = await app.sessions.list_turns(record.id)
    pending, skipped = turns[0].results
    assert pending.is_pending
    assert skipped.is_error
    assert "awaiting approval" in skipped.error
    assert await app.memories.list_for_account(ACCOUNT) == []


@pytest.mark.asyncio
async def test_high_confidence_send_executes(app, client, run_session):
    client.responses = [
        tool_response(
            (
                "send_email",
                {"member_id": "m-100", "subject": "We miss you", "body": "Come back soon!", "confidence": 0.95},
            )
        ),
        text_response("Sent a check-in to Dana."),
    ]

    events, record = await run_session(role="gm")

    assert types_of(events) == ["session_created", "tool_call", "tool_result", "message", "done"]
    assert events[2].error is None
    assert events[2].output["status"] == "queued"
    assert record.status == SessionStatus.COMPLETED
    assert await app.outbound.count_last_day(ACCOUNT) == 1


@pytest.mark.asyncio
async def test_model_failure_after_retries_fails_session(app_factory, client):
    app = await app_factory(runtime=RuntimeConfig(model_retries=1, retry_backoff_seconds=2.0))
    app.session_manager.deps.sleep = AsyncMock()
    client.responses = [RuntimeError("overloaded"), RuntimeError("overloaded")]

    config = app.session_manager.session_config(ACCOUNT, "gm", "Review renewals")
    events = await collect(app.session_manager.stream(config))
    record = await app.sessions.require(config.id)

    assert types_of(events) == ["session_created", "error"]
    assert isinstance(events[-1], ErrorEvent)
    assert "after 2 attempts" in events[-1].message
    assert len(client.calls) == 2
    app.session_manager.deps.sleep.assert_awaited_once_with(2.0)
    assert record.status == SessionStatus.FAILED
    assert "overloaded" in record.error


@pytest.mark.asyncio
async def test_model_failure_then_success_recovers(client, run_session):
    client.responses = [RuntimeError("connection reset"), text_response("Recovered and done.")]

    events, record = await run_session()

    assert types_of(events) == ["session_created", "message", "done"]
    assert len(client.calls) == 2
    assert record.status == SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_model_timeout_counts_as_failure(app_factory, client):
    app = await app_factory(
        runtime=RuntimeConfig(model_retries=0, model_timeout_seconds=0.05, retry_backoff_seconds=0.0)
    )

    async def hang(messages):
        await asyncio.sleep(5)
        return text_response("too late")

    client.responses = [hang]
    config = app.session_manager.session_config(ACCOUNT, "gm", "Review renewals")
    events = await collect(app.session_manager.stream(config))

    assert types_of(events) == ["session_created", "error"]
    record = await app.sessions.require(config.id)
    assert record.status == SessionStatus.FAILED


@pytest.mark.asyncio
async def test_tool_error_is_fed_back_to_model(client, run_session):
    client.responses = [
        tool_response(("get_member_detail", {"member_id": "m-404"})),
        text_response("That member does not exist."),
    ]

    events, record = await run_session(role="front_desk")

    results = [e for e in events if isinstance(e, ToolResultEvent)]
    assert results[0].error == "Member m-404 not found"
    assert record.status == SessionStatus.COMPLETED

    feedback = client.calls[1]["messages"][-1]
    assert feedback["role"] == "user"
    assert feedback["content"][0]["is_error"] is True
    assert feedback["content"][0]["content"] == "Member m-404 not found"


@pytest.mark.asyncio
async def test_tool_outside_role_groups_is_refused(app, client, run_session):
    client.responses = [
        tool_response(("send_email", {"member_id": "m-100", "subject": "Hi", "body": "Hello"})),
        text_response("I cannot send email from here."),
    ]

    events, record = await run_session(role="front_desk")

    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.error == "Tool 'send_email' is not available to the front_desk role"
    assert await app.outbound.count_last_day(ACCOUNT) == 0
    assert record.status == SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_malformed_tool_input_is_reported(client, run_session):
    client.responses = [
        tool_response(("get_member_detail", {"id": "m-100"})),
        text_response("Done."),
    ]

    events, _ = await run_session(role="front_desk")

    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.error.startswith("Invalid input for get_member_detail")


@pytest.mark.asyncio
async def test_text_only_turn_gets_continue_nudge(client, run_session):
    client.responses = [
        text_response("Let me think about this", stop_reason="max_tokens"),
        text_response("All done."),
    ]

    events, record = await run_session()

    assert types_of(events) == ["session_created", "message", "message", "done"]
    assert len(client.calls) == 2
    assert client.calls[1]["messages"][-1] == {"role": "user", "content": "Continue."}
    assert record.turns_used == 2


@pytest.mark.asyncio
async def test_cancel_stops_at_next_turn_boundary(app, client):
    manager = app.session_manager
    config = manager.session_config(ACCOUNT, "front_desk", "Answer Dana")
    handle = manager.start(config)

    def cancel_during_turn(messages):
        handle.cancel()
        return tool_response(("search_members", {"query": "Dana"}))

    client.responses = [cancel_during_turn, tool_response(("search_members", {"query": "Luis"}))]

    events = await handle.collect()
    status = await handle.wait()

    assert status == SessionStatus.CANCELLED
    assert types_of(events) == ["session_created", "tool_call", "tool_result", "done"]
    assert events[-1].status == "cancelled"
    assert len(client.calls) == 1
    record = await app.sessions.require(config.id)
    assert record.status == SessionStatus.CANCELLED
    assert record.turns_used == 1


@pytest.mark.asyncio
async def test_cancel_flag_in_store_is_honoured(app, client):
    manager = app.session_manager
    config = manager.session_config(ACCOUNT, "front_desk", "Answer Dana")

    async def flag_cancel(messages):
        assert await app.sessions.request_cancel(config.id)
        return tool_response(("search_members", {"query": "Dana"}))

    client.responses = [flag_cancel]
    events = await collect(manager.stream(config))

    assert events[-1] == DoneEvent(summary="Session cancelled", status="cancelled")
    record = await app.sessions.require(config.id)
    assert record.cancel_requested
    assert record.status == SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_unknown_session_returns_false(app):
    assert await app.session_manager.cancel("no-such-session") is False


@pytest.mark.asyncio
async def test_shutdown_mid_call_records_cancelled(app, client):
    async def hang(messages):
        await asyncio.sleep(30)
        return text_response("too late")

    client.responses = [hang]
    config = app.session_manager.session_config(ACCOUNT, "gm", "Long task")
    app.session_manager.start(config)

    async def wait_for_call():
        while not client.calls:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(wait_for_call(), timeout=5)
    await app.supervisor.shutdown()

    record = await app.sessions.require(config.id)
    assert record.status == SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_store_failure_fails_session(app, client):
    app.session_manager.deps.sleep = AsyncMock()
    client.responses = [text_response("Finished.")]
    config = app.session_manager.session_config(ACCOUNT, "gm", "Review renewals")

    with patch.object(app.sessions, "persist_turn", AsyncMock(side_effect=RuntimeError("disk I/O error"))) as persist:
        events = await collect(app.session_manager.stream(config))

    assert types_of(events) == ["session_created", "message", "error"]
    assert "persist_turn failed" in events[-1].message
    assert persist.await_count == app.config.runtime.store_retries + 1
    record = await app.sessions.require(config.id)
    assert record.status == SessionStatus.FAILED


@pytest.mark.asyncio
async def test_stalled_consumer_does_not_block_session(app_factory, client):
    app = await app_factory(
        runtime=RuntimeConfig(event_buffer_size=1, event_emit_timeout_seconds=0.01, retry_backoff_seconds=0.0)
    )
    client.responses = [
        tool_response(("search_members", {"query": "Dana"})),
        tool_response(("search_members", {"query": "Luis"})),
        text_response("Done."),
    ]
    config = app.session_manager.session_config(ACCOUNT, "gm", "Look around")
    handle = app.session_manager.start(config)

    status = await asyncio.wait_for(handle.wait(), timeout=5)

    assert status == SessionStatus.COMPLETED
    record = await app.sessions.require(config.id)
    assert record.turns_used == 3


@pytest.mark.asyncio
async def test_empty_response_completes_with_default_summary(client, run_session):
    client.responses = [ModelResponse(content_blocks=[], stop_reason="end_turn")]

    events, record = await run_session()

    assert types_of(events) == ["session_created", "done"]
    assert record.summary == "Session completed"
    assert isinstance(events[0], SessionCreated)
    assert not any(isinstance(e, MessageEvent) for e in events)


@pytest.mark.asyncio
async def test_zero_budget_never_calls_model(client, run_session):
    client.responses = [text_response("Should not be seen.")]

    events, record = await run_session(budget_cents=0)

    assert types_of(events) == ["session_created", "budget_exceeded"]
    assert events[-1].reason == "cost"
    assert client.calls == []
    assert record.status == SessionStatus.BUDGET_EXCEEDED
    assert record.turns_used == 0


@pytest.mark.asyncio
async def test_wall_clock_timeout_stops_at_next_turn(app, client, run_session):
    now = [1000.0]
    app.session_manager.deps.clock = lambda: now[0]

    def slow_search(messages):
        now[0] += 31.0
        return tool_response(("search_members", {"query": "Dana"}))

    client.responses = [slow_search, tool_response(("search_members", {"query": "Luis"}))]

    events, record = await run_session(timeout_seconds=30)

    assert types_of(events) == ["session_created", "tool_call", "tool_result", "budget_exceeded"]
    assert events[-1].reason == "timeout"
    assert events[-1].turns_used == 1
    assert len(client.calls) == 1
    assert record.status == SessionStatus.BUDGET_EXCEEDED
    turns = await app.sessions.list_turns(record.id)
    assert len(turns) == 1
    assert not turns[0].results[0].is_error


@pytest.mark.asyncio
async def test_slow_consumer_still_sees_terminal_event(app_factory, client):
    app = await app_factory(
        runtime=RuntimeConfig(event_buffer_size=3, event_emit_timeout_seconds=5.0, retry_backoff_seconds=0.0)
    )
    client.responses = [
        tool_response(("search_members", {"query": "Dana"})),
        text_response("Dana is active."),
    ]
    config = app.session_manager.session_config(ACCOUNT, "gm", "Look around")
    handle = app.session_manager.start(config)

    seen = []
    async for event in handle:
        seen.append(event.type)
        await asyncio.sleep(0.05)

    assert seen == ["session_created", "tool_call", "tool_result", "message", "done"]
    assert await handle.wait() == SessionStatus.COMPLETED
