"""Conversation to session pointer: compare-and-set under concurrent linkers."""

from __future__ import annotations

import asyncio

import pytest

from conftest import ACCOUNT, make_session_record

from gym_agents.core.types import SessionStatus


async def _conversation(app):
    return await app.conversations.create(
        account_id=ACCOUNT, contact_id="m-100", channel="email", assigned_role="front_desk"
    )


@pytest.mark.asyncio
async def test_concurrent_cas_has_one_winner(app):
    conversation = await _conversation(app)

    results = await asyncio.gather(
        app.conversations.link_session(conversation.id, "s-a", expected_session_id=None),
        app.conversations.link_session(conversation.id, "s-b", expected_session_id=None),
    )

    assert sorted(results) == [False, True]
    winner = "s-a" if results[0] else "s-b"
    assert (await app.conversations.get(conversation.id)).session_id == winner


@pytest.mark.asyncio
async def test_concurrent_manager_links_have_one_winner(app):
    conversation = await _conversation(app)
    for session_id in ("s-a", "s-b"):
        await app.sessions.create(make_session_record(session_id, conversation_id=conversation.id))

    results = await asyncio.gather(
        app.session_manager.link_conversation(conversation.id, "s-a"),
        app.session_manager.link_conversation(conversation.id, "s-b"),
    )

    assert sorted(results) == [False, True]


@pytest.mark.asyncio
async def test_running_session_keeps_the_link(app):
    conversation = await _conversation(app)
    await app.sessions.create(make_session_record("s-running"))
    assert await app.session_manager.link_conversation(conversation.id, "s-running")

    assert await app.session_manager.link_conversation(conversation.id, "s-new") is False
    assert (await app.conversations.get(conversation.id)).session_id == "s-running"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [SessionStatus.COMPLETED, SessionStatus.AWAITING_APPROVAL])
async def test_finished_or_suspended_session_can_be_replaced(app, status):
    conversation = await _conversation(app)
    await app.sessions.create(make_session_record("s-old", status=status))
    await app.conversations.link_session(conversation.id, "s-old")

    assert await app.session_manager.link_conversation(conversation.id, "s-new")
    assert (await app.conversations.get(conversation.id)).session_id == "s-new"


@pytest.mark.asyncio
async def test_relinking_same_session_is_a_no_op(app):
    conversation = await _conversation(app)
    await app.sessions.create(make_session_record("s-a"))
    assert await app.session_manager.link_conversation(conversation.id, "s-a")
    assert await app.session_manager.link_conversation(conversation.id, "s-a")


@pytest.mark.asyncio
async def test_missing_conversation(app):
    assert await app.session_manager.link_conversation("missing", "s-a") is False


@pytest.mark.asyncio
async def test_unlink_only_clears_own_pointer(app):
    conversation = await _conversation(app)
    await app.conversations.link_session(conversation.id, "s-a")

    assert await app.conversations.unlink_session(conversation.id, "s-b") is False
    assert (await app.conversations.get(conversation.id)).session_id == "s-a"
    assert await app.conversations.unlink_session(conversation.id, "s-a") is True
    assert (await app.conversations.get(conversation.id)).session_id is None


@pytest.mark.asyncio
async def test_reassign_detaches_session(app):
    conversation = await _conversation(app)
    await app.conversations.link_session(conversation.id, "s-a")

    assert await app.conversations.reassign(conversation.id, "gm")

    moved = await app.conversations.get(conversation.id)
    assert moved.session_id is None
    assert moved.assigned_role == "gm"
