from __future__ import annotations

import pytest

from gym_agents.config import RoutingConfig
from gym_agents.core.router import ChannelRouter, InboundMessage
from gym_agents.core.types import ConversationStatus, MessageDirection
from gym_agents.errors import ConversationNotFoundError
from gym_agents.storage.conversation_repo import ConversationRepository


def inbound(content: str = "Can I freeze my membership?", channel: str = "email", **kwargs) -> InboundMessage:
    params = {"contact_id": "m-100", "contact_name": "Dana Whitfield", "contact_email": "dana@example.com"}
    params.update(kwargs)
    return InboundMessage(account_id="acct-1", channel=channel, content=content, **params)


@pytest.fixture
def conversations(db) -> ConversationRepository:
    return ConversationRepository(db)


@pytest.mark.asyncio
async def test_first_message_opens_conversation(conversations):
    router = ChannelRouter(conversations, RoutingConfig())

    route = await router.route_inbound(inbound(subject="Freeze"))

    assert route.is_new
    assert route.assigned_role == "front_desk"
    assert route.conversation.subject == "Freeze"
    assert route.message.direction == MessageDirection.INBOUND
    assert route.message.sender == "Dana Whitfield"
    assert await conversations.count_messages(route.conversation.id) == 1


@pytest.mark.asyncio
async def test_follow_up_joins_open_conversation(conversations):
    router = ChannelRouter(conversations, RoutingConfig())
    first = await router.route_inbound(inbound())

    second = await router.route_inbound(inbound("Also, what are your hours?"))

    assert not second.is_new
    assert second.conversation.id == first.conversation.id
    assert [m.content for m in await conversations.list_messages(first.conversation.id)] == [
        "Can I freeze my membership?",
        "Also, what are your hours?",
    ]


@pytest.mark.asyncio
async def test_follow_up_keeps_reassigned_owner(conversations):
    router = ChannelRouter(conversations, RoutingConfig())
    first = await router.route_inbound(inbound())
    await conversations.reassign(first.conversation.id, "gm", ConversationStatus.WAITING_AGENT)

    second = await router.route_inbound(inbound("Hello?"))

    assert second.conversation.id == first.conversation.id
    assert second.assigned_role == "gm"


@pytest.mark.asyncio
async def test_resolved_or_other_channel_opens_new_thread(conversations):
    router = ChannelRouter(conversations, RoutingConfig())
    first = await router.route_inbound(inbound())

    by_sms = await router.route_inbound(inbound("Texting instead", channel="sms", contact_phone="+15550100"))
    assert by_sms.is_new
    assert by_sms.conversation.id != first.conversation.id

    await conversations.update_status(first.conversation.id, ConversationStatus.RESOLVED)
    again = await router.route_inbound(inbound("One more thing"))
    assert again.is_new
    assert again.conversation.id != first.conversation.id


@pytest.mark.asyncio
async def test_channel_roles_override_default(conversations):
    router = ChannelRouter(conversations, RoutingConfig(channel_roles={"whatsapp": "gm"}))

    assert router.resolve_role("whatsapp") == "gm"
    assert router.resolve_role("email") == "front_desk"
    route = await router.route_inbound(inbound(channel="whatsapp"))
    assert route.assigned_role == "gm"


@pytest.mark.asyncio
async def test_route_to_unknown_conversation(conversations):
    router = ChannelRouter(conversations, RoutingConfig())
    with pytest.raises(ConversationNotFoundError):
        await router.route_to_conversation("missing", inbound())


def test_sender_falls_back_through_contact_fields():
    assert inbound(contact_name=None).sender == "dana@example.com"
    assert inbound(contact_name=None, contact_email=None, contact_phone="+1555").sender == "+1555"
    assert inbound(contact_name=None, contact_email=None).sender == "unknown"
