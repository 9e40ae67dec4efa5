import pytest

from am4m_social.application.connections import ConnectionService
from am4m_social.application.conversations import ConversationProjection
from am4m_social.domain.models import NO_MESSAGES_PLACEHOLDER, ConnectionStatus

from .conftest import USER_X, USER_Y, USER_Z


@pytest.fixture
def projection(connections, messages, profiles):
    return ConversationProjection(connections, messages, profiles)


@pytest.mark.asyncio
async def test_no_connections_gives_empty_list(projection, messages, profiles):
    assert await projection.list_conversations(USER_X) == []
    assert messages.latest_calls == 0
    assert profiles.brief_calls == 0


@pytest.mark.asyncio
async def test_accepted_request_appears_for_both_sides(projection, connections, profiles):
    """After Y accepts, both X and Y see the conversation"""
    service = ConnectionService(connections, profiles)
    request = await service.request_connection(USER_X, USER_Y)
    await service.accept_connection(request.id, USER_Y)

    for viewer, other in ((USER_X, USER_Y), (USER_Y, USER_X)):
        conversations = await projection.list_conversations(viewer)
        assert len(conversations) == 1
        conversation = conversations[0]
        assert conversation.id == request.id
        assert conversation.counterpart.id == other
        assert conversation.last_message is None
        assert conversation.has_messages is False
        assert conversation.preview == NO_MESSAGES_PLACEHOLDER


@pytest.mark.asyncio
async def test_pending_and_declined_connections_are_excluded(projection, connections):
    connections.add(USER_X, USER_Y)
    connections.add(USER_Z, USER_Y, status=ConnectionStatus.DECLINED)

    assert await projection.list_conversations(USER_Y) == []


@pytest.mark.asyncio
async def test_last_message_and_activity_order(projection, connections, messages):
    older = connections.add(USER_X, USER_Y, status=ConnectionStatus.ACCEPTED)
    newer = connections.add(USER_Z, USER_Y, status=ConnectionStatus.ACCEPTED)
    messages.add(newer.id, USER_Z, "Salaam")
    messages.add(older.id, USER_X, "First")
    messages.add(older.id, USER_Y, "Latest reply")

    conversations = await projection.list_conversations(USER_Y)

    assert [c.id for c in conversations] == [older.id, newer.id]
    assert conversations[0].preview == "Latest reply"
    assert conversations[1].last_message.content == "Salaam"


@pytest.mark.asyncio
async def test_batched_lookups(projection, connections, messages, profiles):
    for other in (USER_X, USER_Z):
        connections.add(other, USER_Y, status=ConnectionStatus.ACCEPTED)

    await projection.list_conversations(USER_Y)

    assert profiles.brief_calls == 1
    assert messages.latest_calls == 1


@pytest.mark.asyncio
async def test_missing_counterpart_profile_keeps_entry(projection, connections, profiles):
    connection = connections.add(USER_X, USER_Y, status=ConnectionStatus.ACCEPTED)
    del profiles.profiles[USER_X]

    conversations = await projection.list_conversations(USER_Y)

    assert [c.id for c in conversations] == [connection.id]
    assert conversations[0].counterpart is None
