"""Tests for the signed-in session lifecycle and the two-user scenario."""

import asyncio
import uuid

import pytest
from sqlmodel import Session

from app.core.errors import ConflictError, NotFoundError
from app.models import Profile
from app.services.chat.context import load_context
from app.services.chat.presence import PresenceTracker, register_profile
from app.services.chat.session import ChatSession
from app.services.realtime.events import MessageUpdated
from app.services.realtime.multiplexer import ChangeMultiplexer, ConversationScope


def _profile(engine, user_id):
    with Session(engine) as session:
        return session.get(Profile, user_id)


@pytest.mark.asyncio
async def test_register_profile_defaults_username_and_is_idempotent(engine):
    user_id = uuid.uuid4()
    profile = await register_profile(user_id, "erin@example.com", engine=engine)
    again = await register_profile(user_id, "erin@example.com", username="other", engine=engine)

    assert profile.username == "erin"
    assert again.id == profile.id
    assert again.username == "erin"


@pytest.mark.asyncio
async def test_register_profile_rejects_taken_username(engine, alice):
    with pytest.raises(ConflictError):
        await register_profile(uuid.uuid4(), "alice@elsewhere.org", engine=engine)


@pytest.mark.asyncio
async def test_load_context_requires_profile(engine, alice):
    context = await load_context(alice.id, engine)
    assert context.username == "alice"
    with pytest.raises(NotFoundError):
        await load_context(uuid.uuid4(), engine)


@pytest.mark.asyncio
async def test_list_peers_excludes_self_sorted_by_username(engine, carol, alice, bob, context_for):
    peers = await PresenceTracker(context_for(bob), engine=engine).list_peers()
    assert [p.username for p in peers] == ["alice", "carol"]


@pytest.mark.asyncio
async def test_session_lifecycle_tracks_presence(engine, alice):
    session = await ChatSession.for_user(alice.id, engine=engine)

    async with session:
        assert session.started
        assert session.unread.running
        online = _profile(engine, alice.id)
        assert online.is_online is True

    offline = _profile(engine, alice.id)
    assert offline.is_online is False
    assert offline.last_seen >= online.last_seen
    assert not session.unread.running


@pytest.mark.asyncio
async def test_alice_and_bob_end_to_end(engine, alice, bob, eventually):
    alice_session = await ChatSession.for_user(alice.id, engine=engine)
    bob_session = await ChatSession.for_user(bob.id, engine=engine)
    await alice_session.start()
    await bob_session.start()

    try:
        alice_window = await alice_session.select_peer(bob.id)
        conversation_id = alice_window.conversation_id
        alice_feed = ChangeMultiplexer().subscribe(ConversationScope(conversation_id))

        sent = await alice_window.send("Hi Bob!")
        assert sent.delivered_at is not None
        assert sent.read_at is None

        await eventually(lambda: bob_session.unread.counts.get(alice.id) == 1)

        bob_window = await bob_session.select_peer(alice.id)
        assert bob_window.conversation_id == conversation_id
        assert [m.content for m in bob_window.messages] == ["Hi Bob!"]

        receipt = None
        async with alice_feed:
            while receipt is None:
                event = await asyncio.wait_for(alice_feed.__anext__(), 1.0)
                if isinstance(event, MessageUpdated) and event.message.id == sent.id:
                    receipt = event
        assert receipt.message.read_at is not None

        await eventually(lambda: bob_session.unread.counts.get(alice.id) == 0)
        await eventually(lambda: alice_window.messages and alice_window.messages[0].read_at is not None)
    finally:
        await alice_session.close()
        await bob_session.close()
