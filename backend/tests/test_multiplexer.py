"""Tests for scoped subscriptions and typed change events."""

import asyncio

import pytest

from app.core.errors import TransportError
from app.core.feed import ChangeFeed, EventKind, EventMask
from app.services.chat.messages import MessageStore
from app.services.chat.presence import PresenceTracker
from app.services.chat.typing_state import TypingTracker
from app.services.realtime.events import (
    MessageInserted,
    MessageUpdated,
    ProfileChanged,
    TypingChanged,
    to_payload,
)
from app.services.realtime.multiplexer import ChangeMultiplexer, ConversationScope, UserScope


async def _next(subscription, timeout=1.0):
    return await asyncio.wait_for(subscription.__anext__(), timeout)


@pytest.mark.asyncio
async def test_conversation_scope_streams_inserts_and_updates(engine, alice, bob, make_conversation, context_for):
    conversation_id = make_conversation(alice, bob)
    subscription = ChangeMultiplexer().subscribe(ConversationScope(conversation_id))

    async with subscription:
        sent = await MessageStore(context_for(alice), engine=engine).append(conversation_id, alice.id, "Hi Bob!")
        await MessageStore(context_for(bob), engine=engine).mark_read(sent.id)

        inserted = await _next(subscription)
        assert isinstance(inserted, MessageInserted)
        assert inserted.message.id == sent.id
        assert inserted.message.read_at is None

        updated = await _next(subscription)
        assert isinstance(updated, MessageUpdated)
        assert updated.message.id == sent.id
        assert updated.message.read_at is not None
        assert updated.previous["is_read"] is False

    assert subscription.closed


@pytest.mark.asyncio
async def test_conversation_scope_never_sees_other_conversations(
    engine, alice, bob, carol, make_conversation, context_for
):
    conversation_x = make_conversation(alice, bob)
    conversation_y = make_conversation(alice, carol)
    store = MessageStore(context_for(alice), engine=engine)

    async with ChangeMultiplexer().subscribe(ConversationScope(conversation_y)) as subscription:
        await store.append(conversation_x, alice.id, "for bob only")
        await store.append(conversation_y, alice.id, "for carol")

        event = await _next(subscription)
        assert event.message.content == "for carol"
        with pytest.raises(asyncio.TimeoutError):
            await _next(subscription, timeout=0.1)


@pytest.mark.asyncio
async def test_conversation_scope_includes_typing(engine, alice, bob, make_conversation, context_for):
    conversation_id = make_conversation(alice, bob)
    tracker = TypingTracker(context_for(alice), engine=engine)

    async with ChangeMultiplexer().subscribe(ConversationScope(conversation_id)) as subscription:
        await tracker.set_typing(conversation_id, alice.id, True)
        await tracker.set_typing(conversation_id, alice.id, False)

        started = await _next(subscription)
        stopped = await _next(subscription)

    assert isinstance(started, TypingChanged)
    assert started.event_kind == EventKind.INSERT
    assert started.is_typing is True
    assert stopped.event_kind == EventKind.UPDATE
    assert stopped.is_typing is False
    assert to_payload(stopped)["user_id"] == alice.id


@pytest.mark.asyncio
async def test_mask_narrows_message_events(engine, alice, bob, make_conversation, context_for):
    conversation_id = make_conversation(alice, bob)
    scope = ConversationScope(conversation_id)

    async with ChangeMultiplexer().subscribe(scope, EventMask.UPDATE) as subscription:
        sent = await MessageStore(context_for(alice), engine=engine).append(conversation_id, alice.id, "x")
        await MessageStore(context_for(bob), engine=engine).mark_read(sent.id)

        event = await _next(subscription)
        assert isinstance(event, MessageUpdated)


@pytest.mark.asyncio
async def test_user_scope_sees_all_messages_and_profiles(engine, alice, bob, carol, make_conversation, context_for):
    conversation_id = make_conversation(bob, carol)

    async with ChangeMultiplexer().subscribe(UserScope(alice.id)) as subscription:
        await MessageStore(context_for(bob), engine=engine).append(conversation_id, bob.id, "elsewhere")
        await PresenceTracker(context_for(carol), engine=engine).set_online(True)

        message_event = await _next(subscription)
        profile_event = await _next(subscription)

    assert isinstance(message_event, MessageInserted)
    assert message_event.message.conversation_id == conversation_id
    assert isinstance(profile_event, ProfileChanged)
    assert profile_event.profile.id == carol.id
    assert profile_event.profile.is_online is True


@pytest.mark.asyncio
async def test_subscription_observes_only_from_now(engine, alice, bob, make_conversation, context_for):
    conversation_id = make_conversation(alice, bob)
    store = MessageStore(context_for(alice), engine=engine)
    await store.append(conversation_id, alice.id, "before")

    async with ChangeMultiplexer().subscribe(ConversationScope(conversation_id)) as subscription:
        await store.append(conversation_id, alice.id, "after")
        event = await _next(subscription)

    assert event.message.content == "after"


@pytest.mark.asyncio
async def test_closed_subscription_ends_iteration(alice):
    subscription = ChangeMultiplexer().subscribe(UserScope(alice.id))
    subscription.close()

    received = [event async for event in subscription]
    assert received == []


@pytest.mark.asyncio
async def test_dropped_feed_raises_transport_error(alice):
    local_feed = ChangeFeed()
    subscription = ChangeMultiplexer(local_feed).subscribe(UserScope(alice.id))

    local_feed.close()

    with pytest.raises(TransportError):
        await _next(subscription)
