"""Tests for typing indicator upserts, staleness and the keystroke debouncer."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from app.core.errors import AuthorizationError
from app.models import TypingIndicator
from app.services.chat.typing_state import TypingDebouncer, TypingTracker, is_fresh


@pytest.fixture
def conversation_id(alice, bob, make_conversation):
    return make_conversation(alice, bob)


def _indicators(engine):
    with Session(engine) as session:
        return session.exec(select(TypingIndicator)).all()


def test_is_fresh():
    now = datetime.now(timezone.utc)
    assert is_fresh(now - timedelta(seconds=1), stale_after=5, now=now)
    assert not is_fresh(now - timedelta(seconds=6), stale_after=5, now=now)
    assert not is_fresh(None)
    # naive timestamps are read as UTC
    assert is_fresh((now - timedelta(seconds=1)).replace(tzinfo=None), stale_after=5, now=now)


@pytest.mark.asyncio
async def test_set_typing_upserts_single_row(engine, alice, conversation_id, context_for):
    tracker = TypingTracker(context_for(alice), engine=engine)

    await tracker.set_typing(conversation_id, alice.id, True)
    await tracker.set_typing(conversation_id, alice.id, False)
    await tracker.set_typing(conversation_id, alice.id, False)

    rows = _indicators(engine)
    assert len(rows) == 1
    assert rows[0].user_id == alice.id
    assert rows[0].is_typing is False


@pytest.mark.asyncio
async def test_peer_reads_typing_state(engine, alice, bob, conversation_id, context_for):
    await TypingTracker(context_for(alice), engine=engine).set_typing(conversation_id, alice.id, True)

    bob_tracker = TypingTracker(context_for(bob), engine=engine)
    assert await bob_tracker.is_typing(conversation_id, alice.id) is True
    assert await bob_tracker.is_typing(conversation_id, bob.id) is False


@pytest.mark.asyncio
async def test_stale_indicator_reads_as_not_typing(engine, alice, bob, conversation_id, context_for):
    await TypingTracker(context_for(alice), engine=engine).set_typing(conversation_id, alice.id, True)
    with Session(engine) as session:
        row = session.exec(select(TypingIndicator)).one()
        row.updated_at = datetime.now(timezone.utc) - timedelta(seconds=30)
        session.add(row)
        session.commit()

    bob_tracker = TypingTracker(context_for(bob), engine=engine, stale_after=5)
    assert await bob_tracker.is_typing(conversation_id, alice.id) is False


@pytest.mark.asyncio
async def test_cannot_set_someone_elses_indicator(engine, alice, bob, carol, conversation_id, context_for):
    with pytest.raises(AuthorizationError):
        await TypingTracker(context_for(alice), engine=engine).set_typing(conversation_id, bob.id, True)
    with pytest.raises(AuthorizationError):
        await TypingTracker(context_for(carol), engine=engine).set_typing(conversation_id, carol.id, True)
    assert _indicators(engine) == []


@pytest.mark.asyncio
async def test_debouncer_expires_after_inactivity(engine, alice, conversation_id, context_for, eventually):
    tracker = TypingTracker(context_for(alice), engine=engine)
    debouncer = TypingDebouncer(tracker, conversation_id, timeout=0.05)

    await debouncer.keystroke()
    assert _indicators(engine)[0].is_typing is True

    await eventually(lambda: not debouncer.active)
    assert _indicators(engine)[0].is_typing is False


@pytest.mark.asyncio
async def test_keystrokes_rearm_the_timer(engine, alice, conversation_id, context_for):
    tracker = TypingTracker(context_for(alice), engine=engine)
    debouncer = TypingDebouncer(tracker, conversation_id, timeout=0.2)

    for _ in range(3):
        await debouncer.keystroke()
        await asyncio.sleep(0.1)

    assert debouncer.active
    assert _indicators(engine)[0].is_typing is True
    await debouncer.stop()


@pytest.mark.asyncio
async def test_stop_flushes_not_typing(engine, alice, conversation_id, context_for):
    tracker = TypingTracker(context_for(alice), engine=engine)
    debouncer = TypingDebouncer(tracker, conversation_id, timeout=10)

    await debouncer.keystroke()
    await debouncer.stop()

    assert not debouncer.active
    assert _indicators(engine)[0].is_typing is False


@pytest.mark.asyncio
async def test_stop_without_typing_writes_nothing(engine, alice, conversation_id, context_for):
    debouncer = TypingDebouncer(TypingTracker(context_for(alice), engine=engine), conversation_id)

    await debouncer.stop()

    assert _indicators(engine) == []
