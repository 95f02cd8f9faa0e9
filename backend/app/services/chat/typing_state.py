"""Typing indicators: an upserted boolean per (conversation, user).

The store keeps no expiry of its own. The writer clears its flag through
``TypingDebouncer``; readers additionally treat indicators that have not been
touched for ``typing_stale_after`` seconds as "not typing", so a client that
vanished mid-sentence does not leave its peer staring at a stuck indicator.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core import database
from app.core.config import settings
from app.core.errors import ChatError
from app.models import TypingIndicator
from app.services.chat import policy
from app.services.chat.context import SessionContext

logger = logging.getLogger(__name__)


def is_fresh(updated_at: datetime | None, stale_after: float | None = None, now: datetime | None = None) -> bool:
    if updated_at is None:
        return False
    limit = settings.typing_stale_after if stale_after is None else stale_after
    now = now or datetime.now(timezone.utc)
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return (now - updated_at).total_seconds() <= limit


class TypingTracker:
    def __init__(self, context: SessionContext, engine: Engine | None = None, stale_after: float | None = None):
        self.context = context
        self._engine = engine or database.engine
        self.stale_after = settings.typing_stale_after if stale_after is None else stale_after

    async def set_typing(self, conversation_id: uuid.UUID, user_id: uuid.UUID, is_typing: bool) -> TypingIndicator:
        policy.require_self(user_id, self.context.user_id, "set the typing state of")

        with Session(self._engine) as session:
            policy.visible_conversation(session, conversation_id, user_id)
            try:
                return self._upsert(session, conversation_id, user_id, is_typing)
            except IntegrityError:
                # Lost an insert race against another tab of the same user
                session.rollback()
                return self._upsert(session, conversation_id, user_id, is_typing)

    async def get(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> TypingIndicator | None:
        with Session(self._engine) as session:
            policy.visible_conversation(session, conversation_id, self.context.user_id)
            return self._find(session, conversation_id, user_id)

    async def is_typing(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        indicator = await self.get(conversation_id, user_id)
        if indicator is None or not indicator.is_typing:
            return False
        return is_fresh(indicator.updated_at, self.stale_after)

    def _find(self, session: Session, conversation_id: uuid.UUID, user_id: uuid.UUID) -> TypingIndicator | None:
        return session.exec(
            select(TypingIndicator).where(
                TypingIndicator.conversation_id == conversation_id,
                TypingIndicator.user_id == user_id,
            )
        ).first()

    def _upsert(
        self, session: Session, conversation_id: uuid.UUID, user_id: uuid.UUID, is_typing: bool
    ) -> TypingIndicator:
        indicator = self._find(session, conversation_id, user_id)
        if indicator:
            indicator.is_typing = is_typing
            indicator.updated_at = datetime.now(timezone.utc)
        else:
            indicator = TypingIndicator(conversation_id=conversation_id, user_id=user_id, is_typing=is_typing)
        session.add(indicator)
        session.commit()
        session.refresh(indicator)
        return indicator


class TypingDebouncer:
    """Keystroke-driven typing signal for one conversation.

    Every keystroke writes ``True`` and re-arms the inactivity timer. When the
    timer fires, or ``stop()`` is awaited (send, teardown), ``False`` is written.
    Write failures are logged and dropped.
    """

    def __init__(self, tracker: TypingTracker, conversation_id: uuid.UUID, timeout: float | None = None):
        self.tracker = tracker
        self.conversation_id = conversation_id
        self.timeout = settings.typing_timeout if timeout is None else timeout
        self.active = False
        self._timer: asyncio.Task | None = None

    async def keystroke(self) -> None:
        self._cancel_timer()
        self.active = True
        await self._write(True)
        self._timer = asyncio.create_task(self._expire())

    async def stop(self) -> None:
        self._cancel_timer()
        if self.active:
            await self._flush()

    async def _expire(self) -> None:
        await asyncio.sleep(self.timeout)
        self._timer = None
        await self._flush()

    async def _flush(self) -> None:
        self.active = False
        await self._write(False)

    def _cancel_timer(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None

    async def _write(self, is_typing: bool) -> None:
        try:
            await self.tracker.set_typing(self.conversation_id, self.tracker.context.user_id, is_typing)
        except (ChatError, SQLAlchemyError) as e:
            logger.error(f"Error updating typing indicator: {e}")
