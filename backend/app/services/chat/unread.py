"""Per-peer unread counts for the signed-in user.

Counts are recomputed from scratch whenever any message changes anywhere.
Every peer the user has a conversation with appears in the map, with 0 when
nothing is unread; peers without a conversation are absent.
"""

import asyncio
import logging
import uuid
from typing import Callable

from sqlalchemy import func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core import database
from app.core.errors import ChatError, TransportError
from app.models import Conversation, Message
from app.services.chat.context import SessionContext
from app.services.realtime.events import MessageDeleted, MessageInserted, MessageUpdated
from app.services.realtime.multiplexer import ChangeMultiplexer, Subscription, UserScope

logger = logging.getLogger(__name__)

UnreadListener = Callable[[dict[uuid.UUID, int]], None]


class UnreadAggregator:
    def __init__(
        self,
        context: SessionContext,
        engine: Engine | None = None,
        multiplexer: ChangeMultiplexer | None = None,
    ):
        self.context = context
        self._engine = engine or database.engine
        self._multiplexer = multiplexer or ChangeMultiplexer()
        self.counts: dict[uuid.UUID, int] = {}
        self._listeners: list[UnreadListener] = []
        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None

    async def recompute(self, current_user_id: uuid.UUID | None = None) -> dict[uuid.UUID, int]:
        user_id = current_user_id or self.context.user_id
        counts: dict[uuid.UUID, int] = {}

        with Session(self._engine) as session:
            conversations = session.exec(
                select(Conversation).where(
                    or_(Conversation.participant_1 == user_id, Conversation.participant_2 == user_id)
                )
            ).all()

            for conversation in conversations:
                counts[conversation.peer_of(user_id)] = session.exec(
                    select(func.count())
                    .select_from(Message)
                    .where(
                        Message.conversation_id == conversation.id,
                        Message.is_read == False,  # noqa: E712
                        Message.sender_id != user_id,
                    )
                ).one()

        return counts

    def add_listener(self, listener: UnreadListener) -> None:
        self._listeners.append(listener)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Subscribe, compute the initial map, then keep it current until stop()."""
        if self.running:
            return
        self._subscription = self._multiplexer.subscribe(UserScope(self.context.user_id))
        await self.refresh()
        self._task = asyncio.create_task(self._watch(self._subscription))

    async def stop(self) -> None:
        if self._subscription:
            self._subscription.close()
            self._subscription = None
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def refresh(self) -> dict[uuid.UUID, int]:
        try:
            self.counts = await self.recompute()
        except (ChatError, SQLAlchemyError):
            logger.exception("Error fetching unread counts")
            return self.counts

        for listener in list(self._listeners):
            try:
                listener(dict(self.counts))
            except Exception:
                logger.exception(f"Unread listener error: {listener}")
        return self.counts

    async def _watch(self, subscription: Subscription) -> None:
        try:
            async for event in subscription:
                if isinstance(event, (MessageInserted, MessageUpdated, MessageDeleted)):
                    await self.refresh()
        except TransportError as e:
            logger.warning(f"Unread counts are frozen, subscription lost: {e}")
