"""Signed-in chat session: presence, unread counts and the open chat window."""

import logging
import uuid

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import ChatError
from app.services.chat.context import SessionContext, load_context
from app.services.chat.presence import PresenceTracker
from app.services.chat.unread import UnreadAggregator
from app.services.chat.window import ChatWindow
from app.services.realtime.multiplexer import ChangeMultiplexer

logger = logging.getLogger(__name__)


class ChatSession:
    """Lives from sign-in to sign-out.

    ``start()`` marks the user online and begins tracking unread counts;
    ``close()`` tears the open window down, stops the unread subscription
    and marks the user offline.
    """

    def __init__(
        self,
        context: SessionContext,
        engine: Engine | None = None,
        multiplexer: ChangeMultiplexer | None = None,
        typing_timeout: float | None = None,
    ):
        self.context = context
        multiplexer = multiplexer or ChangeMultiplexer()
        self.presence = PresenceTracker(context, engine=engine)
        self.unread = UnreadAggregator(context, engine=engine, multiplexer=multiplexer)
        self.window = ChatWindow(context, engine=engine, multiplexer=multiplexer, typing_timeout=typing_timeout)
        self.started = False

    @classmethod
    async def for_user(cls, user_id: uuid.UUID, engine: Engine | None = None, **kwargs) -> "ChatSession":
        context = await load_context(user_id, engine)
        return cls(context, engine=engine, **kwargs)

    async def start(self) -> None:
        await self._set_online(True)
        await self.unread.start()
        self.started = True
        logger.info(f"Chat session started for {self.context.username or self.context.user_id}")

    async def select_peer(self, peer_id: uuid.UUID) -> ChatWindow:
        await self.window.select_peer(peer_id)
        return self.window

    async def close(self) -> None:
        await self.window.close()
        await self.unread.stop()
        if self.started:
            await self._set_online(False)
            self.started = False
        logger.info(f"Chat session closed for {self.context.username or self.context.user_id}")

    async def _set_online(self, is_online: bool) -> None:
        try:
            await self.presence.set_online(is_online)
        except (ChatError, SQLAlchemyError) as e:
            logger.error(f"Error updating presence: {e}")

    async def __aenter__(self) -> "ChatSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
