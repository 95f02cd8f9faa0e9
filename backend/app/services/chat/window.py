"""The open one-to-one chat: live message list, peer typing state, sending.

Only one conversation is live per window. Selecting another peer first
flushes our typing flag and closes the old subscription, then resolves the
new conversation, subscribes, and loads history. Echoed inserts and updates
are merged into the local list by message id, so a message seen both in the
history load and on the live feed is kept once.

Store failures are logged and swallowed here; the only error that reaches
the caller is a ValidationError from ``send``.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import ChatError, TransportError
from app.models import Message
from app.services.chat.context import SessionContext
from app.services.chat.messages import MessageStore, clean_content
from app.services.chat.resolver import ConversationResolver
from app.services.chat.typing_state import TypingDebouncer, TypingTracker, is_fresh
from app.services.realtime.events import ChatEvent, MessageInserted, MessageUpdated, TypingChanged
from app.services.realtime.multiplexer import ChangeMultiplexer, ConversationScope, Subscription

logger = logging.getLogger(__name__)

StateListener = Callable[["ChatWindow"], None]


class ChatWindow:
    def __init__(
        self,
        context: SessionContext,
        engine: Engine | None = None,
        multiplexer: ChangeMultiplexer | None = None,
        typing_timeout: float | None = None,
    ):
        self.context = context
        self.resolver = ConversationResolver(context, engine=engine)
        self.store = MessageStore(context, engine=engine)
        self.typing = TypingTracker(context, engine=engine)
        self._multiplexer = multiplexer or ChangeMultiplexer()
        self._typing_timeout = typing_timeout

        self.peer_id: uuid.UUID | None = None
        self.conversation_id: uuid.UUID | None = None
        self.messages: list[Message] = []
        self.stale = False

        self._peer_typing = False
        self._peer_typing_at: datetime | None = None
        self._subscription: Subscription | None = None
        self._debouncer: TypingDebouncer | None = None
        self._pump_task: asyncio.Task | None = None
        self._listeners: list[StateListener] = []

    @property
    def peer_typing(self) -> bool:
        return self._peer_typing and is_fresh(self._peer_typing_at, self.typing.stale_after)

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    async def select_peer(self, peer_id: uuid.UUID) -> None:
        await self.close()
        self.peer_id = peer_id

        try:
            conversation_id = await self.resolver.resolve(self.context.user_id, peer_id)
        except (ChatError, SQLAlchemyError) as e:
            logger.error(f"Error initializing conversation with {peer_id}: {e}")
            return

        self.conversation_id = conversation_id
        # Subscribe before loading so nothing committed in between is missed
        self._subscription = self._multiplexer.subscribe(ConversationScope(conversation_id))
        self._debouncer = TypingDebouncer(self.typing, conversation_id, timeout=self._typing_timeout)
        self._pump_task = asyncio.create_task(self._pump(self._subscription))
        await self._load_history(conversation_id)

    async def close(self) -> None:
        """Tear down the live conversation. Safe to call repeatedly."""
        if self._debouncer:
            await self._debouncer.stop()
            self._debouncer = None
        if self._subscription:
            self._subscription.close()
            self._subscription = None
        if self._pump_task:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None

        self.peer_id = None
        self.conversation_id = None
        self.messages = []
        self.stale = False
        self._peer_typing = False
        self._peer_typing_at = None

    async def send(self, content: str) -> Message | None:
        """Send a message and wait for the store's answer.

        The message shows up in ``messages`` when its echo arrives on the feed.
        """
        text = clean_content(content)
        if self.conversation_id is None:
            return None
        if self._debouncer:
            await self._debouncer.stop()

        try:
            return await self.store.append(self.conversation_id, self.context.user_id, text)
        except (ChatError, SQLAlchemyError) as e:
            logger.error(f"Error sending message: {e}")
            return None

    async def on_keystroke(self) -> None:
        if self._debouncer:
            await self._debouncer.keystroke()

    async def handle_event(self, event: ChatEvent) -> None:
        if isinstance(event, (MessageInserted, MessageUpdated)):
            message = event.message
            if message.conversation_id != self.conversation_id:
                return
            self._merge(message)
            if isinstance(event, MessageInserted) and message.sender_id != self.context.user_id:
                await self._mark_read(message.id)

        elif isinstance(event, TypingChanged):
            indicator = event.indicator
            if indicator.conversation_id != self.conversation_id or indicator.user_id == self.context.user_id:
                return
            self._peer_typing = event.is_typing
            self._peer_typing_at = indicator.updated_at

        else:
            return

        self._notify()

    async def _load_history(self, conversation_id: uuid.UUID) -> None:
        try:
            history = await self.store.load_history(conversation_id)
        except (ChatError, SQLAlchemyError) as e:
            logger.error(f"Error loading messages: {e}")
            return

        # Echoes that beat the history load keep their place after it
        early = [m for m in self.messages if m.id not in {h.id for h in history}]
        self.messages = history + early
        self._notify()

        for message in history:
            if message.sender_id != self.context.user_id and not message.is_read:
                await self._mark_read(message.id)

    async def _mark_read(self, message_id: uuid.UUID) -> None:
        try:
            await self.store.mark_read(message_id)
        except (ChatError, SQLAlchemyError) as e:
            logger.error(f"Error marking message as read: {e}")

    def _merge(self, message: Message) -> None:
        for i, existing in enumerate(self.messages):
            if existing.id == message.id:
                self.messages[i] = message
                return
        self.messages.append(message)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception(f"Chat window listener error: {listener}")

    async def _pump(self, subscription: Subscription) -> None:
        try:
            async for event in subscription:
                await self.handle_event(event)
        except TransportError as e:
            logger.warning(f"Live updates stopped for conversation {self.conversation_id}: {e}")
            self.stale = True
