"""Scoped live subscriptions over the change feed."""

import logging
import uuid
from dataclasses import dataclass
from typing import Union

from app.core.feed import Binding, ChangeFeed, EventMask, Listener, feed
from app.services.realtime.events import ChatEvent, to_typed_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationScope:
    """Messages and typing indicators of one conversation."""

    conversation_id: uuid.UUID

    def bindings(self, mask: EventMask | None = None) -> list[Binding]:
        return [
            Binding("messages", mask or (EventMask.INSERT | EventMask.UPDATE), "conversation_id", self.conversation_id),
            Binding("typing_indicators", EventMask.ALL, "conversation_id", self.conversation_id),
        ]


@dataclass(frozen=True)
class UserScope:
    """Every message change plus every profile change, for a signed-in user.

    Message events are not narrowed to the user's conversations here;
    consumers filter downstream.
    """

    user_id: uuid.UUID

    def bindings(self, mask: EventMask | None = None) -> list[Binding]:
        return [
            Binding("messages", mask or EventMask.ALL),
            Binding("profiles", EventMask.ALL),
        ]


Scope = Union[ConversationScope, UserScope]


class Subscription:
    """Async iterator of typed events for one scope, in commit order.

    Observes changes from the moment it was opened. Not resumable: after
    ``close()`` (or a dropped connection) a new subscription must be opened.
    """

    def __init__(self, scope: Scope, listener: Listener):
        self.scope = scope
        self._listener = listener

    @property
    def closed(self) -> bool:
        return self._listener.closed

    def close(self) -> None:
        if not self._listener.closed:
            logger.debug(f"Closing subscription for {self.scope}")
        self._listener.close()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChatEvent:
        while True:
            change = await self._listener.get()
            event = to_typed_event(change)
            if event is not None:
                return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class ChangeMultiplexer:
    def __init__(self, change_feed: ChangeFeed | None = None):
        self._feed = change_feed or feed

    def subscribe(self, scope: Scope, mask: EventMask | None = None) -> Subscription:
        """Open a live subscription. Must be called from a running event loop."""
        listener = self._feed.listen(scope.bindings(mask))
        logger.debug(f"Subscribed to {scope}")
        return Subscription(scope, listener)
