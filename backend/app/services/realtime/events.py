"""Typed change events delivered to chat subscribers.

Raw feed events (``table`` + ``old``/``new`` dicts) are turned into one of a
small set of event classes by ``to_typed_event``, the single dispatch point
every subscription goes through.
"""

import uuid
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

from app.core.feed import ChangeEvent, EventKind
from app.models import Message, Profile, TypingIndicator


@dataclass(frozen=True)
class MessageInserted:
    kind: ClassVar[str] = "message_inserted"
    message: Message


@dataclass(frozen=True)
class MessageUpdated:
    kind: ClassVar[str] = "message_updated"
    message: Message
    previous: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class MessageDeleted:
    kind: ClassVar[str] = "message_deleted"
    message_id: uuid.UUID
    conversation_id: uuid.UUID


@dataclass(frozen=True)
class TypingChanged:
    kind: ClassVar[str] = "typing_changed"
    indicator: TypingIndicator
    event_kind: EventKind

    @property
    def is_typing(self) -> bool:
        # A removed indicator means nobody is typing
        return self.event_kind != EventKind.DELETE and self.indicator.is_typing


@dataclass(frozen=True)
class ProfileChanged:
    kind: ClassVar[str] = "profile_changed"
    profile: Profile
    event_kind: EventKind


ChatEvent = Union[MessageInserted, MessageUpdated, MessageDeleted, TypingChanged, ProfileChanged]


def to_typed_event(change: ChangeEvent) -> ChatEvent | None:
    """Map a raw feed event onto its typed form. Unknown tables map to None."""
    if change.table == "messages":
        if change.event_kind == EventKind.INSERT:
            return MessageInserted(message=Message.model_validate(change.new))
        if change.event_kind == EventKind.UPDATE:
            return MessageUpdated(message=Message.model_validate(change.new), previous=change.old)
        old = change.old or {}
        return MessageDeleted(message_id=old["id"], conversation_id=old["conversation_id"])

    if change.table == "typing_indicators":
        return TypingChanged(
            indicator=TypingIndicator.model_validate(change.record),
            event_kind=change.event_kind,
        )

    if change.table == "profiles":
        return ProfileChanged(profile=Profile.model_validate(change.record), event_kind=change.event_kind)

    return None


def to_payload(event: ChatEvent) -> dict[str, Any]:
    """Flatten an event into a wire-friendly dict (values still need JSON encoding)."""
    if isinstance(event, (MessageInserted, MessageUpdated)):
        return {"type": event.kind, "message": event.message.model_dump()}
    if isinstance(event, MessageDeleted):
        return {
            "type": event.kind,
            "message_id": event.message_id,
            "conversation_id": event.conversation_id,
        }
    if isinstance(event, TypingChanged):
        return {
            "type": event.kind,
            "conversation_id": event.indicator.conversation_id,
            "user_id": event.indicator.user_id,
            "is_typing": event.is_typing,
            "updated_at": event.indicator.updated_at,
        }
    return {"type": event.kind, "event_kind": event.event_kind.value, "profile": event.profile.model_dump()}
