"""Conversation and message models for one-to-one chat."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import CheckConstraint, Index, event, update
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement
from sqlmodel import Field, Relationship, SQLModel

from app.models.types import UTCDateTime


class least(FunctionElement):
    inherit_cache = True
    name = "least"


class greatest(FunctionElement):
    inherit_cache = True
    name = "greatest"


@compiles(least)
def _compile_least(element: Any, compiler: Any, **kw: Any) -> str:
    return "LEAST(%s)" % compiler.process(element.clauses, **kw)


@compiles(greatest)
def _compile_greatest(element: Any, compiler: Any, **kw: Any) -> str:
    return "GREATEST(%s)" % compiler.process(element.clauses, **kw)


# SQLite spells these as the multi-argument scalar min()/max()
@compiles(least, "sqlite")
def _compile_least_sqlite(element: Any, compiler: Any, **kw: Any) -> str:
    return "min(%s)" % compiler.process(element.clauses, **kw)


@compiles(greatest, "sqlite")
def _compile_greatest_sqlite(element: Any, compiler: Any, **kw: Any) -> str:
    return "max(%s)" % compiler.process(element.clauses, **kw)


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"
    __table_args__ = (
        CheckConstraint("participant_1 != participant_2", name="different_participants"),
        Index("idx_conversations_participant_1", "participant_1"),
        Index("idx_conversations_participant_2", "participant_2"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    participant_1: uuid.UUID = Field(foreign_key="profiles.id", ondelete="CASCADE")
    participant_2: uuid.UUID = Field(foreign_key="profiles.id", ondelete="CASCADE")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=UTCDateTime)

    messages: list["Message"] = Relationship(back_populates="conversation")

    def peer_of(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.participant_2 if self.participant_1 == user_id else self.participant_1

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.participant_1, self.participant_2)


# One conversation per unordered pair
Index(
    "idx_conversations_participants",
    least(Conversation.participant_1, Conversation.participant_2),
    greatest(Conversation.participant_1, Conversation.participant_2),
    unique=True,
)


class Message(SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_conversation", "conversation_id"),
        Index("idx_messages_sender", "sender_id"),
        Index("idx_messages_created_at", "created_at"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    conversation_id: uuid.UUID = Field(foreign_key="conversations.id", ondelete="CASCADE")
    sender_id: uuid.UUID = Field(foreign_key="profiles.id", ondelete="CASCADE")
    content: str
    is_read: bool = Field(default=False)
    delivered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=UTCDateTime)
    read_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=UTCDateTime)

    conversation: Optional[Conversation] = Relationship(back_populates="messages")


@event.listens_for(Message, "after_insert")
def _touch_conversation(_mapper: Any, connection: Any, target: Message) -> None:
    """Bump the parent conversation's activity timestamp on every new message."""
    table = Conversation.__table__
    connection.execute(
        update(table)
        .where(table.c.id == target.conversation_id)
        .values(updated_at=datetime.now(timezone.utc))
    )
