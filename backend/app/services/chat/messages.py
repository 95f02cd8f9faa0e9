"""Append-only message persistence with read-state transitions."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from app.core import database
from app.core.errors import AuthorizationError, NotFoundError, ValidationError
from app.models import Message
from app.services.chat import policy
from app.services.chat.context import SessionContext

logger = logging.getLogger(__name__)


def clean_content(content: str | None) -> str:
    """Trim message text. Raises ValidationError when nothing is left."""
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    return text


class MessageStore:
    def __init__(self, context: SessionContext, engine: Engine | None = None):
        self.context = context
        self._engine = engine or database.engine

    async def append(self, conversation_id: uuid.UUID, sender_id: uuid.UUID, content: str) -> Message:
        text = clean_content(content)

        with Session(self._engine) as session:
            policy.visible_conversation(session, conversation_id, self.context.user_id)
            policy.require_self(sender_id, self.context.user_id, "send messages as")

            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=text,
                delivered_at=datetime.now(timezone.utc),
            )
            session.add(message)
            session.commit()
            session.refresh(message)
            logger.debug(f"Appended message {message.id} to conversation {conversation_id}")
            return message

    async def load_history(
        self, conversation_id: uuid.UUID, offset: int = 0, limit: int | None = None
    ) -> list[Message]:
        """Messages in ascending creation order. Returns everything unless limit is given."""
        with Session(self._engine) as session:
            policy.visible_conversation(session, conversation_id, self.context.user_id)

            query = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(col(Message.created_at))
                .offset(offset)
            )
            if limit is not None:
                query = query.limit(limit)
            return list(session.exec(query).all())

    async def mark_read(self, message_id: uuid.UUID) -> Message:
        """Set read_at once. Already-read messages are returned untouched."""
        with Session(self._engine) as session:
            message = session.get(Message, message_id)
            if not message:
                raise NotFoundError(f"Message {message_id} not found")
            policy.visible_conversation(session, message.conversation_id, self.context.user_id)
            if message.sender_id == self.context.user_id:
                raise AuthorizationError("Only the recipient can mark a message as read")

            if message.read_at is not None:
                return message

            message.is_read = True
            message.read_at = datetime.now(timezone.utc)
            session.add(message)
            session.commit()
            session.refresh(message)
            logger.debug(f"Marked message {message_id} as read")
            return message
