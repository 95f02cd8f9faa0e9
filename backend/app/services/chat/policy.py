"""Row-level access rules enforced at the store boundary.

Conversations, messages and typing indicators are visible and writable only by
the conversation's participants. Messages may only be sent as yourself,
typing indicators only written for yourself, and profiles only changed by
their owner.
"""

import uuid

from sqlalchemy import or_
from sqlmodel import Session, select

from app.core.errors import AuthorizationError, NotFoundError
from app.models import Conversation


def participant_conversation_ids(session: Session, user_id: uuid.UUID) -> set[uuid.UUID]:
    """Ids of every conversation the user takes part in."""
    rows = session.exec(
        select(Conversation.id).where(
            or_(Conversation.participant_1 == user_id, Conversation.participant_2 == user_id)
        )
    ).all()
    return set(rows)


def visible_conversation(session: Session, conversation_id: uuid.UUID, user_id: uuid.UUID) -> Conversation:
    conversation = session.get(Conversation, conversation_id)
    if not conversation:
        raise NotFoundError(f"Conversation {conversation_id} not found")
    if not conversation.has_participant(user_id):
        raise AuthorizationError(f"User {user_id} is not a participant of conversation {conversation_id}")
    return conversation


def require_self(target_id: uuid.UUID, user_id: uuid.UUID, action: str) -> None:
    if target_id != user_id:
        raise AuthorizationError(f"User {user_id} cannot {action} user {target_id}")
