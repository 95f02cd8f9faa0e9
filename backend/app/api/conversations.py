"""REST API for conversations, messages, read state and typing."""

import logging
import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from app.api.deps import get_context, get_engine
from app.models import Message
from app.services.chat.context import SessionContext
from app.services.chat.messages import MessageStore
from app.services.chat.resolver import ConversationResolver
from app.services.chat.typing_state import TypingTracker
from app.services.chat.unread import UnreadAggregator

router = APIRouter()
logger = logging.getLogger(__name__)


class ResolveRequest(BaseModel):
    peer_id: uuid.UUID


class MessageCreate(BaseModel):
    content: str


class TypingUpdate(BaseModel):
    is_typing: bool


def _message_json(m: Message) -> dict:
    return {
        "id": str(m.id),
        "conversation_id": str(m.conversation_id),
        "sender_id": str(m.sender_id),
        "content": m.content,
        "is_read": m.is_read,
        "delivered_at": m.delivered_at.isoformat(),
        "read_at": m.read_at.isoformat() if m.read_at else None,
        "created_at": m.created_at.isoformat(),
    }


@router.post("/resolve")
async def resolve_conversation(
    body: ResolveRequest,
    context: SessionContext = Depends(get_context),
    engine: Engine = Depends(get_engine),
):
    conversation_id = await ConversationResolver(context, engine=engine).resolve(context.user_id, body.peer_id)
    return {"id": str(conversation_id)}


@router.get("/unread")
async def unread_counts(
    context: SessionContext = Depends(get_context), engine: Engine = Depends(get_engine)
):
    counts = await UnreadAggregator(context, engine=engine).recompute()
    return {str(peer_id): count for peer_id, count in counts.items()}


@router.get("/{conversation_id}/messages")
async def list_messages(
    conversation_id: uuid.UUID,
    offset: int = 0,
    limit: int | None = None,
    context: SessionContext = Depends(get_context),
    engine: Engine = Depends(get_engine),
):
    messages = await MessageStore(context, engine=engine).load_history(conversation_id, offset=offset, limit=limit)
    return [_message_json(m) for m in messages]


@router.post("/{conversation_id}/messages")
async def send_message(
    conversation_id: uuid.UUID,
    body: MessageCreate,
    context: SessionContext = Depends(get_context),
    engine: Engine = Depends(get_engine),
):
    message = await MessageStore(context, engine=engine).append(conversation_id, context.user_id, body.content)
    logger.debug(f"Message {message.id} sent to conversation {conversation_id}")
    return _message_json(message)


@router.post("/messages/{message_id}/read")
async def mark_message_read(
    message_id: uuid.UUID,
    context: SessionContext = Depends(get_context),
    engine: Engine = Depends(get_engine),
):
    message = await MessageStore(context, engine=engine).mark_read(message_id)
    return _message_json(message)


@router.put("/{conversation_id}/typing")
async def update_typing(
    conversation_id: uuid.UUID,
    body: TypingUpdate,
    context: SessionContext = Depends(get_context),
    engine: Engine = Depends(get_engine),
):
    indicator = await TypingTracker(context, engine=engine).set_typing(
        conversation_id, context.user_id, body.is_typing
    )
    return {"conversation_id": str(conversation_id), "is_typing": indicator.is_typing}
