"""WebSocket bridge from the change feed to a browser client."""

import asyncio
import json
import logging
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.api.deps import get_engine
from app.core.errors import ChatError, TransportError
from app.services.chat import policy
from app.services.chat.context import load_context
from app.services.chat.resolver import ConversationResolver
from app.services.chat.typing_state import TypingTracker
from app.services.realtime.events import ChatEvent, MessageDeleted, MessageInserted, MessageUpdated, to_payload
from app.services.realtime.multiplexer import ChangeMultiplexer, ConversationScope, UserScope

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def realtime_websocket(
    websocket: WebSocket,
    user_id: uuid.UUID,
    conversation_id: uuid.UUID | None = None,
    engine: Engine = Depends(get_engine),
):
    await websocket.accept()

    try:
        context = await load_context(user_id, engine)
        if conversation_id is not None:
            await ConversationResolver(context, engine=engine).get(conversation_id)
    except ChatError as e:
        await websocket.send_json({"type": "error", "detail": str(e)})
        await websocket.close(code=4403)
        return

    if conversation_id is not None:
        scope = ConversationScope(conversation_id)
        scope_info = {"conversation_id": str(conversation_id)}
    else:
        scope = UserScope(user_id)
        scope_info = {"user_id": str(user_id)}

    subscription = ChangeMultiplexer().subscribe(scope)
    tracker = TypingTracker(context, engine=engine)
    typing_active = False
    known_conversations: set[uuid.UUID] = set()

    def readable(event: ChatEvent) -> bool:
        # Message rows are readable only by the conversation's participants
        if conversation_id is not None:
            return True
        if isinstance(event, MessageDeleted):
            target = event.conversation_id
        elif isinstance(event, (MessageInserted, MessageUpdated)):
            target = event.message.conversation_id
        else:
            return True
        if target not in known_conversations:
            with Session(engine) as session:
                known_conversations.update(policy.participant_conversation_ids(session, user_id))
        return target in known_conversations

    async def forward_events():
        try:
            async for event in subscription:
                if not readable(event):
                    continue
                await websocket.send_json(jsonable_encoder(to_payload(event)))
        except TransportError as e:
            logger.warning(f"Realtime feed dropped for {user_id}: {e}")
            await websocket.close(code=1012)

    forward_task = asyncio.create_task(forward_events())
    await websocket.send_json({"type": "subscribed", "scope": scope_info})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue

            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
            elif data.get("type") == "typing" and conversation_id is not None:
                typing_active = bool(data.get("is_typing"))
                try:
                    await tracker.set_typing(conversation_id, user_id, typing_active)
                except (ChatError, SQLAlchemyError) as e:
                    logger.error(f"Error updating typing indicator: {e}")

    except WebSocketDisconnect:
        logger.info(f"Realtime WebSocket disconnected ({user_id})")

    finally:
        if typing_active and conversation_id is not None:
            try:
                await tracker.set_typing(conversation_id, user_id, False)
            except (ChatError, SQLAlchemyError) as e:
                logger.error(f"Error clearing typing indicator: {e}")
        subscription.close()
        forward_task.cancel()
        try:
            await forward_task
        except asyncio.CancelledError:
            pass
