"""Find-or-create the single conversation between two users."""

import logging
import uuid

from sqlalchemy import and_, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core import database
from app.core.config import settings
from app.core.errors import (
    AuthorizationError,
    ConflictError,
    ConflictRetryExhausted,
    NotFoundError,
    ValidationError,
)
from app.models import Conversation, Profile
from app.services.chat import policy
from app.services.chat.context import SessionContext

logger = logging.getLogger(__name__)


class ConversationResolver:
    def __init__(self, context: SessionContext, engine: Engine | None = None, max_attempts: int | None = None):
        self.context = context
        self._engine = engine or database.engine
        self.max_attempts = max_attempts or settings.resolver_max_attempts

    async def resolve(self, user_a: uuid.UUID, user_b: uuid.UUID) -> uuid.UUID:
        """Return the id of the conversation between user_a and user_b, creating it if needed.

        Both participants may hit first contact at the same moment. The unique
        index on the normalized pair lets exactly one insert win; the loser sees
        a ConflictError and picks up the winner's row on the next lookup.
        """
        if user_a == user_b:
            raise ValidationError("A conversation needs two different participants")
        if self.context.user_id not in (user_a, user_b):
            raise AuthorizationError("Conversations can only be opened by one of their participants")

        for attempt in range(1, self.max_attempts + 1):
            with Session(self._engine) as session:
                existing = self._find(session, user_a, user_b)
                if existing:
                    logger.debug(f"Found conversation {existing.id} for {user_a}/{user_b}")
                    return existing.id

                try:
                    return self._create(session, user_a, user_b)
                except ConflictError:
                    logger.warning(
                        f"Conversation {user_a}/{user_b} created concurrently "
                        f"(attempt {attempt}/{self.max_attempts}), retrying lookup"
                    )

        raise ConflictRetryExhausted(
            f"Could not resolve conversation {user_a}/{user_b} after {self.max_attempts} attempts"
        )

    async def get(self, conversation_id: uuid.UUID) -> Conversation:
        with Session(self._engine) as session:
            return policy.visible_conversation(session, conversation_id, self.context.user_id)

    def _find(self, session: Session, user_a: uuid.UUID, user_b: uuid.UUID) -> Conversation | None:
        return session.exec(
            select(Conversation).where(
                or_(
                    and_(Conversation.participant_1 == user_a, Conversation.participant_2 == user_b),
                    and_(Conversation.participant_1 == user_b, Conversation.participant_2 == user_a),
                )
            )
        ).first()

    def _create(self, session: Session, user_a: uuid.UUID, user_b: uuid.UUID) -> uuid.UUID:
        for user_id in (user_a, user_b):
            if not session.get(Profile, user_id):
                raise NotFoundError(f"No profile for user {user_id}")

        conversation = Conversation(participant_1=user_a, participant_2=user_b)
        session.add(conversation)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError(str(e.orig)) from e

        logger.info(f"Created conversation {conversation.id} for {user_a}/{user_b}")
        return conversation.id
