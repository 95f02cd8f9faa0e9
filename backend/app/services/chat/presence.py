"""Profiles and online/offline presence."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.core import database
from app.core.errors import ConflictError, NotFoundError
from app.models import Profile
from app.services.chat.context import SessionContext

logger = logging.getLogger(__name__)


async def register_profile(
    user_id: uuid.UUID, email: str, username: str | None = None, engine: Engine | None = None
) -> Profile:
    """Create the profile row for a newly registered account.

    This is what the identity provider's sign-up hook calls. The username
    defaults to the local part of the email. Registering an id twice returns
    the existing profile.
    """
    with Session(engine or database.engine) as session:
        existing = session.get(Profile, user_id)
        if existing:
            return existing

        profile = Profile(id=user_id, email=email, username=username or email.split("@", 1)[0])
        session.add(profile)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError(f"Username or email already taken: {profile.username} / {email}") from e
        session.refresh(profile)
        logger.info(f"Registered profile {profile.username} ({user_id})")
        return profile


class PresenceTracker:
    def __init__(self, context: SessionContext, engine: Engine | None = None):
        self.context = context
        self._engine = engine or database.engine

    async def set_online(self, is_online: bool) -> Profile:
        """Flip the current user's online flag and stamp last_seen. Owner-only by construction."""
        with Session(self._engine) as session:
            profile = session.get(Profile, self.context.user_id)
            if not profile:
                raise NotFoundError(f"No profile for user {self.context.user_id}")
            profile.is_online = is_online
            profile.last_seen = datetime.now(timezone.utc)
            session.add(profile)
            session.commit()
            session.refresh(profile)
            return profile

    async def list_peers(self) -> list[Profile]:
        with Session(self._engine) as session:
            return list(
                session.exec(
                    select(Profile)
                    .where(Profile.id != self.context.user_id)
                    .order_by(col(Profile.username))
                ).all()
            )
