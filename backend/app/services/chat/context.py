"""Per-session identity passed explicitly to every chat service."""

import uuid
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.core import database
from app.core.errors import NotFoundError
from app.models import Profile


@dataclass(frozen=True)
class SessionContext:
    user_id: uuid.UUID
    username: str = ""


async def load_context(user_id: uuid.UUID, engine: Engine | None = None) -> SessionContext:
    """Build the context for an already-authenticated user id."""
    with Session(engine or database.engine) as session:
        profile = session.get(Profile, user_id)
        if not profile:
            raise NotFoundError(f"No profile for user {user_id}")
        return SessionContext(user_id=profile.id, username=profile.username)
