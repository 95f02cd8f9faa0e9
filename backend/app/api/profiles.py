"""REST API for profiles and presence."""

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from app.api.deps import get_context, get_engine
from app.models import Profile
from app.services.chat.context import SessionContext
from app.services.chat.presence import PresenceTracker, register_profile

router = APIRouter()


class ProfileCreate(BaseModel):
    id: uuid.UUID
    email: str
    username: str | None = None


class PresenceUpdate(BaseModel):
    is_online: bool


def _profile_json(p: Profile) -> dict:
    return {
        "id": str(p.id),
        "username": p.username,
        "email": p.email,
        "avatar_url": p.avatar_url,
        "is_online": p.is_online,
        "last_seen": p.last_seen.isoformat(),
    }


@router.post("/")
async def create_profile(body: ProfileCreate, engine: Engine = Depends(get_engine)):
    """Sign-up hook target for the identity provider."""
    profile = await register_profile(body.id, body.email, body.username, engine=engine)
    return _profile_json(profile)


@router.get("/")
async def list_peers(
    context: SessionContext = Depends(get_context), engine: Engine = Depends(get_engine)
):
    peers = await PresenceTracker(context, engine=engine).list_peers()
    return [_profile_json(p) for p in peers]


@router.post("/presence")
async def update_presence(
    body: PresenceUpdate,
    context: SessionContext = Depends(get_context),
    engine: Engine = Depends(get_engine),
):
    profile = await PresenceTracker(context, engine=engine).set_online(body.is_online)
    return _profile_json(profile)
