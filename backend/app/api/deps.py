"""Request dependencies: database engine and the caller's session context.

Authentication happens upstream; requests arrive carrying the already
verified user id in the ``X-User-Id`` header.
"""

import uuid

from fastapi import Depends, Header, HTTPException
from sqlalchemy.engine import Engine

from app.core import database
from app.core.errors import NotFoundError
from app.services.chat.context import SessionContext, load_context


def get_engine() -> Engine:
    return database.engine


async def get_context(
    x_user_id: uuid.UUID | None = Header(default=None),
    engine: Engine = Depends(get_engine),
) -> SessionContext:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        return await load_context(x_user_id, engine)
    except NotFoundError:
        raise HTTPException(status_code=401, detail="Unknown user")
