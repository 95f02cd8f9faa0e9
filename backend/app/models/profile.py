"""User profile rows, one per identity-provider account."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

from app.models.types import UTCDateTime


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: uuid.UUID = Field(primary_key=True)
    username: str = Field(unique=True)
    email: str = Field(unique=True)
    avatar_url: Optional[str] = None
    is_online: bool = Field(default=False)
    last_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=UTCDateTime)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=UTCDateTime,
        sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)},
    )
