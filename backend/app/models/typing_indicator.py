import uuid
from datetime import datetime, timezone

from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.types import UTCDateTime


class TypingIndicator(SQLModel, table=True):
    """Mutable per-(conversation, user) typing flag. Updated in place, never appended."""

    __tablename__ = "typing_indicators"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id"),
        Index("idx_typing_indicators_conversation", "conversation_id"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    conversation_id: uuid.UUID = Field(foreign_key="conversations.id", ondelete="CASCADE")
    user_id: uuid.UUID = Field(foreign_key="profiles.id", ondelete="CASCADE")
    is_typing: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=UTCDateTime)
