"""Message model: a single turn in a Chat conversation."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, new_id


class MessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(TimestampMixin, SQLModel, table=True):
    """Append-only; never updated once written."""

    __tablename__ = "messages"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=128)
    chat_id: str = Field(foreign_key="chats.id", max_length=128, nullable=False, index=True)

    role: MessageRole = Field(nullable=False)
    content: str = Field(sa_column=Column(Text, nullable=False))


# ── Pydantic schemas ─────────────────────────────────────────

class MessageRead(SQLModel):
    id: str
    chat_id: str
    role: MessageRole
    content: str
    created_at: datetime
