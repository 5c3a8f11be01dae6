"""Chat model: a conversation thread between a user and a bot."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_id
from app.models.bot import BotSummary
from app.models.message import MessageRead


class Chat(TimestampMixin, SQLModel, table=True):
    __tablename__ = "chats"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=128)
    user_id: str = Field(max_length=128, nullable=False, index=True)
    bot_id: str = Field(foreign_key="bots.id", max_length=128, nullable=False, index=True)

    title: str = Field(default="", max_length=500)


# ── Pydantic schemas ─────────────────────────────────────────

class ChatRead(SQLModel):
    id: str
    bot_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    bot: BotSummary | None = None
    last_message: MessageRead | None = None


class ChatDetail(ChatRead):
    messages: list[MessageRead] = Field(default_factory=list)
