"""Import all models so SQLModel.metadata picks them up."""

from app.models.bot import Bot, BotCreate, BotRead, BotSummary, BotUpdate
from app.models.chat import Chat, ChatDetail, ChatRead
from app.models.message import Message, MessageRead, MessageRole

__all__ = [
    "Bot",
    "BotCreate",
    "BotRead",
    "BotSummary",
    "BotUpdate",
    "Chat",
    "ChatDetail",
    "ChatRead",
    "Message",
    "MessageRead",
    "MessageRole",
]
