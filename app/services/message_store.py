"""Message store: the durability boundary for chat turns.

Each append runs in its own short-lived session so that persistence does not
depend on the request-scoped session, which may be closed before a streamed
response finishes.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.base import utcnow
from app.models.chat import Chat
from app.models.message import Message, MessageRole

logger = logging.getLogger(__name__)


class MessageStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _append(self, chat_id: str, role: MessageRole, text: str) -> Message:
        async with self._session_factory() as session:
            message = Message(chat_id=chat_id, role=role, content=text)
            session.add(message)

            chat = await session.get(Chat, chat_id)
            if chat is not None:
                chat.updated_at = utcnow()
                session.add(chat)

            await session.commit()
            await session.refresh(message)
            return message

    async def append_user_message(self, chat_id: str, text: str) -> Message:
        """Persist the user's message. Raises on failure: the turn must not proceed."""
        return await self._append(chat_id, MessageRole.USER, text)

    async def append_assistant_message(self, chat_id: str, text: str) -> Message | None:
        """Persist the assistant's reply. Never raises; returns None on failure."""
        try:
            return await self._append(chat_id, MessageRole.ASSISTANT, text)
        except Exception:
            logger.exception(
                "Failed to save assistant message for chat %s (%d chars delivered but not stored)",
                chat_id, len(text),
            )
            return None
