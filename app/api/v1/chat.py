"""Chat endpoints: the streaming relay plus chat history management."""

import logging
from functools import partial

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.api.deps import Auth, Relay, Session, Store
from app.api.v1.bots import get_visible_bot
from app.models.bot import Bot, BotSummary
from app.models.chat import Chat, ChatDetail, ChatRead
from app.models.message import Message, MessageRead, MessageRole
from app.services.completion_relay import ProviderError
from app.services.conversation import build_messages
from app.services.stream_bridge import StreamBridge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ── Request schema ────────────────────────────────────────────

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1, max_length=8000)
    bot_id: str = Field(alias="botId", min_length=1, max_length=128)
    chat_id: str | None = Field(
        default=None,
        alias="chatId",
        min_length=1,
        max_length=128,
        description="Existing chat ID. Omit to start a new conversation.",
    )


# ── Streaming chat ────────────────────────────────────────────

@router.post(
    "",
    response_class=StreamingResponse,
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def chat(
    body: ChatRequest,
    auth: Auth,
    session: Session,
    store: Store,
    relay: Relay,
) -> StreamingResponse:
    """Send a message and stream the bot's reply as Server-Sent Events.

    Creates a new chat if ``chatId`` is omitted; its id is returned in the
    ``X-Chat-Id`` header. Frames are ``data: {"content": ...}``, optionally
    ``data: {"error": ...}``, and always end with ``data: [DONE]``.

    The user message is stored before the provider is contacted. The
    assistant reply is stored once the stream ends, including partial text
    from an interrupted stream.
    """
    # ── Setup (runs before streaming starts) ─────────────────
    bot = await get_visible_bot(body.bot_id, auth.user_id, session)

    if body.chat_id:
        chat_session = await _get_chat(body.chat_id, auth.user_id, session)
        if chat_session.bot_id != bot.id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Chat not found",
            )
    else:
        chat_session = Chat(
            user_id=auth.user_id,
            bot_id=bot.id,
            title=body.message[:100],
        )
        session.add(chat_session)
        await session.commit()
        await session.refresh(chat_session)

    history = await _load_history(chat_session.id, session)
    messages = build_messages(bot.system_prompt, history, body.message)

    try:
        await store.append_user_message(chat_session.id, body.message)
    except SQLAlchemyError as exc:
        logger.exception("Failed to save user message for chat %s", chat_session.id)
        if body.chat_id is None:
            await _discard_chat(chat_session, session)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save message",
        ) from exc

    try:
        stream = await relay.open_stream(
            model=bot.model_name,
            messages=messages,
            temperature=bot.temperature,
            max_tokens=bot.max_tokens,
        )
    except ProviderError as exc:
        if exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
            code = status.HTTP_429_TOO_MANY_REQUESTS
        else:
            code = status.HTTP_502_BAD_GATEWAY
        raise HTTPException(
            status_code=code,
            detail=f"Completion provider error ({exc.status_code})",
        ) from exc

    # ── Streaming path ───────────────────────────────────────
    bridge = StreamBridge(
        stream,
        persist=partial(store.append_assistant_message, chat_session.id),
        chat_id=chat_session.id,
    )
    return StreamingResponse(
        bridge.stream(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Chat-Id": chat_session.id},
    )


# ── Chat history ─────────────────────────────────────────────

@router.get("", response_model=list[ChatRead])
async def list_chats(
    auth: Auth,
    session: Session,
    bot_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ChatRead]:
    """List the requester's chats, newest first, with a last-message preview."""
    stmt = select(Chat).where(Chat.user_id == auth.user_id)
    if bot_id:
        stmt = stmt.where(Chat.bot_id == bot_id)
    stmt = (
        stmt
        .order_by(Chat.created_at.desc())  # type: ignore[union-attr]
        .limit(min(limit, 100))
        .offset(offset)
    )
    result = await session.execute(stmt)
    chats = result.scalars().all()

    bots: dict[str, Bot] = {}
    bot_ids = {c.bot_id for c in chats}
    if bot_ids:
        bot_result = await session.execute(select(Bot).where(Bot.id.in_(bot_ids)))  # type: ignore[attr-defined]
        bots = {b.id: b for b in bot_result.scalars().all()}

    items = []
    for chat_obj in chats:
        last_stmt = (
            select(Message)
            .where(Message.chat_id == chat_obj.id)
            .order_by(Message.created_at.desc())  # type: ignore[union-attr]
            .limit(1)
        )
        last = (await session.execute(last_stmt)).scalar_one_or_none()
        bot = bots.get(chat_obj.bot_id)
        items.append(ChatRead(
            id=chat_obj.id,
            bot_id=chat_obj.bot_id,
            title=chat_obj.title,
            created_at=chat_obj.created_at,
            updated_at=chat_obj.updated_at,
            bot=BotSummary.model_validate(bot) if bot else None,
            last_message=MessageRead.model_validate(last) if last else None,
        ))
    return items


@router.get("/{chat_id}", response_model=ChatDetail)
async def get_chat(
    chat_id: str,
    auth: Auth,
    session: Session,
) -> ChatDetail:
    chat_session = await _get_chat(chat_id, auth.user_id, session)
    messages = await _list_messages(chat_id, session)
    bot = await session.get(Bot, chat_session.bot_id)
    return ChatDetail(
        id=chat_session.id,
        bot_id=chat_session.bot_id,
        title=chat_session.title,
        created_at=chat_session.created_at,
        updated_at=chat_session.updated_at,
        bot=BotSummary.model_validate(bot) if bot else None,
        last_message=messages[-1] if messages else None,
        messages=messages,
    )


@router.get("/{chat_id}/messages", response_model=list[MessageRead])
async def get_chat_messages(
    chat_id: str,
    auth: Auth,
    session: Session,
) -> list[MessageRead]:
    await _get_chat(chat_id, auth.user_id, session)  # verify access
    return await _list_messages(chat_id, session)


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: str,
    auth: Auth,
    session: Session,
) -> None:
    """Delete a whole chat and its messages."""
    chat_session = await _get_chat(chat_id, auth.user_id, session)
    await session.execute(delete(Message).where(Message.chat_id == chat_session.id))  # type: ignore[arg-type]
    await session.delete(chat_session)
    await session.commit()


# ── Internal helpers ──────────────────────────────────────────

async def _get_chat(chat_id: str, user_id: str, session) -> Chat:
    stmt = select(Chat).where(
        Chat.id == chat_id,
        Chat.user_id == user_id,
    )
    result = await session.execute(stmt)
    chat = result.scalar_one_or_none()
    if chat is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Chat not found",
        )
    return chat


async def _discard_chat(chat: Chat, session) -> None:
    """Remove a chat created for a turn whose first message was never stored."""
    try:
        await session.delete(chat)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to discard empty chat %s", chat.id)


async def _list_messages(chat_id: str, session) -> list[MessageRead]:
    stmt = (
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return [MessageRead.model_validate(m) for m in result.scalars().all()]


async def _load_history(chat_id: str, session) -> list[dict]:
    """Load previous messages for context (user + assistant only)."""
    stmt = (
        select(Message)
        .where(
            Message.chat_id == chat_id,
            Message.role.in_([MessageRole.USER, MessageRole.ASSISTANT]),  # type: ignore[union-attr]
        )
        .order_by(Message.created_at.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return [{"role": m.role, "content": m.content} for m in result.scalars().all()]
