"""Bot CRUD: visibility is (no owner) OR (owner == requester)."""

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import delete, or_
from sqlmodel import select

from app.api.deps import Auth, Session
from app.core.catalog import ALLOWED_MODELS
from app.models.base import utcnow
from app.models.bot import Bot, BotCreate, BotRead, BotUpdate
from app.models.chat import Chat
from app.models.message import Message

router = APIRouter(prefix="/bots", tags=["bots"])


def _to_read(bot: Bot) -> BotRead:
    return BotRead(
        id=bot.id,
        owner_id=bot.owner_id,
        name=bot.name,
        avatar_url=bot.avatar_url,
        system_prompt=bot.system_prompt,
        model_name=bot.model_name,
        temperature=bot.temperature,
        max_tokens=bot.max_tokens,
        is_default=bot.owner_id is None,
        created_at=bot.created_at,
        updated_at=bot.updated_at,
    )


def _visible_to(user_id: str):
    return or_(Bot.owner_id.is_(None), Bot.owner_id == user_id)  # type: ignore[union-attr]


@router.get("/models", response_model=list[str])
async def list_models(auth: Auth) -> list[str]:
    """Model identifiers a bot may be configured with."""
    return list(ALLOWED_MODELS)


@router.post("", response_model=BotRead, status_code=status.HTTP_201_CREATED)
async def create_bot(
    body: BotCreate,
    auth: Auth,
    session: Session,
) -> BotRead:
    bot = Bot(owner_id=auth.user_id, **body.model_dump(mode="json"))
    session.add(bot)
    await session.commit()
    await session.refresh(bot)
    return _to_read(bot)


@router.get("", response_model=list[BotRead])
async def list_bots(
    auth: Auth,
    session: Session,
) -> list[BotRead]:
    """Default bots first, then the requester's own bots, newest first."""
    stmt = (
        select(Bot)
        .where(_visible_to(auth.user_id))
        .order_by(
            Bot.owner_id.is_not(None),  # type: ignore[union-attr]
            Bot.created_at.desc(),  # type: ignore[union-attr]
        )
    )
    result = await session.execute(stmt)
    return [_to_read(bot) for bot in result.scalars().all()]


@router.get("/{bot_id}", response_model=BotRead)
async def get_bot(
    bot_id: str,
    auth: Auth,
    session: Session,
) -> BotRead:
    bot = await get_visible_bot(bot_id, auth.user_id, session)
    return _to_read(bot)


@router.patch("/{bot_id}", response_model=BotRead)
async def update_bot(
    bot_id: str,
    body: BotUpdate,
    auth: Auth,
    session: Session,
) -> BotRead:
    bot = await _get_owned_or_404(bot_id, auth.user_id, session)

    update_data = body.model_dump(mode="json", exclude_unset=True)

    # Avatar may be cleared with null or ""; other fields ignore null
    if "avatar_url" in update_data:
        bot.avatar_url = update_data.pop("avatar_url") or None

    for field, value in update_data.items():
        if value is not None:
            setattr(bot, field, value)

    bot.updated_at = utcnow()
    session.add(bot)
    await session.commit()
    await session.refresh(bot)
    return _to_read(bot)


@router.delete("/{bot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bot(
    bot_id: str,
    auth: Auth,
    session: Session,
) -> None:
    """Delete an owned bot along with its chats and their messages."""
    bot = await _get_owned_or_404(bot_id, auth.user_id, session)

    chat_ids = select(Chat.id).where(Chat.bot_id == bot.id)
    await session.execute(delete(Message).where(Message.chat_id.in_(chat_ids)))  # type: ignore[attr-defined]
    await session.execute(delete(Chat).where(Chat.bot_id == bot.id))  # type: ignore[arg-type]
    await session.delete(bot)
    await session.commit()


# ── Lookup helpers ────────────────────────────────────────────

async def get_visible_bot(bot_id: str, user_id: str, session) -> Bot:
    """Return the bot if the user may see it; 404 otherwise (never 403)."""
    stmt = select(Bot).where(Bot.id == bot_id, _visible_to(user_id))
    result = await session.execute(stmt)
    bot = result.scalar_one_or_none()
    if bot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bot not found")
    return bot


async def _get_owned_or_404(bot_id: str, user_id: str, session) -> Bot:
    stmt = select(Bot).where(Bot.id == bot_id, Bot.owner_id == user_id)
    result = await session.execute(stmt)
    bot = result.scalar_one_or_none()
    if bot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Bot not found or not authorized",
        )
    return bot
