"""Seed the shared default bots.

Idempotent: a default bot is inserted only if no ownerless bot with the same
name exists, so existing chats keep pointing at the same bot ids.

    python -m app.seed
"""

import asyncio
import logging

from sqlmodel import select

from app.core.catalog import DEFAULT_BOTS
from app.core.config import get_settings
from app.core.database import Database
from app.models.bot import Bot

logger = logging.getLogger(__name__)


async def seed_default_bots(database: Database) -> list[Bot]:
    """Insert missing default bots. Returns the bots created."""
    created: list[Bot] = []
    async with database.session_factory() as session:
        result = await session.execute(
            select(Bot.name).where(Bot.owner_id.is_(None))  # type: ignore[union-attr]
        )
        existing = set(result.scalars().all())

        for defaults in DEFAULT_BOTS:
            if defaults["name"] in existing:
                continue
            bot = Bot(owner_id=None, **defaults)
            session.add(bot)
            created.append(bot)

        if created:
            await session.commit()
    for bot in created:
        logger.info("Created default bot: %s (%s)", bot.name, bot.model_name)
    return created


async def _main() -> None:
    database = Database(get_settings().database_url)
    try:
        await database.create_all()
        created = await seed_default_bots(database)
        logger.info("Seed completed: %d default bot(s) created", len(created))
    finally:
        await database.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_main())
