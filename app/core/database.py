"""Async database handle: engine + session factory with an explicit lifetime."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel


class Database:
    """Owns the async engine for the whole process.

    Built once in the application lifespan and shared through
    ``app.state.database``; disposed on shutdown.
    """

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        if url.startswith("postgresql"):
            engine_kwargs.setdefault("pool_size", 20)
            engine_kwargs.setdefault("max_overflow", 10)
        self.engine = create_async_engine(url, echo=False, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create all tables. Use migrations in production."""
        # Import all models so SQLModel.metadata picks them up
        import app.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
