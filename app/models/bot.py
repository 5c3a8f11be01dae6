"""Bot model: a named persona with its system prompt and model configuration."""

from datetime import datetime

from pydantic import HttpUrl, field_validator
from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.core.catalog import ALLOWED_MODELS, DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, is_allowed_model
from app.models.base import TimestampMixin, new_id


def _check_model(value: str | None) -> str | None:
    if value is not None and not is_allowed_model(value):
        raise ValueError(f"model_name must be one of: {', '.join(ALLOWED_MODELS)}")
    return value


class Bot(TimestampMixin, SQLModel, table=True):
    __tablename__ = "bots"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=128)
    # NULL owner means a shared default bot, visible to every user.
    owner_id: str | None = Field(default=None, max_length=128, index=True)

    name: str = Field(max_length=100, nullable=False)
    avatar_url: str | None = Field(default=None, max_length=2048)

    # LLM configuration
    system_prompt: str = Field(sa_column=Column(Text, nullable=False))
    model_name: str = Field(max_length=100, nullable=False)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1, le=8192)


# ── Pydantic schemas ─────────────────────────────────────────

class BotCreate(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    avatar_url: HttpUrl | None = None
    system_prompt: str = Field(min_length=1, max_length=4000)
    model_name: str
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1, le=8192)

    @field_validator("model_name")
    @classmethod
    def _allowed_model(cls, value: str) -> str:
        return _check_model(value)

    @field_validator("avatar_url", mode="before")
    @classmethod
    def _blank_avatar(cls, value):
        return value or None


class BotUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    avatar_url: HttpUrl | None = None
    system_prompt: str | None = Field(default=None, min_length=1, max_length=4000)
    model_name: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=8192)

    @field_validator("model_name")
    @classmethod
    def _allowed_model(cls, value: str | None) -> str | None:
        return _check_model(value)

    @field_validator("avatar_url", mode="before")
    @classmethod
    def _blank_avatar(cls, value):
        # "" clears the avatar, like null
        return value or None


class BotRead(SQLModel):
    id: str
    owner_id: str | None
    name: str
    avatar_url: str | None
    system_prompt: str
    model_name: str
    temperature: float
    max_tokens: int
    is_default: bool = Field(description="True for shared bots with no owner")
    created_at: datetime
    updated_at: datetime


class BotSummary(SQLModel):
    id: str
    name: str
    avatar_url: str | None = None
    model_name: str
