"""FastAPI dependencies for identity resolution and process-wide handles."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import Database
from app.core.security import decode_jwt
from app.services.completion_relay import CompletionRelay
from app.services.message_store import MessageStore

bearer_scheme = HTTPBearer()


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("user_id",)

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_session(
    database: Annotated[Database, Depends(get_database)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yields a request-scoped async DB session."""
    async with database.session_factory() as session:
        yield session


def get_message_store(
    database: Annotated[Database, Depends(get_database)],
) -> MessageStore:
    return MessageStore(database.session_factory)


def get_completion_relay(request: Request) -> CompletionRelay:
    return request.app.state.completion_relay


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> AuthContext:
    """Resolve a bearer JWT to an AuthContext; the subject is the user id."""
    try:
        payload = decode_jwt(credentials.credentials)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired JWT",
        ) from exc

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id or len(user_id) > 128:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed JWT payload",
        )
    return AuthContext(user_id=user_id)


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
Session = Annotated[AsyncSession, Depends(get_session)]
Store = Annotated[MessageStore, Depends(get_message_store)]
Relay = Annotated[CompletionRelay, Depends(get_completion_relay)]
