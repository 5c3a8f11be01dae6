"""Shared test fixtures: async SQLite file DB, scripted provider, test client."""

import asyncio
import json
import os
from collections.abc import AsyncGenerator, Awaitable, Callable

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.api.deps import get_completion_relay, get_database  # noqa: E402
from app.core.database import Database  # noqa: E402
from app.core.security import create_jwt  # noqa: E402
from app.main import app  # noqa: E402
from app.services.completion_relay import CompletionRelay  # noqa: E402


class ScriptedStream(httpx.AsyncByteStream):
    """Response body that yields fixed chunks, then optionally fails."""

    def __init__(
        self,
        chunks: list[bytes],
        error: Exception | None = None,
        pause_after: int | None = None,
        resume: asyncio.Event | None = None,
    ) -> None:
        self.chunks = chunks
        self.error = error
        self.pause_after = pause_after
        self.resume = resume
        self.closed = False

    async def __aiter__(self):
        for i, chunk in enumerate(self.chunks):
            if i == self.pause_after and self.resume is not None:
                await self.resume.wait()
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeProvider:
    """Scripts the completion provider behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.streams: list[ScriptedStream] = []
        self.status_code = 200
        self.error_body = b""
        self.chunks: list[bytes] = []
        self.sever_with: Exception | None = None
        self.pause_after: int | None = None
        self.resume = asyncio.Event()
        self.on_request: Callable[[httpx.Request], Awaitable[None]] | None = None

    def script(
        self,
        *fragments: str,
        done: bool = True,
        chunk_size: int | None = None,
        sever_with: Exception | None = None,
        pause_after: int | None = None,
    ) -> None:
        """Stream ``fragments`` as OpenAI-style SSE deltas.

        With ``pause_after=n`` each fragment is its own chunk and the body
        stalls after the first ``n`` until ``resume`` is set.
        """
        payload = b"".join(sse_delta(f) for f in fragments)
        if done:
            payload += b"data: [DONE]\n\n"
        if pause_after is not None:
            self.chunks = [sse_delta(f) for f in fragments]
            if done:
                self.chunks.append(b"data: [DONE]\n\n")
        elif chunk_size:
            self.chunks = [payload[i:i + chunk_size] for i in range(0, len(payload), chunk_size)]
        else:
            self.chunks = [payload]
        self.sever_with = sever_with
        self.pause_after = pause_after

    def reject(self, status_code: int, body: dict | None = None) -> None:
        self.status_code = status_code
        self.error_body = json.dumps(body or {"error": {"message": "rejected"}}).encode()

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            await self.on_request(request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, content=self.error_body)
        stream = ScriptedStream(list(self.chunks), self.sever_with, self.pause_after, self.resume)
        self.streams.append(stream)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            stream=stream,
        )


def sse_delta(content: str) -> bytes:
    return f"data: {json.dumps({'choices': [{'delta': {'content': content}}]})}\n\n".encode()


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def session(database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session_factory() as sess:
        yield sess


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def relay(provider) -> AsyncGenerator[CompletionRelay, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handle))
    relay = CompletionRelay(
        api_key="test-key",
        base_url="https://provider.test/api/v1",
        referer="http://localhost:3000",
        title="OpenChatHub",
        client=client,
    )
    yield relay
    await relay.aclose()


@pytest.fixture
async def client(database, relay) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client wired to the test DB and scripted provider."""
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_completion_relay] = lambda: relay

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[str], dict]:
    """Build bearer headers for a user id."""

    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_jwt(user_id)}"}

    return _headers
