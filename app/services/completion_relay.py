"""Completion relay: streaming chat completions from an OpenAI-compatible provider.

Flow:
  1. POST the assembled conversation with ``stream: true``
  2. Fail fast with ProviderError if the provider rejects the request
  3. Decode the SSE byte stream into plain text fragments, lazily
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable

import httpx

from app.core.config import Settings

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
# How much of a rejected response body is kept for diagnostics
ERROR_BODY_LIMIT = 500


class ProviderError(Exception):
    """The provider rejected the request before streaming started."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"Completion provider error {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


async def decode_event_stream(
    byte_chunks: AsyncIterable[bytes],
) -> AsyncGenerator[str, None]:
    """Decode provider SSE bytes into text deltas.

    Chunks may split lines (or UTF-8 sequences) anywhere, so partial input is
    buffered and only complete lines are interpreted. A trailing line without
    a newline at end of input is dropped. Non-data lines, malformed JSON and
    payloads without ``choices[0].delta.content`` are skipped.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in byte_chunks:
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            payload = _data_payload(line)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                return
            fragment = _delta_content(payload)
            if fragment:
                yield fragment


def _data_payload(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload.strip()


def _delta_content(payload: str) -> str | None:
    try:
        parsed = json.loads(payload)
        content = parsed["choices"][0]["delta"].get("content")
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None


class CompletionStream:
    """Single-pass async sequence of text fragments over one HTTP response.

    Iterating twice raises ``httpx.StreamConsumed``. Closing it (or leaving an
    ``async with`` block) releases the connection even if not exhausted.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._fragments: AsyncGenerator[str, None] | None = None

    def __aiter__(self) -> AsyncGenerator[str, None]:
        if self._fragments is not None:
            raise httpx.StreamConsumed()
        self._fragments = self._iter_fragments()
        return self._fragments

    async def _iter_fragments(self) -> AsyncGenerator[str, None]:
        try:
            async for fragment in decode_event_stream(self._response.aiter_bytes()):
                yield fragment
        finally:
            await self._response.aclose()

    @property
    def is_closed(self) -> bool:
        return self._response.is_closed

    async def aclose(self) -> None:
        if self._fragments is not None:
            await self._fragments.aclose()
        await self._response.aclose()

    async def __aenter__(self) -> CompletionStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class CompletionRelay:
    """Opens streaming completions against ``{base_url}/chat/completions``.

    Holds one shared ``httpx.AsyncClient`` for the process lifetime. Retries
    are the caller's concern; nothing here retries.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        referer: str | None = None,
        title: str | None = None,
        connect_timeout: float = 10.0,
        idle_timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._referer = referer
        self._title = title
        # read= bounds the wait between two chunks, not the whole response
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(idle_timeout, connect=connect_timeout),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> CompletionRelay:
        if not settings.openrouter_api_key:
            raise RuntimeError("OPENROUTER_API_KEY is not configured")
        return cls(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            referer=settings.app_url,
            title=settings.app_title,
            connect_timeout=settings.provider_connect_timeout,
            idle_timeout=settings.provider_idle_timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    async def open_stream(
        self,
        model: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
    ) -> CompletionStream:
        """Send one streaming completion request and return its fragment stream.

        Raises:
            ProviderError: non-2xx status or transport failure before any output.
        """
        body = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }
        request = self._client.build_request("POST", self._url, json=body, headers=self._headers())

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.exception("Completion provider unreachable for model %s", model)
            raise ProviderError(502, str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            try:
                raw = await response.aread()
            finally:
                await response.aclose()
            detail = raw.decode("utf-8", errors="ignore")[:ERROR_BODY_LIMIT]
            logger.error(
                "Completion provider rejected request (model=%s, status=%s): %s",
                model, response.status_code, detail,
            )
            raise ProviderError(response.status_code, detail)

        return CompletionStream(response)

    async def aclose(self) -> None:
        await self._client.aclose()
