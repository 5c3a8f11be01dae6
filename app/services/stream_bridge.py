"""Stream bridge: relays completion fragments to the client as SSE frames.

One bridge drives one chat turn:

  STARTING → STREAMING → COMPLETED | INTERRUPTED → FINALIZED

Every exit path (normal end, provider failure, client disconnect) leaves
through ``__aexit__``, which closes the upstream stream and persists the
accumulated assistant text exactly once.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncGenerator, AsyncIterable, Awaitable, Callable
from enum import StrEnum
from typing import Any

import anyio

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"
STREAM_ERROR_MESSAGE = "An error occurred during generation."


class BridgeState(StrEnum):
    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FINALIZED = "finalized"


def format_sse(data: dict) -> str:
    """Format a single SSE data frame."""
    return f"data: {json.dumps(data, ensure_ascii=False, separators=(',', ':'))}\n\n"


class StreamBridge:
    """Drives a fragment stream while accumulating and persisting its text.

    Args:
        fragments: Async iterable of text fragments (usually a CompletionStream).
            Closed on finalization if it exposes ``aclose()``.
        persist: Called once with the full text at finalization, only when the
            text is non-empty. Expected not to raise; failures are logged.
        chat_id: Used for log context only.
    """

    def __init__(
        self,
        fragments: AsyncIterable[str],
        persist: Callable[[str], Awaitable[Any]],
        chat_id: str = "",
    ) -> None:
        self._fragments = fragments
        self._persist = persist
        self.chat_id = chat_id
        self.state = BridgeState.STARTING
        self.end_state: BridgeState | None = None
        self.error: BaseException | None = None
        self._parts: list[str] = []
        self._started_at = time.monotonic()
        self._first_fragment_ms: int | None = None

    @property
    def content(self) -> str:
        return "".join(self._parts)

    # ── Scoped lifecycle ────────────────────────────────────

    async def __aenter__(self) -> StreamBridge:
        if self.state is not BridgeState.STARTING:
            raise RuntimeError(f"StreamBridge cannot be started from state {self.state}")
        self.state = BridgeState.STREAMING
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.state is BridgeState.STREAMING:
            if exc_type is None:
                self.state = BridgeState.COMPLETED
            else:
                # Client went away (GeneratorExit / cancellation) or an
                # unexpected failure escaped the streaming loop.
                self._interrupt(exc)
        # The client may already be gone and the task cancelled; persistence
        # still has to run to completion.
        with anyio.CancelScope(shield=True):
            await self._finalize()
        return False

    # ── Streaming ───────────────────────────────────────────

    async def stream(self) -> AsyncGenerator[str, None]:
        """Yield SSE frames: content fragments, an optional error, then [DONE]."""
        async with self:
            try:
                async for fragment in self._fragments:
                    if not fragment:
                        continue
                    if self._first_fragment_ms is None:
                        self._first_fragment_ms = int((time.monotonic() - self._started_at) * 1000)
                    self._parts.append(fragment)
                    yield format_sse({"content": fragment})
            except Exception as exc:
                logger.exception("Completion stream interrupted for chat %s", self.chat_id)
                self._interrupt(exc)
                # If the client is gone too, GeneratorExit surfaces here and
                # finalization still runs in __aexit__.
                yield format_sse({"error": STREAM_ERROR_MESSAGE})
        yield DONE_FRAME

    def _interrupt(self, exc: BaseException) -> None:
        if self.state is BridgeState.STREAMING:
            self.state = BridgeState.INTERRUPTED
            self.error = exc

    # ── Finalization ────────────────────────────────────────

    async def _finalize(self) -> None:
        if self.state is BridgeState.FINALIZED:
            return
        self.end_state = self.state
        self.state = BridgeState.FINALIZED

        aclose = getattr(self._fragments, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception:
                logger.exception("Failed to release completion stream for chat %s", self.chat_id)

        content = self.content
        if content:
            try:
                await self._persist(content)
            except Exception:
                logger.exception("Failed to persist assistant message for chat %s", self.chat_id)
        else:
            logger.warning(
                "No assistant content produced for chat %s (%s); nothing persisted",
                self.chat_id, self.end_state,
            )

        logger.info(
            "Chat turn finalized: chat=%s state=%s fragments=%d chars=%d ttft_ms=%s",
            self.chat_id, self.end_state, len(self._parts), len(content), self._first_fragment_ms,
        )
