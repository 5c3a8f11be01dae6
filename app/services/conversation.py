"""Conversation assembly: the message list submitted to the provider."""

from collections.abc import Iterable
from typing import Any

from app.models.message import MessageRole


def build_messages(
    system_prompt: str,
    history: Iterable[Any],
    user_message: str,
) -> list[dict]:
    """Assemble the message array for the completion call.

    The bot's *current* system prompt always comes first; prior ``system``
    entries in the history are never re-injected. ``history`` items may be
    ``Message`` rows or ``{"role", "content"}`` dicts, in creation order.
    """
    messages: list[dict] = [{"role": MessageRole.SYSTEM.value, "content": system_prompt}]

    for msg in history:
        role, content = _role_and_content(msg)
        if role == MessageRole.SYSTEM:
            continue
        messages.append({"role": role, "content": content})

    messages.append({"role": MessageRole.USER.value, "content": user_message})
    return messages


def _role_and_content(msg: Any) -> tuple[str, str]:
    if isinstance(msg, dict):
        role, content = msg["role"], msg["content"]
    else:
        role, content = msg.role, msg.content
    return MessageRole(role).value, content
