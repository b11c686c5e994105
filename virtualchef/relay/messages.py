"""Inbound chat body parsing: chat-UI ``parts`` messages and plain ``content`` messages."""

from __future__ import annotations

import json
from typing import Any

from virtualchef.config.settings import settings
from virtualchef.core.errors import ChatValidationError
from virtualchef.core.models import ConversationMessage, TextBlock

INVALID_JSON_MESSAGE = "Invalid JSON body"
MESSAGES_REQUIRED_MESSAGE = "Messages are required"
_ALLOWED_ROLES = frozenset({"user", "assistant", "system"})


def parse_chat_body(raw: bytes) -> list[Any]:
    """Decode the request body and return its raw ``messages`` list."""
    try:
        body = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ChatValidationError(INVALID_JSON_MESSAGE) from exc
    if not isinstance(body, dict):
        raise ChatValidationError(INVALID_JSON_MESSAGE)
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise ChatValidationError(MESSAGES_REQUIRED_MESSAGE)
    return messages


def _text_blocks(items: list[Any]) -> tuple[TextBlock, ...]:
    blocks: list[TextBlock] = []
    for item in items:
        if isinstance(item, str):
            blocks.append(TextBlock(text=item))
        elif isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
            blocks.append(TextBlock(text=item["text"]))
        # reasoning / file / tool parts are UI-only and never forwarded
    return tuple(blocks)


def _to_message(index: int, item: Any) -> ConversationMessage | None:
    if not isinstance(item, dict):
        raise ChatValidationError(f"messages[{index}] must be an object")
    role = item.get("role")
    if role not in _ALLOWED_ROLES:
        raise ChatValidationError(f"messages[{index}].role is invalid")

    if "parts" in item:
        parts = item["parts"]
        if not isinstance(parts, list):
            raise ChatValidationError(f"messages[{index}].parts must be a list")
        blocks = _text_blocks(parts)
        if not blocks:
            return None
        content: str | tuple[TextBlock, ...] = blocks[0].text if len(blocks) == 1 else blocks
    else:
        raw_content = item.get("content")
        if isinstance(raw_content, str):
            content = raw_content
        elif isinstance(raw_content, list):
            content = _text_blocks(raw_content)
        else:
            raise ChatValidationError(f"messages[{index}].content is required")

    message = ConversationMessage(role=role, content=content)
    if len(message.text()) > settings.max_content_length_per_message:
        raise ChatValidationError(f"messages[{index}] exceeds {settings.max_content_length_per_message} characters")
    if not message.text().strip():
        return None
    return message


def to_conversation_messages(raw_messages: list[Any]) -> tuple[ConversationMessage, ...]:
    """Normalise inbound messages, preserving turn order.

    Messages left without any text (e.g. a UI message holding only a tool
    part) are dropped; if nothing remains the body is rejected.
    """
    if len(raw_messages) > settings.max_messages_count:
        raise ChatValidationError(f"messages exceeds limit of {settings.max_messages_count}")
    converted = [_to_message(index, item) for index, item in enumerate(raw_messages)]
    kept = tuple(message for message in converted if message is not None)
    if not kept:
        raise ChatValidationError(MESSAGES_REQUIRED_MESSAGE)
    return kept
