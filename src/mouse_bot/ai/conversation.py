"""Rebuild conversation context from the request-record ledger."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from mouse_bot.core.types import TurnRole
from mouse_bot.storage.models import RequestRecord
from mouse_bot.storage.request_repo import RequestRepository

DEFAULT_MAX_MESSAGES = 20

_REPLAYED_ROLES = frozenset({TurnRole.USER.value, TurnRole.ASSISTANT.value})


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: str  # "system" | "user" | "assistant"
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def _assistant_content(response: dict[str, Any] | None) -> str:
    """Pull choices[0].message.content out of a stored chat-completion payload."""
    if not response:
        return ""
    choices = response.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


def build_turns(records: list[RequestRecord]) -> list[ConversationTurn]:
    """Convert chronologically ordered records into user/assistant turns.

    Each record re-emits the user/assistant messages it sent, followed by the
    assistant reply stored in its response.
    """
    turns: list[ConversationTurn] = []
    for record in records:
        for message in record.request.get("messages", []):
            role = message.get("role")
            content = message.get("content")
            if role in _REPLAYED_ROLES and isinstance(content, str):
                turns.append(ConversationTurn(role=role, content=content))

        reply = _assistant_content(record.response)
        if reply:
            turns.append(ConversationTurn(role=TurnRole.ASSISTANT.value, content=reply))
    return turns


class ConversationHistory:
    """Reads the last rounds of a flow's conversation.

    Nothing is cached: the context window is recomputed from the ledger on
    every call.
    """

    def __init__(self, requests: RequestRepository):
        self._requests = requests

    async def load(self, flow_id: str, max_messages: int = DEFAULT_MAX_MESSAGES) -> list[ConversationTurn]:
        if max_messages <= 0:
            return []

        # One record holds one user + assistant round
        max_rounds = math.ceil(max_messages / 2)
        newest_first = await self._requests.recent_successful(flow_id, limit=max_rounds)
        turns = build_turns(list(reversed(newest_first)))
        return turns[-max_messages:]
