"""Webhook payload and message models for the QQ bot platform."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from mouse_bot.core.types import GROUP_AT_MESSAGE_CREATE, HANDSHAKE_OP


@dataclass(frozen=True, slots=True)
class WebhookPayload:
    """Envelope of every webhook body: ``{op, t, d, ...}``."""

    op: Optional[int]
    event_type: Optional[str]
    data: dict[str, Any]
    raw: dict[str, Any] = field(repr=False)

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> WebhookPayload:
        data = body.get("d")
        return cls(
            op=body.get("op"),
            event_type=body.get("t"),
            data=data if isinstance(data, dict) else {},
            raw=body,
        )

    @property
    def is_handshake(self) -> bool:
        return self.op == HANDSHAKE_OP

    @property
    def is_group_at_message(self) -> bool:
        return self.event_type == GROUP_AT_MESSAGE_CREATE


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """A group @-mention of the bot."""

    bot_id: str
    group_openid: str
    message_id: str
    text: str
    author_id: str = ""

    @classmethod
    def from_payload(cls, bot_id: str, payload: WebhookPayload) -> Optional[IncomingMessage]:
        """Returns None when the event carries no text or no target group."""
        data = payload.data
        content = data.get("content")
        text = content.strip() if isinstance(content, str) else ""
        group_openid = data.get("group_openid") or ""
        if not text or not group_openid:
            return None
        author = data.get("author") or {}
        return cls(
            bot_id=bot_id,
            group_openid=str(group_openid),
            message_id=str(data.get("id") or ""),
            text=text,
            author_id=str(author.get("member_openid") or author.get("id") or ""),
        )
