"""Sends passive group replies to the QQ bot open platform."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from mouse_bot.config import QQConfig
from mouse_bot.errors import DispatchError
from mouse_bot.log import get_logger
from mouse_bot.messenger.credentials import CredentialCache
from mouse_bot.messenger.sequencer import ReplySequencer
from mouse_bot.storage.models import BotIdentity

logger = get_logger(__name__)

TEXT_MESSAGE_TYPE = 0


class OutboundDispatcher:
    """Delivers reply text tied to an inbound message.

    ``send`` returns the platform response body, or None when the reply was
    skipped (no inbound message id, or the reply cap for that message is
    used up).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        credentials: CredentialCache,
        sequencer: ReplySequencer,
        qq_config: QQConfig,
    ):
        self._http = http
        self._credentials = credentials
        self._sequencer = sequencer
        self._qq_config = qq_config

    def _api_base(self, bot: BotIdentity) -> str:
        base = self._qq_config.sandbox_api_base if bot.sandbox else self._qq_config.api_base
        return base.rstrip("/")

    async def send(
        self,
        bot: BotIdentity,
        group_openid: str,
        content: str,
        message_id: Optional[str],
    ) -> Optional[dict[str, Any]]:
        if not message_id:
            logger.warning("reply_skipped_no_message_id", bot_id=bot.id, group_openid=group_openid)
            return None

        msg_seq = self._sequencer.next_sequence(message_id)
        if msg_seq is None:
            logger.warning("reply_skipped_sequence_exhausted", bot_id=bot.id, message_id=message_id)
            return None

        token = await self._credentials.get_access_token(bot)
        url = f"{self._api_base(bot)}/v2/groups/{group_openid}/messages"
        body = {
            "content": content,
            "msg_type": TEXT_MESSAGE_TYPE,
            "msg_id": message_id,
            "msg_seq": msg_seq,
        }

        try:
            response = await self._http.post(
                url,
                json=body,
                headers={
                    "Authorization": f"QQBot {token}",
                    "X-QQ-Client-ID": bot.app_id,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                self._credentials.invalidate(bot.app_id)
            raise DispatchError(
                f"Send failed with HTTP {e.response.status_code}: {e.response.text[:300]}"
            ) from e
        except httpx.HTTPError as e:
            raise DispatchError(f"Send failed: {type(e).__name__}: {e}") from e

        logger.info("reply_sent", bot_id=bot.id, group_openid=group_openid, message_id=message_id, msg_seq=msg_seq)
        try:
            return response.json()
        except ValueError:
            return {}
