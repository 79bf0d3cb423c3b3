"""Access-token cache for the QQ bot open platform."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from mouse_bot.errors import DispatchError
from mouse_bot.log import get_logger
from mouse_bot.storage.models import BotIdentity

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AccessTokenEntry:
    token: str
    expires_at: float


class CredentialCache:
    """Caches one access token per application id.

    A token is handed out only while more than ``refresh_margin`` seconds of
    its lifetime remain. Refreshes for the same application are serialized
    by a per-key lock; callers that waited on the lock reuse the token the
    first caller fetched.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token_url: str,
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self._http = http
        self._token_url = token_url
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._entries: dict[str, AccessTokenEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _fresh(self, app_id: str) -> str | None:
        entry = self._entries.get(app_id)
        if entry and entry.expires_at > self._clock() + self._refresh_margin:
            return entry.token
        return None

    async def get_access_token(self, bot: BotIdentity) -> str:
        token = self._fresh(bot.app_id)
        if token:
            return token

        lock = self._locks.setdefault(bot.app_id, asyncio.Lock())
        async with lock:
            token = self._fresh(bot.app_id)
            if token:
                return token
            entry = await self._issue(bot)
            self._entries[bot.app_id] = entry
            return entry.token

    async def _issue(self, bot: BotIdentity) -> AccessTokenEntry:
        requested_at = self._clock()
        try:
            response = await self._http.post(
                self._token_url,
                json={"appId": bot.app_id, "clientSecret": bot.app_secret},
            )
            response.raise_for_status()
            data = response.json()
            token = data["access_token"]
            expires_in = float(data["expires_in"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error("access_token_issue_failed", bot_id=bot.id, app_id=bot.app_id, error=str(e))
            raise DispatchError(f"Access token request failed for app {bot.app_id}: {e}") from e

        logger.info("access_token_refreshed", bot_id=bot.id, app_id=bot.app_id, expires_in=expires_in)
        return AccessTokenEntry(token=token, expires_at=requested_at + expires_in)

    def invalidate(self, app_id: str) -> None:
        self._entries.pop(app_id, None)
