import asyncio
import json

import httpx
import pytest

from mouse_bot.errors import DispatchError
from mouse_bot.messenger.credentials import CredentialCache

TOKEN_URL = "https://bots.qq.com/app/getAppAccessToken"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TokenEndpoint:
    """Issues tok1, tok2, ... with a fixed lifetime."""

    def __init__(self, expires_in: str = "7200", status_code: int = 200):
        self.expires_in = expires_in
        self.status_code = status_code
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "invalid appid"})
        return httpx.Response(
            200,
            json={"access_token": f"tok{len(self.requests)}", "expires_in": self.expires_in},
        )


def _cache(endpoint: TokenEndpoint, clock: FakeClock) -> CredentialCache:
    http = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return CredentialCache(http, TOKEN_URL, refresh_margin=60, clock=clock)


class TestCredentialCache:
    @pytest.mark.asyncio
    async def test_requests_token_with_app_credentials(self, bot):
        endpoint = TokenEndpoint()
        cache = _cache(endpoint, FakeClock())

        assert await cache.get_access_token(bot) == "tok1"
        assert endpoint.requests == [{"appId": bot.app_id, "clientSecret": bot.app_secret}]

    @pytest.mark.asyncio
    async def test_reuses_fresh_token(self, bot):
        endpoint = TokenEndpoint()
        clock = FakeClock()
        cache = _cache(endpoint, clock)

        await cache.get_access_token(bot)
        clock.now += 7000
        assert await cache.get_access_token(bot) == "tok1"
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_refreshes_inside_margin(self, bot):
        endpoint = TokenEndpoint()
        clock = FakeClock()
        cache = _cache(endpoint, clock)

        await cache.get_access_token(bot)
        clock.now += 7200 - 59
        assert await cache.get_access_token(bot) == "tok2"
        assert len(endpoint.requests) == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self, bot):
        endpoint = TokenEndpoint()
        cache = _cache(endpoint, FakeClock())

        tokens = await asyncio.gather(*(cache.get_access_token(bot) for _ in range(5)))

        assert tokens == ["tok1"] * 5
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_token(self, bot):
        endpoint = TokenEndpoint()
        cache = _cache(endpoint, FakeClock())

        await cache.get_access_token(bot)
        cache.invalidate(bot.app_id)
        assert await cache.get_access_token(bot) == "tok2"

    @pytest.mark.asyncio
    async def test_http_error_raises_dispatch_error(self, bot):
        cache = _cache(TokenEndpoint(status_code=500), FakeClock())

        with pytest.raises(DispatchError):
            await cache.get_access_token(bot)

    @pytest.mark.asyncio
    async def test_malformed_response_raises_dispatch_error(self, bot):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"code": 1})))
        cache = CredentialCache(http, TOKEN_URL)

        with pytest.raises(DispatchError):
            await cache.get_access_token(bot)
