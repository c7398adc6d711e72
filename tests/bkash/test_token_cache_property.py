"""Property-based tests for bKash token caching and refresh.

Tests that:
- A token is reused while its expiry is in the future and granted otherwise
- The cached expiry is the grant time plus the cache window, not the upstream lifetime
- Refresh falls back to a fresh grant instead of failing
- Concurrent callers share one grant
"""

import asyncio
from datetime import timedelta

import httpx
import pytest
from hypothesis import given, settings, strategies as st

from bkash_gateway.modules.bkash.token import (
    AUTH_FAILED_MESSAGE,
    BkashAuthenticationError,
    TokenCache,
)

from conftest import FakeBkash, FakeClock, make_authenticator


class TestCacheValidity:
    """Cached token is returned without an upstream call while still valid."""

    @given(elapsed_seconds=st.integers(min_value=0, max_value=50 * 60 - 1))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_valid_token_is_reused(self, elapsed_seconds: int):
        fake = FakeBkash()
        clock = FakeClock()
        auth = make_authenticator(fake, clock)

        first = await auth.get_valid_token()
        clock.advance(seconds=elapsed_seconds)
        second = await auth.get_valid_token()

        assert first == second == "token-1"
        assert fake.count("/token/grant") == 1

    @given(extra_seconds=st.integers(min_value=0, max_value=24 * 3600))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_expired_token_triggers_exactly_one_grant(self, extra_seconds: int):
        fake = FakeBkash()
        clock = FakeClock()
        auth = make_authenticator(fake, clock)

        await auth.get_valid_token()
        clock.advance(minutes=50, seconds=extra_seconds)
        token = await auth.get_valid_token()

        assert token == "token-2"
        assert fake.count("/token/grant") == 2

    @pytest.mark.asyncio
    async def test_empty_cache_grants_once(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)

        assert await auth.get_valid_token() == "token-1"
        assert fake_bkash.count("/token/grant") == 1

    def test_validity_requires_token_and_future_expiry(self, clock):
        now = clock()
        assert not TokenCache().is_valid(now)
        assert not TokenCache(token="t").is_valid(now)
        assert not TokenCache(token="t", expires_at=now).is_valid(now)
        assert not TokenCache(token=None, expires_at=now + timedelta(minutes=1)).is_valid(now)
        assert TokenCache(token="t", expires_at=now + timedelta(seconds=1)).is_valid(now)


class TestExpiryMargin:

    @pytest.mark.asyncio
    async def test_expiry_is_grant_time_plus_fifty_minutes(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)
        granted_at = clock()

        await auth.get_valid_token()

        assert auth.cache.expires_at == granted_at + timedelta(minutes=50)
        assert auth.cache.expires_at != granted_at + timedelta(minutes=60)

    @pytest.mark.asyncio
    async def test_grant_replaces_whole_cache(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)

        await auth.get_valid_token()
        clock.advance(hours=2)
        await auth.get_valid_token()

        assert auth.cache == TokenCache(
            token="token-2",
            refresh_token="refresh-2",
            expires_at=clock() + timedelta(minutes=50),
        )

    @pytest.mark.asyncio
    async def test_grant_sends_credentials(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)

        await auth.get_valid_token()

        headers, body = fake_bkash.calls_to("/token/grant")[0]
        assert headers["username"] == "merchant"
        assert headers["password"] == "merchant-pass"
        assert body == {"app_key": "app-key", "app_secret": "app-secret"}


class TestGrantFailure:

    @pytest.mark.asyncio
    async def test_rejected_grant_raises_generic_error(self, fake_bkash, clock):
        rejection = {"statusCode": "2079", "statusMessage": "Invalid username and password"}
        fake_bkash.queue("/token/grant", rejection)
        auth = make_authenticator(fake_bkash, clock)

        with pytest.raises(BkashAuthenticationError) as exc_info:
            await auth.get_valid_token()

        assert str(exc_info.value) == AUTH_FAILED_MESSAGE
        assert "Invalid username" not in str(exc_info.value)
        assert exc_info.value.upstream == rejection
        assert auth.cache == TokenCache()

    @pytest.mark.asyncio
    async def test_network_error_raises_generic_error(self, fake_bkash, clock):
        fake_bkash.queue("/token/grant", error=httpx.ConnectError("connection refused"))
        auth = make_authenticator(fake_bkash, clock)

        with pytest.raises(BkashAuthenticationError, match=AUTH_FAILED_MESSAGE):
            await auth.get_valid_token()

    @pytest.mark.asyncio
    async def test_http_error_status_raises_generic_error(self, fake_bkash, clock):
        fake_bkash.queue("/token/grant", {"message": "Forbidden"}, status_code=403)
        auth = make_authenticator(fake_bkash, clock)

        with pytest.raises(BkashAuthenticationError) as exc_info:
            await auth.get_valid_token()

        assert exc_info.value.upstream == {"message": "Forbidden"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("id_token", [None, ""])
    async def test_success_code_without_token_raises(self, fake_bkash, clock, id_token):
        grant = {"statusCode": "0000", "statusMessage": "Successful"}
        if id_token is not None:
            grant["id_token"] = id_token
        fake_bkash.queue("/token/grant", grant)
        auth = make_authenticator(fake_bkash, clock)

        with pytest.raises(BkashAuthenticationError) as exc_info:
            await auth.get_valid_token()

        assert exc_info.value.upstream == grant
        assert auth.cache == TokenCache()

    @pytest.mark.asyncio
    async def test_non_json_grant_response_raises(self, fake_bkash, clock):
        fake_bkash.queue("/token/grant", "<html>gateway timeout</html>")
        auth = make_authenticator(fake_bkash, clock)

        with pytest.raises(BkashAuthenticationError):
            await auth.get_valid_token()


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token_grants(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)

        token = await auth.refresh()

        assert token == "token-1"
        assert fake_bkash.count("/token/grant") == 1
        assert fake_bkash.count("/token/refresh") == 0

    @pytest.mark.asyncio
    async def test_refresh_uses_cached_refresh_token(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)
        await auth.get_valid_token()
        clock.advance(minutes=10)

        token = await auth.refresh("token-1")

        assert token == "token-2"
        _, body = fake_bkash.calls_to("/token/refresh")[0]
        assert body == {
            "app_key": "app-key",
            "app_secret": "app-secret",
            "refresh_token": "refresh-1",
        }
        assert auth.cache.expires_at == clock() + timedelta(minutes=50)
        assert fake_bkash.count("/token/grant") == 1

    @pytest.mark.asyncio
    async def test_rejected_refresh_falls_back_to_grant(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)
        await auth.get_valid_token()
        fake_bkash.queue("/token/refresh", {"statusCode": "2002", "statusMessage": "Refresh token expired"})

        token = await auth.refresh("token-1")

        assert token == "token-2"
        assert fake_bkash.count("/token/refresh") == 1
        assert fake_bkash.count("/token/grant") == 2

    @pytest.mark.asyncio
    async def test_refresh_without_token_falls_back_to_grant(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)
        await auth.get_valid_token()
        fake_bkash.queue("/token/refresh", {"statusCode": "0000", "refresh_token": "refresh-x"})

        token = await auth.refresh("token-1")

        assert token == "token-2"
        assert auth.cache.token == "token-2"
        assert auth.cache.refresh_token == "refresh-2"
        assert fake_bkash.count("/token/grant") == 2

    @pytest.mark.asyncio
    async def test_network_error_on_refresh_falls_back_to_grant(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)
        await auth.get_valid_token()
        fake_bkash.queue("/token/refresh", error=httpx.ReadTimeout("timed out"))

        token = await auth.refresh("token-1")

        assert token == "token-2"
        assert fake_bkash.count("/token/grant") == 2

    @pytest.mark.asyncio
    async def test_failed_fallback_grant_raises(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)
        await auth.get_valid_token()
        fake_bkash.queue("/token/refresh", {"statusCode": "2002"})
        fake_bkash.queue("/token/grant", {"statusCode": "2079", "statusMessage": "Invalid"})

        with pytest.raises(BkashAuthenticationError):
            await auth.refresh("token-1")

    @pytest.mark.asyncio
    async def test_refresh_skipped_when_another_task_already_renewed(self, fake_bkash, clock):
        auth = make_authenticator(fake_bkash, clock)
        await auth.get_valid_token()
        await auth.refresh("token-1")

        token = await auth.refresh("token-1")

        assert token == "token-2"
        assert fake_bkash.count("/token/refresh") == 1


class TestSingleFlight:

    @given(callers=st.integers(min_value=2, max_value=20))
    @settings(max_examples=20, deadline=None)
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_grant(self, callers: int):
        fake = FakeBkash(latency=0.001)
        auth = make_authenticator(fake)

        tokens = await asyncio.gather(*(auth.get_valid_token() for _ in range(callers)))

        assert set(tokens) == {"token-1"}
        assert fake.count("/token/grant") == 1

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_refresh(self, clock):
        fake = FakeBkash(latency=0.001)
        auth = make_authenticator(fake, clock)
        await auth.get_valid_token()

        tokens = await asyncio.gather(*(auth.refresh("token-1") for _ in range(5)))

        assert set(tokens) == {"token-2"}
        assert fake.count("/token/refresh") == 1
