"""Shared fixtures: a scripted bKash upstream and a controllable clock."""

import asyncio
import json
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest

from bkash_gateway.modules.bkash.client import BkashClient
from bkash_gateway.modules.bkash.payloads import CreatePaymentDefaults
from bkash_gateway.modules.bkash.token import BkashAuthenticator, BkashCredentials


BASE_URL = "https://bkash.test/tokenized/checkout"
CALLBACK_URL = "http://localhost:3000/bkash/callback"

CREDENTIALS = BkashCredentials(
    base_url=BASE_URL,
    app_key="app-key",
    app_secret="app-secret",
    username="merchant",
    password="merchant-pass",
)


class FakeClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeBkash:
    """Scripted stand-in for the tokenized checkout API.

    Responses queued with ``queue`` are served first, per endpoint;
    after that the token endpoints grant numbered tokens and business
    endpoints answer ``0000``.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.calls: list[tuple[str, dict, dict]] = []
        self._scripted: dict[str, deque] = defaultdict(deque)
        self._grants = 0

    def queue(self, endpoint: str, body=None, status_code: int = 200, error: Optional[Exception] = None) -> None:
        self._scripted[endpoint].append((status_code, body, error))

    def calls_to(self, endpoint: str) -> list[tuple[dict, dict]]:
        return [(headers, body) for path, headers, body in self.calls if path == endpoint]

    def count(self, endpoint: str) -> int:
        return len(self.calls_to(endpoint))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        if self.latency:
            await asyncio.sleep(self.latency)
        endpoint = request.url.path.split("/tokenized/checkout", 1)[1]
        body = json.loads(request.content) if request.content else {}
        self.calls.append((endpoint, dict(request.headers), body))

        if self._scripted[endpoint]:
            status_code, response_body, error = self._scripted[endpoint].popleft()
            if error is not None:
                raise error
            if isinstance(response_body, str):
                return httpx.Response(status_code, text=response_body)
            return httpx.Response(status_code, json=response_body)

        if endpoint in ("/token/grant", "/token/refresh"):
            self._grants += 1
            return httpx.Response(200, json={
                "statusCode": "0000",
                "statusMessage": "Successful",
                "id_token": f"token-{self._grants}",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": f"refresh-{self._grants}",
            })
        return httpx.Response(200, json={"statusCode": "0000", "statusMessage": "Successful"})


def make_authenticator(fake: FakeBkash, clock: Optional[FakeClock] = None) -> BkashAuthenticator:
    return BkashAuthenticator(
        CREDENTIALS,
        cache_ttl=timedelta(minutes=50),
        timeout=5.0,
        transport=fake.transport,
        clock=clock or FakeClock(),
    )


def make_client(fake: FakeBkash, clock: Optional[FakeClock] = None, **kwargs) -> BkashClient:
    return BkashClient(
        make_authenticator(fake, clock),
        CreatePaymentDefaults(callback_url=CALLBACK_URL),
        timeout=5.0,
        transport=fake.transport,
        **kwargs,
    )


@pytest.fixture
def fake_bkash() -> FakeBkash:
    return FakeBkash()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
