"""bKash token grant, refresh and caching.

The tokenized checkout API authorizes every business call with an
``id_token`` obtained from ``/token/grant``. Tokens live for an hour
upstream; the authenticator reuses one for a shorter window and renews
it through ``/token/refresh`` when the gateway reports it expired.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
from opentelemetry import trace

from bkash_gateway.core.metrics import BKASH_TOKEN_REQUESTS_TOTAL
from bkash_gateway.core.tracing import create_span, record_exception

logger = logging.getLogger(__name__)

SUCCESS_CODE = "0000"

AUTH_FAILED_MESSAGE = "Failed to authenticate with bKash"


class BkashAuthenticationError(Exception):
    """Token grant failed.

    The message is always generic. ``upstream`` keeps whatever the
    credential endpoint said so it can be logged, never returned.
    """

    def __init__(self, upstream: Optional[object] = None):
        super().__init__(AUTH_FAILED_MESSAGE)
        self.upstream = upstream


@dataclass(frozen=True)
class BkashCredentials:
    """Static application credentials issued by bKash."""
    base_url: str
    app_key: str
    app_secret: str
    username: str
    password: str

    @classmethod
    def from_settings(cls, settings) -> "BkashCredentials":
        return cls(
            base_url=settings.BKASH_BASE_URL.rstrip("/"),
            app_key=settings.BKASH_APP_KEY,
            app_secret=settings.BKASH_APP_SECRET,
            username=settings.BKASH_USERNAME,
            password=settings.BKASH_PASSWORD,
        )


@dataclass(frozen=True)
class TokenCache:
    """One cached grant. Replaced as a whole, never mutated."""
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_valid(self, now: datetime) -> bool:
        return bool(self.token) and self.expires_at is not None and self.expires_at > now


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BkashAuthenticator:
    """Owns the token cache and serializes grant/refresh calls.

    Concurrent callers that find no valid token wait on one lock, and
    the first one through fills the cache for the rest.
    """

    def __init__(
        self,
        credentials: BkashCredentials,
        cache_ttl: timedelta = timedelta(minutes=50),
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.credentials = credentials
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._cache = TokenCache()
        self._lock = asyncio.Lock()

    @property
    def cache(self) -> TokenCache:
        return self._cache

    def _credential_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "username": self.credentials.username,
            "password": self.credentials.password,
        }

    def _store(self, data: dict) -> str:
        self._cache = TokenCache(
            token=data.get("id_token"),
            refresh_token=data.get("refresh_token"),
            expires_at=self._clock() + self.cache_ttl,
        )
        return self._cache.token

    async def _post_credentials(self, kind: str, path: str, body: dict) -> dict:
        """POST to a token endpoint and return the parsed JSON body.

        Raises:
            httpx.HTTPError: transport failure or non-2xx status
            ValueError: body is not JSON
        """
        start = time.perf_counter()
        with create_span(
            f"bkash.token.{kind}",
            attributes={"bkash.operation": f"token_{kind}"},
            kind=trace.SpanKind.CLIENT,
        ):
            try:
                async with httpx.AsyncClient(
                    transport=self._transport, timeout=self.timeout
                ) as client:
                    response = await client.post(
                        f"{self.credentials.base_url}{path}",
                        headers=self._credential_headers(),
                        json=body,
                    )
                    response.raise_for_status()
                    data = response.json()
                    if not isinstance(data, dict):
                        raise ValueError(f"unexpected token response: {data!r}")
                    return data
            except Exception as e:
                record_exception(e)
                raise
            finally:
                logger.debug(
                    "bKash token call finished",
                    extra={"kind": kind, "duration_ms": round((time.perf_counter() - start) * 1000, 2)},
                )

    async def _grant(self) -> str:
        """Fetch a fresh token, ignoring whatever is cached.

        Raises:
            BkashAuthenticationError: on any transport, HTTP or status-code failure
        """
        try:
            data = await self._post_credentials(
                "grant",
                "/token/grant",
                {
                    "app_key": self.credentials.app_key,
                    "app_secret": self.credentials.app_secret,
                },
            )
        except httpx.HTTPStatusError as e:
            upstream = _response_body(e.response)
            BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="grant", outcome="error").inc()
            logger.error("bKash auth token error", extra={"upstream": upstream})
            raise BkashAuthenticationError(upstream) from e
        except (httpx.HTTPError, ValueError) as e:
            BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="grant", outcome="error").inc()
            logger.error("bKash auth token error", extra={"upstream": str(e)})
            raise BkashAuthenticationError(str(e)) from e

        if data.get("statusCode") != SUCCESS_CODE:
            BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="grant", outcome="rejected").inc()
            logger.error(
                f"Failed to get auth token: {data.get('statusMessage')}",
                extra={"upstream": data},
            )
            raise BkashAuthenticationError(data)

        if not data.get("id_token"):
            BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="grant", outcome="rejected").inc()
            logger.error("bKash token grant returned no id_token", extra={"upstream": data})
            raise BkashAuthenticationError(data)

        BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="grant", outcome="success").inc()
        logger.info("bKash token granted")
        return self._store(data)

    async def get_valid_token(self) -> str:
        """Return the cached token, granting a new one if it is missing or stale.

        Raises:
            BkashAuthenticationError: if a grant was needed and failed
        """
        if self._cache.is_valid(self._clock()):
            return self._cache.token

        async with self._lock:
            # Another task may have granted while we waited
            if self._cache.is_valid(self._clock()):
                return self._cache.token
            return await self._grant()

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        """Renew the token after the gateway reported it expired.

        Without a cached refresh token this is a plain grant. A failed
        refresh also falls back to a grant; only a failed grant raises.

        Args:
            stale_token: The token the caller was rejected with. If the
                cache already holds a different one, another task has
                renewed it and no upstream call is made.

        Raises:
            BkashAuthenticationError: if the fallback grant failed
        """
        async with self._lock:
            cache = self._cache
            if stale_token is not None and cache.token and cache.token != stale_token:
                if cache.is_valid(self._clock()):
                    return cache.token

            if not cache.refresh_token:
                return await self._grant()

            try:
                data = await self._post_credentials(
                    "refresh",
                    "/token/refresh",
                    {
                        "app_key": self.credentials.app_key,
                        "app_secret": self.credentials.app_secret,
                        "refresh_token": cache.refresh_token,
                    },
                )
            except (httpx.HTTPError, ValueError) as e:
                BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="refresh", outcome="error").inc()
                upstream = _response_body(e.response) if isinstance(e, httpx.HTTPStatusError) else str(e)
                logger.warning("bKash token refresh error", extra={"upstream": upstream})
                return await self._grant()

            if data.get("statusCode") != SUCCESS_CODE or not data.get("id_token"):
                BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="refresh", outcome="rejected").inc()
                logger.warning(
                    "bKash token refresh rejected, requesting a new grant",
                    extra={"upstream": data},
                )
                return await self._grant()

            BKASH_TOKEN_REQUESTS_TOTAL.labels(kind="refresh", outcome="success").inc()
            logger.info("bKash token refreshed")
            return self._store(data)


def _response_body(response: httpx.Response) -> object:
    """Best-effort JSON body of an upstream response, for logs and errors."""
    try:
        return response.json()
    except ValueError:
        return response.text
