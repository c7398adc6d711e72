"""FastAPI dependencies for the bKash endpoints."""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from bkash_gateway.core.config import settings
from bkash_gateway.modules.bkash.client import BkashClient


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(
    api_key: Optional[str] = Depends(api_key_header),
) -> None:
    """Reject requests whose X-API-Key does not match the configured key.

    An unset API_KEY rejects everything.
    """
    expected = settings.API_KEY
    if not api_key or not expected or not secrets.compare_digest(api_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "ApiKey"},
        )


def get_bkash_client(request: Request) -> BkashClient:
    """Client owned by the application; built on first use.

    The client holds the token cache, so one instance must serve every request.
    """
    client = getattr(request.app.state, "bkash_client", None)
    if client is None:
        client = BkashClient.from_settings(settings)
        request.app.state.bkash_client = client
    return client
