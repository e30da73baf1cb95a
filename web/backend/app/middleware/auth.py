"""Auth middleware -- FastAPI dependency enforcing the optional API key.

When an API key is configured, requests must carry
``Authorization: Bearer <api-key>``. ``/health``, ``/status``, ``OPTIONS``
pre-flights and requests from localhost are exempt.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from regbridge.errors import Unauthorized

EXEMPT_PATHS = ("/health", "/status")
LOCAL_HOSTS = ("127.0.0.1", "::1", "localhost")


def is_exempt(request: Request) -> bool:
    if request.method == "OPTIONS" or request.url.path in EXEMPT_PATHS:
        return True
    return request.client is not None and request.client.host in LOCAL_HOSTS


async def require_api_key(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> None:
    """FastAPI dependency that rejects requests without the configured key.

    Raises ``Unauthorized`` (401) for a missing header, a scheme other
    than Bearer, or a wrong key.
    """
    api_key = request.app.state.settings.api_key
    if not api_key or is_exempt(request):
        return

    if not authorization:
        raise Unauthorized("API key must be provided in the Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        raise Unauthorized("Format is: Authorization: Bearer <api-key>")
    if token.strip() != api_key:
        raise Unauthorized("The provided API key is not valid")
