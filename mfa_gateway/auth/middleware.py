"""HTTP middleware that gates protected pages and MFA routes."""

from __future__ import annotations

from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse

from mfa_gateway.api.contracts import ApiErrorResponse
from mfa_gateway.auth.credentials import resolve_credentials

PROTECTED_PATHS = frozenset({"/dashboard"})
PROTECTED_PREFIXES = ("/api/mfa/",)


def is_protected(path: str) -> bool:
    return path in PROTECTED_PATHS or path.startswith(PROTECTED_PREFIXES)


def create_auth_middleware() -> Callable:
    """Create middleware that rejects protected requests without credentials.

    The gate only checks that a credential is present; validity is decided
    by the provider call behind the route.
    """

    async def auth_middleware(request: Request, call_next: Callable):
        if not is_protected(request.url.path):
            return await call_next(request)

        if resolve_credentials(request.headers, request.cookies) is None:
            return JSONResponse(
                status_code=401,
                content=ApiErrorResponse(error="Unauthorized").model_dump(),
            )
        return await call_next(request)

    return auth_middleware
