"""Resolve the caller's credential pair and identity from request headers."""

from __future__ import annotations

from typing import Mapping

from mfa_gateway.auth.cookies import CredentialCookieCodec
from mfa_gateway.auth.models import CredentialPair

UNKNOWN_CLIENT = "unknown"


def extract_bearer_token(authorization: str | None) -> str:
    """Extract bearer token from Authorization header value."""
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def resolve_credentials(
    headers: Mapping[str, str], cookies: Mapping[str, str]
) -> CredentialPair | None:
    """Return the one canonical pair for a request.

    A bearer header wins and carries no renewal credential; otherwise the
    `auth_token`/`refresh_token` cookies form the pair.
    """
    token = extract_bearer_token(headers.get("authorization"))
    if token:
        return CredentialPair(access_token=token)
    return CredentialCookieCodec.decode(cookies)


def client_identity(headers: Mapping[str, str]) -> str:
    """Best-effort client identity from `X-Forwarded-For`.

    Requests without the header all share the `unknown` bucket.
    """
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    return first or UNKNOWN_CLIENT
