"""Cookie transport for the access/renewal credential pair."""

from __future__ import annotations

from typing import Mapping
from urllib.parse import quote

from starlette.responses import Response

from mfa_gateway.auth.models import CredentialPair
from mfa_gateway.core.config import CookieConfig

ACCESS_COOKIE = "auth_token"
REFRESH_COOKIE = "refresh_token"
EMAIL_COOKIE = "user_email"


class CredentialCookieCodec:
    """Encode credentials into `Set-Cookie` headers and decode them back.

    `user_email` is readable by the browser for display only; nothing reads
    it for authorization.
    """

    def __init__(self, config: CookieConfig) -> None:
        self._config = config

    def _set(self, response: Response, name: str, value: str, *, http_only: bool) -> None:
        response.set_cookie(
            name,
            value,
            max_age=self._config.max_age_seconds,
            path=self._config.path,
            secure=self._config.secure,
            httponly=http_only,
            samesite=self._config.same_site,
        )

    def _expire(self, response: Response, name: str, *, http_only: bool) -> None:
        response.set_cookie(
            name,
            "",
            max_age=0,
            path=self._config.path,
            secure=self._config.secure,
            httponly=http_only,
            samesite=self._config.same_site,
        )

    def encode(
        self,
        response: Response,
        credentials: CredentialPair,
        *,
        email: str | None = None,
    ) -> None:
        """Write the pair (and display email when known) to the response."""
        self._set(response, ACCESS_COOKIE, credentials.access_token, http_only=True)
        if credentials.refresh_token:
            self._set(response, REFRESH_COOKIE, credentials.refresh_token, http_only=True)
        if email:
            self.encode_email(response, email)

    def encode_email(self, response: Response, email: str) -> None:
        self._set(response, EMAIL_COOKIE, quote(email, safe=""), http_only=False)

    def clear(self, response: Response, *, include_email: bool = True) -> None:
        """Expire credential cookies on the client."""
        self._expire(response, ACCESS_COOKIE, http_only=True)
        self._expire(response, REFRESH_COOKIE, http_only=True)
        if include_email:
            self._expire(response, EMAIL_COOKIE, http_only=False)

    @staticmethod
    def decode(cookies: Mapping[str, str]) -> CredentialPair | None:
        """Rebuild the pair from request cookies; None without an access token."""
        access_token = (cookies.get(ACCESS_COOKIE) or "").strip()
        if not access_token:
            return None
        refresh_token = (cookies.get(REFRESH_COOKIE) or "").strip() or None
        return CredentialPair(access_token=access_token, refresh_token=refresh_token)

