"""Async client for a GoTrue-compatible identity provider."""

from __future__ import annotations

from typing import Any

import httpx

from mfa_gateway.auth.models import (
    Challenge,
    Factor,
    ProviderSession,
    ProviderUser,
    SignUpOutcome,
)
from mfa_gateway.core.config import IdentityProviderConfig

TOKEN_EXPIRED_MARKER = "token is expired"
_EXPIRY_CODES = {"session_expired", "refresh_token_expired"}


class IdentityProviderError(Exception):
    """Typed failure returned by the identity provider."""

    def __init__(self, message: str, *, status_code: int = 400, error_code: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

    @property
    def is_token_expired(self) -> bool:
        """True when the provider rejected the bearer token as expired."""
        if TOKEN_EXPIRED_MARKER in self.message.lower():
            return True
        return self.error_code in _EXPIRY_CODES


def _error_from_response(response: httpx.Response) -> IdentityProviderError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = str(
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or body.get("error")
        or response.reason_phrase
        or f"Identity provider returned HTTP {response.status_code}"
    )
    error_code = str(body.get("error_code") or body.get("code") or "")
    return IdentityProviderError(
        message, status_code=response.status_code, error_code=error_code
    )


class IdentityProviderClient:
    """Thin typed wrapper over the provider's REST surface.

    Every method raises `IdentityProviderError` for provider-side denials;
    transport failures surface as `httpx.HTTPError`.
    """

    def __init__(
        self,
        config: IdentityProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    def _url(self, path: str) -> str:
        return f"{self._config.base_url}/auth/v1{path}"

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self._config.anon_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._client.request(
            method,
            self._url(path),
            params=params,
            json=json,
            headers=self._headers(access_token),
        )
        if response.status_code >= 400:
            raise _error_from_response(response)
        if not response.content:
            return {}
        return response.json()

    async def sign_in(self, email: str, password: str) -> ProviderSession:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return ProviderSession.model_validate(payload)

    async def sign_up(
        self, email: str, password: str, *, redirect_to: str | None = None
    ) -> SignUpOutcome:
        """Register a user; the session is absent when email confirmation is pending."""
        params = {"redirect_to": redirect_to} if redirect_to else None
        payload = await self._request(
            "POST",
            "/signup",
            params=params,
            json={"email": email, "password": password},
        )
        if payload.get("access_token"):
            session = ProviderSession.model_validate(payload)
            return SignUpOutcome(user=session.user, session=session)
        user = ProviderUser.model_validate(payload) if payload.get("id") else None
        return SignUpOutcome(user=user, session=None)

    async def refresh_session(self, refresh_token: str) -> ProviderSession:
        """Exchange a renewal token; the provider may or may not rotate it."""
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        if not payload.get("access_token"):
            raise IdentityProviderError(
                "Token refresh returned no access_token", status_code=502
            )
        return ProviderSession.model_validate(payload)

    async def get_user(self, access_token: str) -> ProviderUser:
        payload = await self._request("GET", "/user", access_token=access_token)
        return ProviderUser.model_validate(payload)

    async def list_factors(self, access_token: str) -> list[Factor]:
        payload = await self._request("GET", "/user", access_token=access_token)
        return [Factor.model_validate(item) for item in payload.get("factors") or []]

    async def enroll_factor(
        self, access_token: str, *, factor_type: str, friendly_name: str
    ) -> dict[str, Any]:
        """Start enrollment; returns provisioning material (QR code and secret)."""
        return await self._request(
            "POST",
            "/factors",
            access_token=access_token,
            json={"factor_type": factor_type, "friendly_name": friendly_name},
        )

    async def create_challenge(self, access_token: str, *, factor_id: str) -> Challenge:
        payload = await self._request(
            "POST", f"/factors/{factor_id}/challenge", access_token=access_token
        )
        return Challenge.model_validate(payload)

    async def verify_code(
        self,
        access_token: str,
        *,
        factor_id: str,
        challenge_id: str,
        code: str,
    ) -> ProviderSession:
        payload = await self._request(
            "POST",
            f"/factors/{factor_id}/verify",
            access_token=access_token,
            json={"challenge_id": challenge_id, "code": code},
        )
        return ProviderSession.model_validate(payload)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", access_token=access_token)

    async def aclose(self) -> None:
        await self._client.aclose()
