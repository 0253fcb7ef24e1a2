"""Renew-and-retry wrapper around bearer-token provider calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Protocol, TypeVar

import httpx

from mfa_gateway.auth.identity_provider import IdentityProviderError
from mfa_gateway.auth.models import CredentialPair, ProviderSession
from mfa_gateway.core.logging import log_security_event

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class SessionRenewer(Protocol):
    async def refresh_session(self, refresh_token: str) -> ProviderSession: ...


@dataclass(frozen=True)
class LifecycleResult(Generic[T]):
    """Final outcome of one protected provider call.

    `credentials` is the latest pair observed; it differs from the input
    pair only when a renewal succeeded.
    """

    value: T | None
    error: IdentityProviderError | None
    credentials: CredentialPair
    renewed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def expired(self) -> bool:
        """True when the call ended on a non-renewable expiry."""
        return self.error is not None and self.error.is_token_expired

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class CredentialLifecycleManager:
    """Runs an operation with a bearer token, renewing once on expiry."""

    def __init__(self, renewer: SessionRenewer, *, logger: logging.Logger = LOGGER) -> None:
        self._renewer = renewer
        self._logger = logger

    async def perform(
        self,
        credentials: CredentialPair,
        operation: Callable[[str], Awaitable[T]],
        *,
        operation_name: str = "",
    ) -> LifecycleResult[T]:
        """Call `operation(access_token)`, renewing and retrying at most once.

        Errors other than expiry are returned untouched. A failed renewal
        returns the original expiry error; the retry's outcome is final.
        """
        try:
            value = await operation(credentials.access_token)
        except IdentityProviderError as exc:
            if not exc.is_token_expired:
                return LifecycleResult(value=None, error=exc, credentials=credentials)
            expiry = exc
        else:
            return LifecycleResult(value=value, error=None, credentials=credentials)

        if not credentials.renewable:
            log_security_event(
                self._logger,
                "credential_expired_not_renewable",
                operation=operation_name,
            )
            return LifecycleResult(value=None, error=expiry, credentials=credentials)

        renewed = await self._renew(credentials.refresh_token, operation_name)
        if renewed is None:
            return LifecycleResult(value=None, error=expiry, credentials=credentials)

        try:
            value = await operation(renewed.access_token)
        except IdentityProviderError as exc:
            return LifecycleResult(
                value=None, error=exc, credentials=renewed, renewed=True
            )
        return LifecycleResult(value=value, error=None, credentials=renewed, renewed=True)

    async def _renew(self, refresh_token: str, operation_name: str) -> CredentialPair | None:
        try:
            session = await self._renewer.refresh_session(refresh_token)
        except (IdentityProviderError, httpx.HTTPError) as exc:
            log_security_event(
                self._logger,
                "credential_renewal_failed",
                level=logging.WARNING,
                operation=operation_name,
                error_code=getattr(exc, "error_code", "") or type(exc).__name__,
            )
            return None

        log_security_event(
            self._logger, "credential_renewed", operation=operation_name
        )
        return CredentialPair(
            access_token=session.access_token,
            refresh_token=session.refresh_token or refresh_token,
        )
