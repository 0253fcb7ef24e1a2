"""Sign-in, sign-up and MFA flow orchestration."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from mfa_gateway.api.errors import ApiError, ApiErrorCode
from mfa_gateway.auth.identity_provider import IdentityProviderError
from mfa_gateway.auth.lifecycle import CredentialLifecycleManager, LifecycleResult
from mfa_gateway.auth.models import (
    Challenge,
    ChallengeRequest,
    CredentialPair,
    CredentialsRequest,
    EnrollmentStatus,
    EnrollRequest,
    Factor,
    ProviderSession,
    ProviderUser,
    SignUpOutcome,
    VerifyRequest,
)
from mfa_gateway.auth.rate_limiter import RateDecision, RateGovernor
from mfa_gateway.core.config import RateLimitConfig
from mfa_gateway.core.logging import log_security_event

LOGGER = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"[0-9]{6}")
SUPPORTED_FACTOR_TYPES = {"totp"}
EXPIRED_MESSAGE = "Session expired. Please sign in again."


class IdentityProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> ProviderSession: ...

    async def sign_up(
        self, email: str, password: str, *, redirect_to: str | None = None
    ) -> SignUpOutcome: ...

    async def refresh_session(self, refresh_token: str) -> ProviderSession: ...

    async def get_user(self, access_token: str) -> ProviderUser: ...

    async def list_factors(self, access_token: str) -> list[Factor]: ...

    async def enroll_factor(
        self, access_token: str, *, factor_type: str, friendly_name: str
    ) -> dict[str, Any]: ...

    async def create_challenge(self, access_token: str, *, factor_id: str) -> Challenge: ...

    async def verify_code(
        self, access_token: str, *, factor_id: str, challenge_id: str, code: str
    ) -> ProviderSession: ...

    async def sign_out(self, access_token: str) -> None: ...


class EnrollmentStore(Protocol):
    def get_status(self, user_id: str) -> EnrollmentStatus | None: ...

    def upsert_status(self, status: EnrollmentStatus) -> None: ...


@dataclass
class FlowResponse:
    """Transport-neutral result of a flow; the router renders it."""

    status_code: int
    body: dict[str, Any]
    credentials: CredentialPair | None = None
    email: str | None = None
    clear_credentials: bool = False
    headers: dict[str, str] = field(default_factory=dict)


def pick_totp_factor(factors: list[Factor]) -> Factor | None:
    """Prefer a verified TOTP factor, else the first TOTP factor."""
    totp = [factor for factor in factors if factor.factor_type == "totp"]
    for factor in totp:
        if factor.status == "verified":
            return factor
    return totp[0] if totp else None


class AuthFlowService:
    """Orchestrates the credential and MFA flows behind the HTTP surface."""

    def __init__(
        self,
        *,
        provider: IdentityProvider,
        repository: EnrollmentStore,
        governor: RateGovernor,
        rate_limits: RateLimitConfig,
        lifecycle: CredentialLifecycleManager | None = None,
        signup_redirect_path: str = "/dashboard",
        logger: logging.Logger = LOGGER,
    ) -> None:
        """Initialize service dependencies."""
        self.signup_redirect_path = signup_redirect_path
        self._provider = provider
        self._repository = repository
        self._governor = governor
        self._rate_limits = rate_limits
        self._lifecycle = lifecycle or CredentialLifecycleManager(provider, logger=logger)
        self._logger = logger

    def _rate_limited(self, decision: RateDecision, message: str, client_id: str) -> ApiError:
        log_security_event(
            self._logger,
            "rate_limited",
            level=logging.WARNING,
            client_id=client_id,
        )
        return ApiError(
            status_code=429,
            error_code=ApiErrorCode.AUTH_RATE_LIMITED,
            message=message,
            headers=self._governor.headers(decision),
        )

    @staticmethod
    def _unauthorized(headers: dict[str, str] | None = None) -> ApiError:
        return ApiError(
            status_code=401,
            error_code=ApiErrorCode.AUTH_UNAUTHORIZED,
            message="Unauthorized",
            headers=headers,
        )

    @staticmethod
    def _invalid(
        message: str,
        headers: dict[str, str] | None = None,
        credentials: CredentialPair | None = None,
    ) -> ApiError:
        return ApiError(
            status_code=400,
            error_code=ApiErrorCode.VALIDATION_ERROR,
            message=message,
            headers=headers,
            credentials=credentials,
        )

    @staticmethod
    def _provider_failure(
        result: LifecycleResult[Any],
        *,
        status_code: int = 400,
        prefix: str = "",
        headers: dict[str, str] | None = None,
        renewed: CredentialPair | None = None,
    ) -> ApiError:
        """Map a failed protected call; expiry gets its own code and message.

        The error carries the latest renewed pair, from this call or from
        `renewed` (an earlier step of the same request).
        """
        credentials = result.credentials if result.renewed else renewed
        if result.expired:
            return ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_CREDENTIAL_EXPIRED,
                message=EXPIRED_MESSAGE,
                headers=headers,
                credentials=credentials,
            )
        detail = result.error.message if result.error else "provider request failed"
        return ApiError(
            status_code=status_code,
            error_code=ApiErrorCode.PROVIDER_REJECTED,
            message=f"{prefix}{detail}",
            headers=headers,
            credentials=credentials,
        )

    async def _has_mfa(self, user_id: str) -> bool:
        """Read the enrollment flag; a store failure reads as not enrolled."""
        try:
            status = await asyncio.to_thread(self._repository.get_status, user_id)
        except Exception:
            self._logger.exception("mfa_status_lookup_failed", extra={"user_id": user_id})
            return False
        return bool(status and status.mfa_enrolled)

    async def _mark_enrolled(self, user_id: str) -> None:
        """Best-effort enrollment write; failures are logged, never raised."""
        status = EnrollmentStatus(
            user_id=user_id,
            mfa_enrolled=True,
            enrolled_at=datetime.now(timezone.utc),
        )
        try:
            await asyncio.to_thread(self._repository.upsert_status, status)
        except Exception:
            self._logger.exception("mfa_status_upsert_failed", extra={"user_id": user_id})

    async def sign_in(self, request: CredentialsRequest, *, client_id: str) -> FlowResponse:
        """Authenticate credentials and report whether MFA is already enrolled."""
        decision = self._governor.check_budget(self._rate_limits.signin, client_id)
        if not decision.allowed:
            raise self._rate_limited(
                decision, "Too many login attempts. Try again later.", client_id
            )
        rate_headers = self._governor.headers(decision)

        if not request.email or not request.password:
            raise self._invalid("Email and password required", rate_headers)

        try:
            session = await self._provider.sign_in(request.email, request.password)
        except IdentityProviderError as exc:
            log_security_event(
                self._logger,
                "signin_failed",
                level=logging.WARNING,
                client_id=client_id,
                error_code=exc.error_code,
            )
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_INVALID_CREDENTIALS,
                message="Invalid credentials",
                headers=rate_headers,
            ) from exc

        user = session.user or ProviderUser(id="", email=request.email)
        has_mfa = await self._has_mfa(user.id) if user.id else False
        log_security_event(
            self._logger, "signin_succeeded", client_id=client_id, user_id=user.id
        )
        return FlowResponse(
            status_code=200,
            body={
                "user": user.summary(),
                "hasMFA": has_mfa,
                "message": "Sign in successful",
            },
            credentials=CredentialPair(session.access_token, session.refresh_token),
            email=user.email or request.email,
            headers=rate_headers,
        )

    async def sign_up(
        self,
        request: CredentialsRequest,
        *,
        client_id: str,
        redirect_to: str | None = None,
    ) -> FlowResponse:
        """Register a user; clears stale credential cookies when no session is issued."""
        decision = self._governor.check_budget(self._rate_limits.signup, client_id)
        if not decision.allowed:
            raise self._rate_limited(
                decision, "Too many signup attempts. Try again later.", client_id
            )
        rate_headers = self._governor.headers(decision)

        if not request.email or not request.password:
            raise self._invalid("Email and password required", rate_headers)

        try:
            outcome = await self._provider.sign_up(
                request.email, request.password, redirect_to=redirect_to
            )
        except IdentityProviderError as exc:
            raise ApiError(
                status_code=400,
                error_code=ApiErrorCode.PROVIDER_REJECTED,
                message=exc.message,
                headers=rate_headers,
            ) from exc

        user = outcome.user or ProviderUser(id="", email=request.email)
        email = user.email or request.email
        body = {"user": user.summary(), "message": "Sign up successful"}
        log_security_event(
            self._logger,
            "signup_succeeded",
            client_id=client_id,
            user_id=user.id,
        )
        if outcome.session is None:
            return FlowResponse(
                status_code=201,
                body=body,
                email=email,
                clear_credentials=True,
                headers=rate_headers,
            )
        return FlowResponse(
            status_code=201,
            body=body,
            credentials=CredentialPair(
                outcome.session.access_token, outcome.session.refresh_token
            ),
            email=email,
            headers=rate_headers,
        )

    async def enroll(
        self, request: EnrollRequest, *, credentials: CredentialPair | None
    ) -> FlowResponse:
        """Start TOTP enrollment and pass the provisioning payload through."""
        if credentials is None:
            raise self._unauthorized()
        factor_type = (request.factor_type or "totp").strip().lower()
        if factor_type not in SUPPORTED_FACTOR_TYPES:
            raise self._invalid(f"Unsupported factor type: {factor_type}")
        friendly_name = f"{factor_type.upper()} {int(time.time() * 1000)}"

        async def enroll_factor(token: str) -> dict[str, Any]:
            return await self._provider.enroll_factor(
                token, factor_type=factor_type, friendly_name=friendly_name
            )

        result = await self._lifecycle.perform(
            credentials, enroll_factor, operation_name="enroll_factor"
        )
        if not result.ok:
            raise self._provider_failure(result)
        return FlowResponse(
            status_code=200,
            body=dict(result.unwrap()),
            credentials=result.credentials if result.renewed else None,
        )

    async def challenge(
        self, request: ChallengeRequest, *, credentials: CredentialPair | None
    ) -> FlowResponse:
        """Create a single-use challenge for an explicit factor."""
        if credentials is None:
            raise self._unauthorized()
        if not request.factor_id:
            raise self._invalid("factorId required")
        factor_id = request.factor_id

        async def create_challenge(token: str) -> Challenge:
            return await self._provider.create_challenge(token, factor_id=factor_id)

        result = await self._lifecycle.perform(
            credentials, create_challenge, operation_name="create_challenge"
        )
        if not result.ok:
            raise self._provider_failure(result)
        challenge = result.unwrap()
        return FlowResponse(
            status_code=200,
            body={
                **challenge.model_dump(exclude_none=True),
                "challengeId": challenge.id,
                "factorId": factor_id,
            },
            credentials=result.credentials if result.renewed else None,
        )

    async def _list_factors(self, credentials: CredentialPair) -> LifecycleResult[list[Factor]]:
        return await self._lifecycle.perform(
            credentials, self._provider.list_factors, operation_name="list_factors"
        )

    async def _create_challenge(
        self, credentials: CredentialPair, factor_id: str
    ) -> LifecycleResult[Challenge]:
        async def create_challenge(token: str) -> Challenge:
            return await self._provider.create_challenge(token, factor_id=factor_id)

        return await self._lifecycle.perform(
            credentials, create_challenge, operation_name="create_challenge"
        )

    async def verify(
        self,
        request: VerifyRequest,
        *,
        credentials: CredentialPair | None,
        client_id: str,
    ) -> FlowResponse:
        """Verify a TOTP code, resolving factor and challenge when absent.

        Resolution order is list-factors, then challenge, then verify; each
        provider call is renewed and retried independently.
        """
        decision = self._governor.check_budget(self._rate_limits.verify, client_id)
        if not decision.allowed:
            raise self._rate_limited(
                decision, "Too many verification attempts. Try again later.", client_id
            )
        rate_headers = self._governor.headers(decision)

        if credentials is None:
            raise self._unauthorized(rate_headers)
        code = (request.code or "").strip()
        if not code:
            raise self._invalid("Code required", rate_headers)
        if not CODE_PATTERN.fullmatch(code):
            raise self._invalid("Code must be exactly 6 digits", rate_headers)

        factor_id = request.factor_id
        challenge_id = request.challenge_id
        renewed: CredentialPair | None = None

        if not factor_id:
            listed = await self._list_factors(credentials)
            if not listed.ok:
                raise self._provider_failure(
                    listed, prefix="Failed to list factors: ", headers=rate_headers
                )
            credentials = listed.credentials
            if listed.renewed:
                renewed = credentials
            factor = pick_totp_factor(listed.unwrap())
            if factor is None:
                raise self._invalid(
                    "No TOTP factor found. Please enroll first.", rate_headers, renewed
                )
            factor_id = factor.id

        if not challenge_id:
            created = await self._create_challenge(credentials, factor_id)
            if not created.ok:
                raise self._provider_failure(
                    created,
                    prefix="Failed to create challenge: ",
                    headers=rate_headers,
                    renewed=renewed,
                )
            credentials = created.credentials
            if created.renewed:
                renewed = credentials
            challenge_id = created.unwrap().id

        resolved_factor_id = factor_id
        resolved_challenge_id = challenge_id

        async def verify_code(token: str) -> ProviderSession:
            return await self._provider.verify_code(
                token,
                factor_id=resolved_factor_id,
                challenge_id=resolved_challenge_id,
                code=code,
            )

        verified = await self._lifecycle.perform(
            credentials, verify_code, operation_name="verify_code"
        )
        if not verified.ok:
            log_security_event(
                self._logger,
                "mfa_verify_failed",
                level=logging.WARNING,
                client_id=client_id,
                error_code=verified.error.error_code if verified.error else "",
            )
            raise self._provider_failure(
                verified, status_code=401, headers=rate_headers, renewed=renewed
            )

        session = verified.unwrap()
        credentials = CredentialPair(
            access_token=session.access_token or verified.credentials.access_token,
            refresh_token=session.refresh_token or verified.credentials.refresh_token,
        )
        user = session.user
        if user is not None and user.id:
            await self._mark_enrolled(user.id)
        log_security_event(
            self._logger,
            "mfa_verify_succeeded",
            client_id=client_id,
            user_id=user.id if user else "",
        )
        return FlowResponse(
            status_code=200,
            body={
                "user": user.model_dump() if user else {},
                "message": "MFA verification successful",
            },
            credentials=credentials,
            email=user.email if user else None,
            headers=rate_headers,
        )

    async def list_factors(self, *, credentials: CredentialPair | None) -> FlowResponse:
        """List the caller's enrolled factors."""
        if credentials is None:
            raise self._unauthorized()
        listed = await self._list_factors(credentials)
        if not listed.ok:
            raise self._provider_failure(listed, prefix="Failed to list factors: ")
        return FlowResponse(
            status_code=200,
            body={
                "factors": [
                    {"id": factor.id, "type": factor.factor_type, "status": factor.status}
                    for factor in listed.unwrap()
                ]
            },
            credentials=listed.credentials if listed.renewed else None,
        )

    async def check(self, *, credentials: CredentialPair | None) -> FlowResponse:
        """Report whether a TOTP factor exists and open a challenge for it."""
        if credentials is None:
            raise self._unauthorized()
        listed = await self._list_factors(credentials)
        if not listed.ok:
            raise self._provider_failure(listed, prefix="Failed to list factors: ")
        renewed = listed.renewed
        factor = pick_totp_factor(listed.unwrap())
        if factor is None:
            return FlowResponse(
                status_code=200,
                body={"hasMFA": False},
                credentials=listed.credentials if renewed else None,
            )

        created = await self._create_challenge(listed.credentials, factor.id)
        if not created.ok:
            raise self._provider_failure(
                created,
                prefix="Failed to create challenge: ",
                renewed=listed.credentials if renewed else None,
            )
        renewed = renewed or created.renewed
        return FlowResponse(
            status_code=200,
            body={
                "hasMFA": True,
                "challengeId": created.unwrap().id,
                "factorId": factor.id,
            },
            credentials=created.credentials if renewed else None,
        )

    async def dashboard(self, *, credentials: CredentialPair | None) -> FlowResponse:
        """Return the authenticated user and enrollment flag."""
        if credentials is None:
            raise self._unauthorized()
        fetched = await self._lifecycle.perform(
            credentials, self._provider.get_user, operation_name="get_user"
        )
        if not fetched.ok:
            raise self._provider_failure(fetched, status_code=401)
        user = fetched.unwrap()
        return FlowResponse(
            status_code=200,
            body={"user": user.summary(), "hasMFA": await self._has_mfa(user.id)},
            credentials=fetched.credentials if fetched.renewed else None,
        )

    async def logout(self, *, credentials: CredentialPair | None) -> FlowResponse:
        """Revoke the provider session when possible and clear cookies."""
        if credentials is not None:
            try:
                await self._provider.sign_out(credentials.access_token)
            except (IdentityProviderError, httpx.HTTPError) as exc:
                self._logger.warning(
                    "provider_signout_failed",
                    extra={"error_code": getattr(exc, "error_code", "") or type(exc).__name__},
                )
        return FlowResponse(
            status_code=200,
            body={"status": "ok"},
            clear_credentials=True,
        )
