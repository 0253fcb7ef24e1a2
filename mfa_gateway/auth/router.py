"""Authentication and MFA API routers."""

from __future__ import annotations

from typing import Awaitable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from mfa_gateway.api.contracts import (
    ApiErrorResponse,
    ChallengeResponse,
    DashboardResponse,
    EnrollResponse,
    FactorListResponse,
    LogoutResponse,
    MfaCheckResponse,
    SignInResponse,
    SignUpResponse,
    VerifyResponse,
)
from mfa_gateway.api.errors import ApiError, to_error_payload
from mfa_gateway.auth.cookies import CredentialCookieCodec
from mfa_gateway.auth.credentials import client_identity, resolve_credentials
from mfa_gateway.auth.models import (
    ChallengeRequest,
    CredentialPair,
    CredentialsRequest,
    EnrollRequest,
    VerifyRequest,
)
from mfa_gateway.auth.service import AuthFlowService, FlowResponse

_ERRORS_400_401 = {
    400: {"model": ApiErrorResponse},
    401: {"model": ApiErrorResponse},
}


def render_flow_response(flow: FlowResponse, codec: CredentialCookieCodec) -> JSONResponse:
    """Render a successful flow result with its cookie updates."""
    response = JSONResponse(
        status_code=flow.status_code, content=flow.body, headers=flow.headers or None
    )
    if flow.clear_credentials:
        codec.clear(response, include_email=not flow.email)
    if flow.credentials is not None:
        codec.encode(response, flow.credentials, email=flow.email)
    elif flow.email:
        codec.encode_email(response, flow.email)
    return response


async def run_flow(
    flow: Awaitable[FlowResponse], codec: CredentialCookieCodec
) -> JSONResponse:
    """Await a flow and render it.

    Errors without a renewed pair propagate to the exception handlers. An
    error raised after a renewal is rendered here so the renewed pair still
    replaces the consumed one on the client.
    """
    try:
        result = await flow
    except ApiError as exc:
        if exc.credentials is None:
            raise
        response = JSONResponse(
            status_code=exc.status_code,
            content=ApiErrorResponse(**to_error_payload(exc.detail)).model_dump(),
            headers=exc.headers,
        )
        codec.encode(response, exc.credentials)
        return response
    return render_flow_response(result, codec)


def _credentials(request: Request) -> CredentialPair | None:
    return resolve_credentials(request.headers, request.cookies)


def create_auth_router(service: AuthFlowService, codec: CredentialCookieCodec) -> APIRouter:
    """Build router with sign-in, sign-up, factor listing and logout endpoints."""
    router = APIRouter(tags=["auth"])

    @router.post(
        "/api/auth/signin",
        response_model=SignInResponse,
        responses={**_ERRORS_400_401, 429: {"model": ApiErrorResponse}},
    )
    async def signin(req: CredentialsRequest, request: Request) -> JSONResponse:
        """Authenticate user and set credential cookies."""
        return await run_flow(
            service.sign_in(req, client_id=client_identity(request.headers)), codec
        )

    @router.post(
        "/api/auth/signup",
        status_code=201,
        response_model=SignUpResponse,
        responses={400: {"model": ApiErrorResponse}, 429: {"model": ApiErrorResponse}},
    )
    async def signup(req: CredentialsRequest, request: Request) -> JSONResponse:
        """Register user; sets cookies only when the provider issues a session."""
        redirect_to = str(request.base_url).rstrip("/") + service.signup_redirect_path
        return await run_flow(
            service.sign_up(
                req,
                client_id=client_identity(request.headers),
                redirect_to=redirect_to,
            ),
            codec,
        )

    @router.post(
        "/api/auth/list-factors",
        response_model=FactorListResponse,
        responses=_ERRORS_400_401,
    )
    async def list_factors(request: Request) -> JSONResponse:
        """List factors enrolled for the current credential."""
        return await run_flow(service.list_factors(credentials=_credentials(request)), codec)

    @router.post("/api/auth/logout", response_model=LogoutResponse)
    async def logout(request: Request) -> JSONResponse:
        """Sign out at the provider and clear credential cookies."""
        return await run_flow(service.logout(credentials=_credentials(request)), codec)

    @router.get(
        "/dashboard",
        response_model=DashboardResponse,
        responses={401: {"model": ApiErrorResponse}},
    )
    async def dashboard(request: Request) -> JSONResponse:
        """Return the signed-in user for the dashboard."""
        return await run_flow(service.dashboard(credentials=_credentials(request)), codec)

    return router


def create_mfa_router(service: AuthFlowService, codec: CredentialCookieCodec) -> APIRouter:
    """Build router with enroll, challenge, verify and check endpoints."""
    router = APIRouter(tags=["mfa"])

    @router.post("/api/mfa/enroll", response_model=EnrollResponse, responses=_ERRORS_400_401)
    async def enroll(request: Request, req: EnrollRequest | None = None) -> JSONResponse:
        """Start TOTP enrollment and return QR code and secret."""
        return await run_flow(
            service.enroll(req or EnrollRequest(), credentials=_credentials(request)), codec
        )

    @router.post(
        "/api/mfa/challenge", response_model=ChallengeResponse, responses=_ERRORS_400_401
    )
    async def challenge(
        request: Request, req: ChallengeRequest | None = None
    ) -> JSONResponse:
        """Create a challenge for the given factor."""
        return await run_flow(
            service.challenge(req or ChallengeRequest(), credentials=_credentials(request)),
            codec,
        )

    @router.post(
        "/api/mfa/verify",
        response_model=VerifyResponse,
        responses={
            **_ERRORS_400_401,
            429: {"model": ApiErrorResponse},
            500: {"model": ApiErrorResponse},
        },
    )
    async def verify(request: Request, req: VerifyRequest | None = None) -> JSONResponse:
        """Verify a TOTP code and upgrade the session cookies."""
        return await run_flow(
            service.verify(
                req or VerifyRequest(),
                credentials=_credentials(request),
                client_id=client_identity(request.headers),
            ),
            codec,
        )

    @router.post("/api/mfa/check", response_model=MfaCheckResponse, responses=_ERRORS_400_401)
    async def check(request: Request) -> JSONResponse:
        """Report MFA enrollment and open a challenge when a factor exists."""
        return await run_flow(service.check(credentials=_credentials(request)), codec)

    return router
