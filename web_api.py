from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mfa_gateway.api.contracts import HealthResponse
from mfa_gateway.api.http_setup import register_exception_handlers, register_http_middleware
from mfa_gateway.auth.cookies import CredentialCookieCodec
from mfa_gateway.auth.identity_provider import IdentityProviderClient
from mfa_gateway.auth.lifecycle import CredentialLifecycleManager
from mfa_gateway.auth.middleware import create_auth_middleware
from mfa_gateway.auth.rate_limiter import RateGovernor
from mfa_gateway.auth.repository import EnrollmentRepository
from mfa_gateway.auth.router import create_auth_router, create_mfa_router
from mfa_gateway.auth.service import AuthFlowService, EnrollmentStore, IdentityProvider
from mfa_gateway.core.config import AppConfig
from mfa_gateway.core.logging import setup_logging

load_dotenv()
APP_CONFIG = AppConfig.from_env()
setup_logging(APP_CONFIG.logging.level)
LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parent


def create_app(
    config: AppConfig = APP_CONFIG,
    *,
    provider: IdentityProvider | None = None,
    repository: EnrollmentStore | None = None,
    governor: RateGovernor | None = None,
) -> FastAPI:
    provider_client: IdentityProviderClient | None = None
    if provider is None:
        provider_client = IdentityProviderClient(config.identity_provider)
        provider = provider_client

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        if provider_client is not None:
            await provider_client.aclose()

    app = FastAPI(title="MFA Gateway API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    # Gate runs inside the perimeter middleware.
    app.middleware("http")(create_auth_middleware())
    register_http_middleware(app, config=config, logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)

    if repository is None:
        repository = EnrollmentRepository(APP_ROOT, config.store)
        LOGGER.info("enrollment_store_backend=%s", repository.backend)

    service = AuthFlowService(
        provider=provider,
        repository=repository,
        governor=governor or RateGovernor(),
        rate_limits=config.rate_limits,
        lifecycle=CredentialLifecycleManager(provider, logger=LOGGER),
        signup_redirect_path=config.identity_provider.signup_redirect_path,
        logger=LOGGER,
    )
    codec = CredentialCookieCodec(config.cookies)

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    app.include_router(create_auth_router(service, codec))
    app.include_router(create_mfa_router(service, codec))

    return app


app = create_app()
