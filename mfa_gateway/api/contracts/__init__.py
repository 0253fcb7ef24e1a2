"""Public API response contracts."""

from mfa_gateway.api.contracts.models import (
    ApiErrorResponse,
    ChallengeResponse,
    DashboardResponse,
    EnrollResponse,
    FactorListResponse,
    FactorSummaryResponse,
    HealthResponse,
    LogoutResponse,
    MfaCheckResponse,
    SignInResponse,
    SignUpResponse,
    UserSummaryResponse,
    VerifyResponse,
)

__all__ = [
    "ApiErrorResponse",
    "ChallengeResponse",
    "DashboardResponse",
    "EnrollResponse",
    "FactorListResponse",
    "FactorSummaryResponse",
    "HealthResponse",
    "LogoutResponse",
    "MfaCheckResponse",
    "SignInResponse",
    "SignUpResponse",
    "UserSummaryResponse",
    "VerifyResponse",
]
