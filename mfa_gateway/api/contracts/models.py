"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    error: str = Field(description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class UserSummaryResponse(BaseModel):
    """Minimal identity exposed to clients."""

    id: str
    email: str


class SignInResponse(BaseModel):
    """Sign-in response payload."""

    model_config = ConfigDict(populate_by_name=True)

    user: UserSummaryResponse
    has_mfa: bool = Field(alias="hasMFA")
    message: str


class SignUpResponse(BaseModel):
    """Sign-up response payload."""

    user: UserSummaryResponse
    message: str


class LogoutResponse(BaseModel):
    """Logout response payload."""

    status: Literal["ok"]


class FactorSummaryResponse(BaseModel):
    """Enrolled factor as listed to clients."""

    id: str
    type: str
    status: str


class FactorListResponse(BaseModel):
    """List-factors response payload."""

    factors: list[FactorSummaryResponse]


class EnrollResponse(BaseModel):
    """Provider enrollment payload, passed through verbatim."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    totp: dict[str, Any]


class ChallengeResponse(BaseModel):
    """Challenge creation response payload."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    challenge_id: str = Field(alias="challengeId")
    factor_id: str = Field(alias="factorId")


class MfaCheckResponse(BaseModel):
    """MFA status check response payload."""

    model_config = ConfigDict(populate_by_name=True)

    has_mfa: bool = Field(alias="hasMFA")
    challenge_id: str | None = Field(default=None, alias="challengeId")
    factor_id: str | None = Field(default=None, alias="factorId")


class VerifyResponse(BaseModel):
    """MFA verification response payload."""

    user: dict[str, Any]
    message: str


class DashboardResponse(BaseModel):
    """Authenticated landing payload."""

    model_config = ConfigDict(populate_by_name=True)

    user: UserSummaryResponse
    has_mfa: bool = Field(alias="hasMFA")
