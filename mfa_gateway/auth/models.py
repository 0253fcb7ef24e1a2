"""Pydantic models for authentication and MFA domain."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class CredentialPair:
    """Access credential and its optional renewal credential."""

    access_token: str
    refresh_token: str | None = None

    @property
    def renewable(self) -> bool:
        return bool(self.refresh_token)


class ProviderUser(BaseModel):
    """User identity as returned by the identity provider."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: str = ""

    def summary(self) -> dict[str, str]:
        return {"id": self.id, "email": self.email}


class ProviderSession(BaseModel):
    """Token pair issued by the identity provider."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    user: ProviderUser | None = None


class SignUpOutcome(BaseModel):
    """Provider sign-up result; `session` is absent while email confirmation is pending."""

    user: ProviderUser | None = None
    session: ProviderSession | None = None


class Factor(BaseModel):
    """Enrolled second factor."""

    model_config = ConfigDict(extra="allow")

    id: str
    factor_type: str
    status: str = "unverified"
    friendly_name: str | None = None


class Challenge(BaseModel):
    """Single-use challenge tied to a factor."""

    model_config = ConfigDict(extra="allow")

    id: str
    expires_at: int | None = None


class EnrollmentStatus(BaseModel):
    """Persisted MFA enrollment flag for a user."""

    user_id: str
    mfa_enrolled: bool = False
    enrolled_at: datetime | None = None


class CredentialsRequest(BaseModel):
    """Sign-in and sign-up payload; presence is validated by the flow."""

    email: str | None = None
    password: str | None = None


class EnrollRequest(BaseModel):
    """Factor enrollment payload."""

    model_config = ConfigDict(populate_by_name=True)

    factor_type: str | None = Field(default=None, alias="factorType")


class ChallengeRequest(BaseModel):
    """Challenge creation payload."""

    model_config = ConfigDict(populate_by_name=True)

    factor_id: str | None = Field(default=None, alias="factorId")


class VerifyRequest(BaseModel):
    """Code verification payload."""

    model_config = ConfigDict(populate_by_name=True)

    code: str | None = None
    factor_id: str | None = Field(default=None, alias="factorId")
    challenge_id: str | None = Field(default=None, alias="challengeId")
