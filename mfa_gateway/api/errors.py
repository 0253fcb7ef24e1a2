"""Shared API error types and helpers."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any, Mapping

from fastapi import HTTPException

if TYPE_CHECKING:
    from mfa_gateway.auth.models import CredentialPair


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"
    AUTH_CREDENTIAL_EXPIRED = "AUTH_CREDENTIAL_EXPIRED"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    PROVIDER_REJECTED = "PROVIDER_REJECTED"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope."""

    def __init__(
        self,
        *,
        status_code: int,
        error_code: ApiErrorCode,
        message: str,
        headers: Mapping[str, str] | None = None,
        credentials: CredentialPair | None = None,
    ) -> None:
        """Build an HTTP exception with standard detail structure.

        `credentials` is a pair renewed earlier in the failing request; the
        router still writes it so the client drops the consumed one.
        """
        super().__init__(
            status_code=status_code,
            detail={"error_code": str(error_code), "message": message},
            headers=dict(headers) if headers else None,
        )
        self.error_code = error_code
        self.message = message
        self.credentials = credentials


def to_error_payload(detail: Any) -> dict[str, str]:
    """Normalize HTTP exception detail into the `{"error": ...}` body."""
    if isinstance(detail, dict):
        message = str(detail.get("message") or detail.get("detail") or "HTTP error")
        return {"error": message}
    return {"error": str(detail or "HTTP error")}


def error_code_of(detail: Any, status_code: int) -> str:
    """Return the machine-readable code carried by exception detail."""
    if isinstance(detail, dict) and detail.get("error_code"):
        return str(detail["error_code"])
    return f"HTTP_{status_code}"
