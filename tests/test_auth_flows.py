from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi.testclient import TestClient

from mfa_gateway.auth.identity_provider import IdentityProviderError
from mfa_gateway.auth.models import (
    Challenge,
    EnrollmentStatus,
    Factor,
    ProviderSession,
    ProviderUser,
    SignUpOutcome,
)
from mfa_gateway.auth.rate_limiter import RateGovernor
from mfa_gateway.core.config import (
    AppConfig,
    CookieConfig,
    IdentityProviderConfig,
    LoggingConfig,
    RateBudget,
    RateLimitConfig,
    SecurityConfig,
    StoreConfig,
)
from web_api import create_app

USER = ProviderUser(id="user-1", email="user@example.com")
VALID_CODE = "123456"


def _config() -> AppConfig:
    return AppConfig(
        identity_provider=IdentityProviderConfig(
            base_url="https://project.supabase.test",
            anon_key="anon",
            timeout_seconds=5,
            signup_redirect_path="/dashboard",
        ),
        cookies=CookieConfig(max_age_seconds=604800, secure=False),
        rate_limits=RateLimitConfig(
            signin=RateBudget(action="signin", max_attempts=5, window_seconds=60),
            signup=RateBudget(action="signup", max_attempts=3, window_seconds=3600),
            verify=RateBudget(action="verify", max_attempts=10, window_seconds=60),
        ),
        store=StoreConfig(mongodb_uri="", mongodb_db="test"),
        logging=LoggingConfig(level="INFO"),
        security=SecurityConfig(
            environment="test",
            cors_allowed_origins=["http://localhost:8000"],
            request_max_bytes=4096,
        ),
    )


def _expired() -> IdentityProviderError:
    return IdentityProviderError("invalid JWT: token is expired", status_code=401)


@dataclass
class _Provider:
    passwords: dict[str, str] = field(default_factory=lambda: {USER.email: "secret"})
    factors: list[Factor] = field(default_factory=list)
    expired_tokens: set[str] = field(default_factory=set)
    renewals: dict[str, ProviderSession] = field(default_factory=dict)
    signup_issues_session: bool = False
    sign_out_error: Exception | None = None
    calls: list[tuple[str, str]] = field(default_factory=list)

    def _check(self, name: str, token: str) -> None:
        self.calls.append((name, token))
        if token in self.expired_tokens:
            raise _expired()

    async def sign_in(self, email: str, password: str) -> ProviderSession:
        self.calls.append(("sign_in", email))
        if self.passwords.get(email) != password:
            raise IdentityProviderError(
                "Invalid login credentials", error_code="invalid_credentials"
            )
        return ProviderSession(access_token="a1", refresh_token="r1", user=USER)

    async def sign_up(
        self, email: str, password: str, *, redirect_to: str | None = None
    ) -> SignUpOutcome:
        self.calls.append(("sign_up", redirect_to or ""))
        if email in self.passwords:
            raise IdentityProviderError("User already registered", status_code=422)
        user = ProviderUser(id="user-2", email=email)
        if not self.signup_issues_session:
            return SignUpOutcome(user=user)
        session = ProviderSession(access_token="s1", refresh_token="sr1", user=user)
        return SignUpOutcome(user=user, session=session)

    async def refresh_session(self, refresh_token: str) -> ProviderSession:
        self.calls.append(("refresh_session", refresh_token))
        session = self.renewals.get(refresh_token)
        if session is None:
            raise IdentityProviderError("Invalid Refresh Token: Refresh Token Not Found")
        return session

    async def get_user(self, access_token: str) -> ProviderUser:
        self._check("get_user", access_token)
        return USER

    async def list_factors(self, access_token: str) -> list[Factor]:
        self._check("list_factors", access_token)
        return list(self.factors)

    async def enroll_factor(
        self, access_token: str, *, factor_type: str, friendly_name: str
    ) -> dict[str, Any]:
        self._check("enroll_factor", access_token)
        return {
            "id": "f-new",
            "type": factor_type,
            "totp": {"qr_code": "data:image/svg+xml;utf-8,<svg/>", "secret": "S3CR3T"},
        }

    async def create_challenge(self, access_token: str, *, factor_id: str) -> Challenge:
        self._check("create_challenge", access_token)
        return Challenge(id=f"ch-{factor_id}", expires_at=1700000000)

    async def verify_code(
        self, access_token: str, *, factor_id: str, challenge_id: str, code: str
    ) -> ProviderSession:
        self._check("verify_code", access_token)
        if code != VALID_CODE:
            raise IdentityProviderError(
                "Invalid TOTP code entered",
                status_code=422,
                error_code="mfa_verification_failed",
            )
        return ProviderSession(access_token="aal2", refresh_token="aal2-r", user=USER)

    async def sign_out(self, access_token: str) -> None:
        self.calls.append(("sign_out", access_token))
        if self.sign_out_error is not None:
            raise self.sign_out_error


@dataclass
class _Store:
    statuses: dict[str, EnrollmentStatus] = field(default_factory=dict)
    fail_upsert: bool = False

    def get_status(self, user_id: str) -> EnrollmentStatus | None:
        return self.statuses.get(user_id)

    def upsert_status(self, status: EnrollmentStatus) -> None:
        if self.fail_upsert:
            raise RuntimeError("store offline")
        self.statuses[status.user_id] = status


def _client(provider: _Provider, store: _Store | None = None) -> TestClient:
    app = create_app(
        _config(),
        provider=provider,
        repository=store if store is not None else _Store(),
        governor=RateGovernor(),
    )
    return TestClient(app)


def _set_cookies(response) -> dict[str, str]:
    cookies: dict[str, str] = {}
    for header in response.headers.get_list("set-cookie"):
        cookies[header.split("=", 1)[0]] = header
    return cookies


COOKIES = {"Cookie": "auth_token=a1; refresh_token=r1"}


def test_signin_sets_three_cookies_and_reports_no_mfa() -> None:
    client = _client(_Provider())

    response = client.post(
        "/api/auth/signin", json={"email": USER.email, "password": "secret"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "user": {"id": "user-1", "email": "user@example.com"},
        "hasMFA": False,
        "message": "Sign in successful",
    }
    cookies = _set_cookies(response)
    assert cookies["auth_token"].startswith("auth_token=a1;")
    assert cookies["refresh_token"].startswith("refresh_token=r1;")
    assert cookies["user_email"].startswith("user_email=user%40example.com;")
    assert response.headers["X-RateLimit-Limit"] == "5"
    assert response.headers["X-RateLimit-Remaining"] == "4"


def test_signin_reports_mfa_from_enrollment_store() -> None:
    store = _Store(statuses={"user-1": EnrollmentStatus(user_id="user-1", mfa_enrolled=True)})
    client = _client(_Provider(), store)

    response = client.post(
        "/api/auth/signin", json={"email": USER.email, "password": "secret"}
    )

    assert response.json()["hasMFA"] is True


def test_signin_failures_share_one_message() -> None:
    client = _client(_Provider())

    wrong_password = client.post(
        "/api/auth/signin", json={"email": USER.email, "password": "nope"}
    )
    unknown_user = client.post(
        "/api/auth/signin", json={"email": "ghost@example.com", "password": "secret"}
    )

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json() == {"error": "Invalid credentials"}
    assert "set-cookie" not in wrong_password.headers


def test_signin_requires_email_and_password() -> None:
    provider = _Provider()
    client = _client(provider)

    response = client.post("/api/auth/signin", json={"email": USER.email})

    assert response.status_code == 400
    assert response.json() == {"error": "Email and password required"}
    assert provider.calls == []


def test_signin_rejects_sixth_attempt_within_window() -> None:
    provider = _Provider()
    client = _client(provider)
    headers = {"X-Forwarded-For": "198.51.100.4"}

    statuses = [
        client.post(
            "/api/auth/signin",
            json={"email": USER.email, "password": "nope"},
            headers=headers,
        ).status_code
        for _ in range(5)
    ]
    blocked = client.post(
        "/api/auth/signin",
        json={"email": USER.email, "password": "secret"},
        headers=headers,
    )

    assert statuses == [401] * 5
    assert blocked.status_code == 429
    assert blocked.json() == {"error": "Too many login attempts. Try again later."}
    assert blocked.headers["X-RateLimit-Remaining"] == "0"
    assert int(blocked.headers["X-RateLimit-Reset"]) > 0
    assert len(provider.calls) == 5

    other_client = client.post(
        "/api/auth/signin",
        json={"email": USER.email, "password": "secret"},
        headers={"X-Forwarded-For": "198.51.100.5"},
    )
    assert other_client.status_code == 200


def test_malformed_body_returns_400() -> None:
    client = _client(_Provider())

    response = client.post(
        "/api/auth/signin",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Malformed request body"}


def test_signup_without_session_clears_credentials_and_keeps_email() -> None:
    provider = _Provider()
    client = _client(provider)

    response = client.post(
        "/api/auth/signup", json={"email": "new@example.com", "password": "pw123456"}
    )

    assert response.status_code == 201
    assert response.json()["user"] == {"id": "user-2", "email": "new@example.com"}
    cookies = _set_cookies(response)
    assert "Max-Age=0" in cookies["auth_token"]
    assert "Max-Age=0" in cookies["refresh_token"]
    assert cookies["user_email"].startswith("user_email=new%40example.com;")
    assert provider.calls == [("sign_up", "http://testserver/dashboard")]


def test_signup_with_session_sets_credentials() -> None:
    client = _client(_Provider(signup_issues_session=True))

    response = client.post(
        "/api/auth/signup", json={"email": "new@example.com", "password": "pw123456"}
    )

    assert response.status_code == 201
    cookies = _set_cookies(response)
    assert cookies["auth_token"].startswith("auth_token=s1;")
    assert cookies["refresh_token"].startswith("refresh_token=sr1;")


def test_signup_passes_provider_rejection_through() -> None:
    client = _client(_Provider())

    response = client.post(
        "/api/auth/signup", json={"email": USER.email, "password": "secret"}
    )

    assert response.status_code == 400
    assert response.json() == {"error": "User already registered"}
    assert response.headers["X-RateLimit-Limit"] == "3"


def test_mfa_routes_require_credentials_before_provider_calls() -> None:
    provider = _Provider()
    client = _client(provider)

    for path in ["/api/mfa/enroll", "/api/mfa/challenge", "/api/mfa/verify", "/api/mfa/check"]:
        response = client.post(path, json={})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    dashboard = client.get("/dashboard")
    assert dashboard.status_code == 401
    assert provider.calls == []


def test_enroll_returns_provider_payload() -> None:
    provider = _Provider()
    client = _client(provider)

    response = client.post("/api/mfa/enroll", json={"factorType": "totp"}, headers=COOKIES)

    assert response.status_code == 200
    assert response.json()["totp"]["secret"] == "S3CR3T"
    assert response.json()["id"] == "f-new"
    assert "set-cookie" not in response.headers
    assert provider.calls == [("enroll_factor", "a1")]


def test_enroll_rejects_unsupported_factor_type() -> None:
    provider = _Provider()
    client = _client(provider)

    response = client.post("/api/mfa/enroll", json={"factorType": "phone"}, headers=COOKIES)

    assert response.status_code == 400
    assert provider.calls == []


def test_enroll_renews_expired_credentials_and_rewrites_cookies() -> None:
    provider = _Provider(
        expired_tokens={"a1"},
        renewals={"r1": ProviderSession(access_token="a2", refresh_token="r2")},
    )
    client = _client(provider)

    response = client.post("/api/mfa/enroll", headers=COOKIES)

    assert response.status_code == 200
    cookies = _set_cookies(response)
    assert cookies["auth_token"].startswith("auth_token=a2;")
    assert cookies["refresh_token"].startswith("refresh_token=r2;")
    assert provider.calls == [
        ("enroll_factor", "a1"),
        ("refresh_session", "r1"),
        ("enroll_factor", "a2"),
    ]


def test_challenge_requires_factor_id() -> None:
    client = _client(_Provider())

    response = client.post("/api/mfa/challenge", json={}, headers=COOKIES)

    assert response.status_code == 400
    assert response.json() == {"error": "factorId required"}


def test_challenge_returns_ids() -> None:
    client = _client(_Provider())

    response = client.post("/api/mfa/challenge", json={"factorId": "f1"}, headers=COOKIES)

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == body["challengeId"] == "ch-f1"
    assert body["factorId"] == "f1"


def test_verify_rejects_malformed_code_without_provider_calls() -> None:
    provider = _Provider()
    client = _client(provider)

    for code, message in [
        ("", "Code required"),
        ("12345", "Code must be exactly 6 digits"),
        ("12a456", "Code must be exactly 6 digits"),
        ("1234567", "Code must be exactly 6 digits"),
    ]:
        response = client.post("/api/mfa/verify", json={"code": code}, headers=COOKIES)
        assert response.status_code == 400
        assert response.json() == {"error": message}

    assert provider.calls == []


def test_verify_resolves_factor_and_challenge_then_upgrades_cookies() -> None:
    provider = _Provider(
        factors=[
            Factor(id="f-pending", factor_type="totp", status="unverified"),
            Factor(id="f-ok", factor_type="totp", status="verified"),
        ]
    )
    store = _Store()
    client = _client(provider, store)

    response = client.post("/api/mfa/verify", json={"code": VALID_CODE}, headers=COOKIES)

    assert response.status_code == 200
    assert response.json()["message"] == "MFA verification successful"
    assert response.json()["user"]["id"] == "user-1"
    assert provider.calls == [
        ("list_factors", "a1"),
        ("create_challenge", "a1"),
        ("verify_code", "a1"),
    ]
    cookies = _set_cookies(response)
    assert cookies["auth_token"].startswith("auth_token=aal2;")
    assert cookies["refresh_token"].startswith("refresh_token=aal2-r;")
    assert store.statuses["user-1"].mfa_enrolled is True
    assert store.statuses["user-1"].enrolled_at is not None


def test_verify_with_explicit_ids_calls_verify_only() -> None:
    provider = _Provider()
    client = _client(provider)

    response = client.post(
        "/api/mfa/verify",
        json={"code": VALID_CODE, "factorId": "f1", "challengeId": "ch-1"},
        headers=COOKIES,
    )

    assert response.status_code == 200
    assert provider.calls == [("verify_code", "a1")]


def test_verify_without_totp_factor_asks_to_enroll() -> None:
    client = _client(_Provider())

    response = client.post("/api/mfa/verify", json={"code": VALID_CODE}, headers=COOKIES)

    assert response.status_code == 400
    assert response.json() == {"error": "No TOTP factor found. Please enroll first."}


def test_verify_threads_renewed_credentials_through_each_step() -> None:
    provider = _Provider(
        factors=[Factor(id="f1", factor_type="totp", status="verified")],
        expired_tokens={"a1"},
        renewals={"r1": ProviderSession(access_token="a2", refresh_token="r2")},
    )
    client = _client(provider)

    response = client.post("/api/mfa/verify", json={"code": VALID_CODE}, headers=COOKIES)

    assert response.status_code == 200
    assert provider.calls == [
        ("list_factors", "a1"),
        ("refresh_session", "r1"),
        ("list_factors", "a2"),
        ("create_challenge", "a2"),
        ("verify_code", "a2"),
    ]


def test_verify_wrong_code_returns_401_without_cookies() -> None:
    client = _client(_Provider())

    response = client.post(
        "/api/mfa/verify",
        json={"code": "000000", "factorId": "f1", "challengeId": "ch-1"},
        headers=COOKIES,
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid TOTP code entered"}
    assert "set-cookie" not in response.headers
    assert response.headers["X-RateLimit-Limit"] == "10"


def test_verify_wrong_code_after_renewal_still_writes_renewed_pair() -> None:
    provider = _Provider(
        factors=[Factor(id="f1", factor_type="totp", status="verified")],
        expired_tokens={"a1"},
        renewals={"r1": ProviderSession(access_token="a2", refresh_token="r2")},
    )
    client = _client(provider)

    response = client.post("/api/mfa/verify", json={"code": "000000"}, headers=COOKIES)

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid TOTP code entered"}
    assert response.headers["X-RateLimit-Limit"] == "10"
    cookies = _set_cookies(response)
    assert cookies["auth_token"].startswith("auth_token=a2;")
    assert cookies["refresh_token"].startswith("refresh_token=r2;")
    assert provider.calls[-1] == ("verify_code", "a2")


def test_enroll_retry_failure_still_writes_renewed_pair() -> None:
    provider = _Provider(
        expired_tokens={"a1", "a2"},
        renewals={"r1": ProviderSession(access_token="a2", refresh_token="r2")},
    )
    client = _client(provider)

    response = client.post("/api/mfa/enroll", headers=COOKIES)

    assert response.status_code == 401
    assert response.json() == {"error": "Session expired. Please sign in again."}
    cookies = _set_cookies(response)
    assert cookies["auth_token"].startswith("auth_token=a2;")
    assert cookies["refresh_token"].startswith("refresh_token=r2;")


def test_cookie_tokens_reach_provider_without_decoding() -> None:
    provider = _Provider()
    client = _client(provider)

    response = client.post(
        "/api/mfa/enroll", headers={"Cookie": "auth_token=a%2F1; refresh_token=r1"}
    )

    assert response.status_code == 200
    assert provider.calls == [("enroll_factor", "a%2F1")]


def test_verify_succeeds_when_enrollment_write_fails() -> None:
    client = _client(_Provider(), _Store(fail_upsert=True))

    response = client.post(
        "/api/mfa/verify",
        json={"code": VALID_CODE, "factorId": "f1", "challengeId": "ch-1"},
        headers=COOKIES,
    )

    assert response.status_code == 200


def test_check_opens_challenge_for_existing_factor() -> None:
    provider = _Provider(factors=[Factor(id="f1", factor_type="totp", status="verified")])
    client = _client(provider)

    response = client.post("/api/mfa/check", headers=COOKIES)

    assert response.json() == {"hasMFA": True, "challengeId": "ch-f1", "factorId": "f1"}


def test_check_without_factor_reports_no_mfa() -> None:
    client = _client(_Provider())

    response = client.post("/api/mfa/check", headers=COOKIES)

    assert response.json() == {"hasMFA": False}


def test_list_factors_summarizes_factors() -> None:
    provider = _Provider(factors=[Factor(id="f1", factor_type="totp", status="verified")])
    client = _client(provider)

    response = client.post("/api/auth/list-factors", headers=COOKIES)

    assert response.json() == {"factors": [{"id": "f1", "type": "totp", "status": "verified"}]}


def test_dashboard_returns_user_for_bearer_credentials() -> None:
    client = _client(_Provider())

    response = client.get("/dashboard", headers={"Authorization": "Bearer a1"})

    assert response.status_code == 200
    assert response.json() == {
        "user": {"id": "user-1", "email": "user@example.com"},
        "hasMFA": False,
    }


def test_expired_bearer_is_not_renewed() -> None:
    provider = _Provider(
        expired_tokens={"a1"},
        renewals={"r1": ProviderSession(access_token="a2", refresh_token="r2")},
    )
    client = _client(provider)

    response = client.get(
        "/dashboard",
        headers={"Authorization": "Bearer a1", "Cookie": "auth_token=x; refresh_token=r1"},
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Session expired. Please sign in again."}
    assert "set-cookie" not in response.headers
    assert provider.calls == [("get_user", "a1")]


def test_logout_clears_cookies_even_when_provider_fails() -> None:
    provider = _Provider(sign_out_error=IdentityProviderError("session not found"))
    client = _client(provider)

    response = client.post("/api/auth/logout", headers=COOKIES)

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    cookies = _set_cookies(response)
    assert set(cookies) == {"auth_token", "refresh_token", "user_email"}
    assert all("Max-Age=0" in header for header in cookies.values())
    assert provider.calls == [("sign_out", "a1")]


def test_app_lifespan_starts_and_closes_default_provider_client() -> None:
    app = create_app(_config(), repository=_Store())

    with TestClient(app) as client:
        response = client.get("/api/health")

    assert response.json() == {"status": "ok"}
