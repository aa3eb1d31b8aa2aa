"""
Tests for authentication endpoints.

These tests verify:
  - Successful login returns tokens and reports requires_change for
    temporary passwords
  - Unknown email and wrong password are indistinguishable (anti-enumeration)
  - Progressive lockout: 15 minutes after 5 failures, 24 hours after 10
  - An expired temporary password is refused
  - 2FA setup, enforcement at login and disabling
  - Refresh tokens cannot be swapped with access tokens
  - Recovery tokens are single-use and expire
  - Password change, password status, profile and logout
  - Missing or invalid bearer tokens are rejected
  - The login bucket rate-limits by client address
"""

from datetime import timedelta

import pyotp
from sqlalchemy import select

from mowesport.config import RateLimitRule, settings
from mowesport.main import app
from mowesport.models.audit_event import AuditEvent, AuditEventType, AuditSeverity
from mowesport.models.user import User
from mowesport.rate_limit import RateLimiter
from mowesport.services.container import build_services
from conftest import (
    CITY_ADMIN_EMAIL,
    CITY_ADMIN_PASSWORD,
    SUPER_ADMIN_EMAIL,
    SUPER_ADMIN_PASSWORD,
    TEST_SETTINGS,
    bearer,
)


async def events_of(session_factory, event_type: AuditEventType) -> list[AuditEvent]:
    async with session_factory() as session:
        result = await session.execute(
            select(AuditEvent).where(AuditEvent.event_type == event_type).order_by(AuditEvent.created_at)
        )
        return list(result.scalars().all())


async def load_user(session_factory, email: str) -> User:
    async with session_factory() as session:
        result = await session.execute(select(User).where(User.email == email))
        return result.scalar_one()


def wrong_code(secret: str) -> str:
    code = pyotp.TOTP(secret).now()
    return f"{(int(code) + 500000) % 1000000:06d}"


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

class TestLogin:
    """Tests for POST /auth/login."""

    async def test_login_success(self, api, super_admin):
        """Valid credentials return both tokens and the public user."""
        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["expires_in"] == int(settings.JWT_ACCESS_TTL.total_seconds())
        assert data["requires_change"] is False
        assert data["user"]["email"] == SUPER_ADMIN_EMAIL
        assert data["user"]["primary_role"] == "super_admin"
        assert "password_hash" not in data["user"]

    async def test_login_email_is_case_insensitive(self, api, super_admin):
        response = await api.login(SUPER_ADMIN_EMAIL.upper(), SUPER_ADMIN_PASSWORD)
        assert response.status_code == 200

    async def test_login_records_last_login(self, api, super_admin, session_factory, clock):
        await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        user = await load_user(session_factory, SUPER_ADMIN_EMAIL)
        assert user.last_login_at == clock.now
        assert len(await events_of(session_factory, AuditEventType.LOGIN)) == 1

    async def test_wrong_password_and_unknown_email_are_identical(self, api, super_admin):
        """The response must not reveal whether the email is registered."""
        wrong_password = await api.login(SUPER_ADMIN_EMAIL, "WrongPass123!")
        unknown_email = await api.login("nobody@example.com", "WrongPass123!")

        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["code"] == "INVALID_CREDENTIALS"

    async def test_failed_logins_are_audited(self, api, super_admin, session_factory):
        await api.login("nobody@example.com", "WrongPass123!")
        events = await events_of(session_factory, AuditEventType.LOGIN_FAILED)
        assert len(events) == 1
        assert events[0].event_metadata["reason"] == "unknown_email"
        assert events[0].user_id is None

    async def test_invalid_email_is_a_validation_error(self, client):
        response = await client.post("/auth/login", json={"email": "not-an-email", "password": "x"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_missing_fields(self, client):
        response = await client.post("/auth/login", json={})
        assert response.status_code == 400


class TestLockout:
    """Progressive lockout after repeated failures."""

    async def test_five_failures_lock_for_fifteen_minutes(self, api, super_admin, clock, session_factory):
        for _ in range(5):
            response = await api.login(SUPER_ADMIN_EMAIL, "WrongPass123!")
            assert response.status_code == 401

        # Even the correct password is refused while locked
        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "ACCOUNT_LOCKED"
        assert "locked_until" in error["details"]

        locks = await events_of(session_factory, AuditEventType.ACCOUNT_LOCKED)
        assert len(locks) == 1
        assert locks[0].severity == AuditSeverity.CRITICAL

        clock.advance(minutes=16)
        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 200

        user = await load_user(session_factory, SUPER_ADMIN_EMAIL)
        assert user.failed_login_attempts == 0
        assert user.locked_until is None

    async def test_ten_failures_lock_for_a_day(self, api, super_admin, clock, session_factory):
        for _ in range(5):
            await api.login(SUPER_ADMIN_EMAIL, "WrongPass123!")
        # Each further failure lands after the previous window elapsed
        for _ in range(5):
            clock.advance(minutes=16)
            response = await api.login(SUPER_ADMIN_EMAIL, "WrongPass123!")
            assert response.status_code == 401

        user = await load_user(session_factory, SUPER_ADMIN_EMAIL)
        assert user.failed_login_attempts == 10
        assert user.locked_until == clock.now + timedelta(hours=24)

        locks = await events_of(session_factory, AuditEventType.ACCOUNT_LOCKED)
        assert locks[-1].severity == AuditSeverity.CRITICAL

        clock.advance(minutes=16)
        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.json()["error"]["code"] == "ACCOUNT_LOCKED"

        clock.advance(hours=24)
        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 200


class TestTemporaryPasswordLogin:

    async def test_first_login_requires_change(self, api, mailbox, super_admin_headers, scope):
        await api.register_admin(super_admin_headers, CITY_ADMIN_EMAIL, scope)
        temporary = mailbox.temporary_password(CITY_ADMIN_EMAIL)

        response = await api.login(CITY_ADMIN_EMAIL, temporary)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["requires_change"] is True
        assert data["password_expires_at"] is not None

    async def test_expired_temporary_password_is_refused(self, api, mailbox, clock, super_admin_headers, scope):
        await api.register_admin(super_admin_headers, CITY_ADMIN_EMAIL, scope)
        temporary = mailbox.temporary_password(CITY_ADMIN_EMAIL)

        clock.advance(hours=25)
        response = await api.login(CITY_ADMIN_EMAIL, temporary)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TEMPORARY_PASSWORD_EXPIRED"

    async def test_password_status(self, api, client, mailbox, clock, super_admin_headers, scope):
        await api.register_admin(super_admin_headers, CITY_ADMIN_EMAIL, scope)
        temporary = mailbox.temporary_password(CITY_ADMIN_EMAIL)
        headers = await api.headers_for(CITY_ADMIN_EMAIL, temporary)

        clock.advance(hours=1)
        response = await client.get("/auth/password-status", headers=headers)
        assert response.status_code == 200
        status = response.json()["data"]
        assert status["is_temporary"] is True
        assert status["requires_change"] is True
        assert status["is_expired"] is False
        assert status["time_remaining_seconds"] == 23 * 3600

        await client.post(
            "/auth/change-password",
            json={
                "current_password": temporary,
                "new_password": CITY_ADMIN_PASSWORD,
                "confirm_password": CITY_ADMIN_PASSWORD,
            },
            headers=headers,
        )
        response = await client.get("/auth/password-status", headers=headers)
        status = response.json()["data"]
        assert status["is_temporary"] is False
        assert status["requires_change"] is False
        assert status["expires_at"] is None


# ---------------------------------------------------------------------------
# Two-factor authentication
# ---------------------------------------------------------------------------

class TestTwoFactor:

    async def _enable(self, client, headers) -> str:
        response = await client.post("/auth/2fa/setup", headers=headers)
        assert response.status_code == 200
        secret = response.json()["data"]["secret"]
        response = await client.post(
            "/auth/2fa/verify", json={"code": pyotp.TOTP(secret).now()}, headers=headers
        )
        assert response.status_code == 200
        return secret

    async def test_setup_returns_provisioning_uri(self, client, super_admin_headers):
        response = await client.post("/auth/2fa/setup", headers=super_admin_headers)
        data = response.json()["data"]
        assert len(data["secret"]) == 32
        assert data["otpauth_uri"].startswith("otpauth://totp/")

    async def test_setup_alone_does_not_enforce(self, api, client, super_admin_headers):
        await client.post("/auth/2fa/setup", headers=super_admin_headers)
        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 200

    async def test_login_requires_code_once_enabled(self, api, client, super_admin_headers):
        secret = await self._enable(client, super_admin_headers)

        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TWO_FACTOR_REQUIRED"

        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD, totp=wrong_code(secret))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_2FA_CODE"

        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD, totp=pyotp.TOTP(secret).now())
        assert response.status_code == 200
        assert response.json()["data"]["user"]["two_factor_enabled"] is True

    async def test_wrong_codes_count_towards_lockout(self, api, client, super_admin_headers, session_factory):
        secret = await self._enable(client, super_admin_headers)
        await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD, totp=wrong_code(secret))
        user = await load_user(session_factory, SUPER_ADMIN_EMAIL)
        assert user.failed_login_attempts == 1

    async def test_verify_with_wrong_code(self, client, super_admin_headers):
        response = await client.post("/auth/2fa/setup", headers=super_admin_headers)
        secret = response.json()["data"]["secret"]
        response = await client.post(
            "/auth/2fa/verify", json={"code": wrong_code(secret)}, headers=super_admin_headers
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_2FA_CODE"

    async def test_verify_without_setup(self, client, super_admin_headers):
        response = await client.post("/auth/2fa/verify", json={"code": "123456"}, headers=super_admin_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "2FA_NOT_SETUP"

    async def test_setup_twice_when_enabled(self, client, super_admin_headers):
        await self._enable(client, super_admin_headers)
        response = await client.post("/auth/2fa/setup", headers=super_admin_headers)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "2FA_ALREADY_ENABLED"

    async def test_disable(self, api, client, super_admin_headers):
        secret = await self._enable(client, super_admin_headers)

        response = await client.post(
            "/auth/2fa/disable", json={"code": wrong_code(secret)}, headers=super_admin_headers
        )
        assert response.status_code == 401

        response = await client.post(
            "/auth/2fa/disable", json={"code": pyotp.TOTP(secret).now()}, headers=super_admin_headers
        )
        assert response.status_code == 200

        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 200

    async def test_disable_when_not_enabled(self, client, super_admin_headers):
        response = await client.post("/auth/2fa/disable", json={"code": "123456"}, headers=super_admin_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "2FA_NOT_ENABLED"


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

class TestTokens:

    async def test_refresh_issues_new_access_token(self, api, client, super_admin):
        login = (await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)).json()["data"]
        response = await client.post("/auth/refresh", json={"refresh_token": login["refresh_token"]})
        assert response.status_code == 200
        access = response.json()["data"]["access_token"]

        response = await client.get("/auth/profile", headers=bearer(access))
        assert response.status_code == 200

    async def test_access_token_is_not_a_refresh_token(self, api, client, super_admin):
        login = (await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)).json()["data"]
        response = await client.post("/auth/refresh", json={"refresh_token": login["access_token"]})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_REFRESH_TOKEN"

    async def test_refresh_token_is_not_an_access_token(self, api, client, super_admin):
        login = (await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)).json()["data"]
        response = await client.get("/auth/profile", headers=bearer(login["refresh_token"]))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN_TYPE"

    async def test_no_token_returns_401(self, client):
        response = await client.get("/auth/profile")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHENTICATED"

    async def test_invalid_token_returns_401(self, client):
        response = await client.get("/auth/profile", headers=bearer("invalid.token.here"))
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_logout_is_audited(self, client, super_admin_headers, session_factory):
        response = await client.post("/auth/logout", headers=super_admin_headers)
        assert response.status_code == 200
        assert len(await events_of(session_factory, AuditEventType.LOGOUT)) == 1


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

class TestRecovery:

    async def test_same_answer_for_known_and_unknown_email(self, client, mailbox, super_admin):
        known = await client.post("/auth/forgot-password", json={"email": SUPER_ADMIN_EMAIL})
        unknown = await client.post("/auth/forgot-password", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert len(mailbox.messages_to(SUPER_ADMIN_EMAIL)) == 1
        assert mailbox.messages_to("nobody@example.com") == []

    async def test_token_is_stored_as_digest(self, client, mailbox, super_admin, session_factory):
        await client.post("/auth/forgot-password", json={"email": SUPER_ADMIN_EMAIL})
        token = mailbox.recovery_token(SUPER_ADMIN_EMAIL)
        user = await load_user(session_factory, SUPER_ADMIN_EMAIL)
        assert user.recovery_token_hash is not None
        assert user.recovery_token_hash != token

    async def test_reset_is_single_use(self, api, client, mailbox, super_admin):
        await client.post("/auth/forgot-password", json={"email": SUPER_ADMIN_EMAIL})
        token = mailbox.recovery_token(SUPER_ADMIN_EMAIL)

        response = await client.post(
            "/auth/reset-password", json={"token": token, "new_password": "Recovered123!"}
        )
        assert response.status_code == 200
        assert (await api.login(SUPER_ADMIN_EMAIL, "Recovered123!")).status_code == 200
        assert (await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)).status_code == 401

        response = await client.post(
            "/auth/reset-password", json={"token": token, "new_password": "Another123!"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    async def test_reset_clears_lockout(self, api, client, mailbox, super_admin):
        for _ in range(5):
            await api.login(SUPER_ADMIN_EMAIL, "WrongPass123!")
        await client.post("/auth/forgot-password", json={"email": SUPER_ADMIN_EMAIL})
        token = mailbox.recovery_token(SUPER_ADMIN_EMAIL)
        await client.post("/auth/reset-password", json={"token": token, "new_password": "Recovered123!"})
        assert (await api.login(SUPER_ADMIN_EMAIL, "Recovered123!")).status_code == 200

    async def test_expired_token(self, client, mailbox, clock, super_admin):
        await client.post("/auth/forgot-password", json={"email": SUPER_ADMIN_EMAIL})
        token = mailbox.recovery_token(SUPER_ADMIN_EMAIL)

        clock.advance(minutes=11)
        response = await client.post(
            "/auth/reset-password", json={"token": token, "new_password": "Recovered123!"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    async def test_weak_new_password(self, client, mailbox, super_admin):
        await client.post("/auth/forgot-password", json={"email": SUPER_ADMIN_EMAIL})
        token = mailbox.recovery_token(SUPER_ADMIN_EMAIL)
        response = await client.post("/auth/reset-password", json={"token": token, "new_password": "weak"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEAK_PASSWORD"

    async def test_unknown_token(self, client):
        response = await client.post(
            "/auth/reset-password", json={"token": "NOTAREALTOKEN", "new_password": "Recovered123!"}
        )
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------

class TestChangePassword:

    def _body(self, current, new, confirm=None):
        return {"current_password": current, "new_password": new, "confirm_password": confirm or new}

    async def test_success(self, api, client, super_admin_headers):
        response = await client.post(
            "/auth/change-password",
            json=self._body(SUPER_ADMIN_PASSWORD, "NewRootPass456!"),
            headers=super_admin_headers,
        )
        assert response.status_code == 200
        assert (await api.login(SUPER_ADMIN_EMAIL, "NewRootPass456!")).status_code == 200

    async def test_confirmation_mismatch(self, client, super_admin_headers):
        response = await client.post(
            "/auth/change-password",
            json=self._body(SUPER_ADMIN_PASSWORD, "NewRootPass456!", "Different456!"),
            headers=super_admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "PASSWORD_MISMATCH"

    async def test_wrong_current_password(self, client, super_admin_headers, session_factory):
        response = await client.post(
            "/auth/change-password",
            json=self._body("NotMyPass123!", "NewRootPass456!"),
            headers=super_admin_headers,
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_CURRENT_PASSWORD"
        assert len(await events_of(session_factory, AuditEventType.SECURITY_VIOLATION)) == 1

    async def test_weak_new_password(self, client, super_admin_headers):
        response = await client.post(
            "/auth/change-password",
            json=self._body(SUPER_ADMIN_PASSWORD, "alllowercase"),
            headers=super_admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEAK_PASSWORD"

    async def test_new_password_must_differ(self, client, super_admin_headers):
        response = await client.post(
            "/auth/change-password",
            json=self._body(SUPER_ADMIN_PASSWORD, SUPER_ADMIN_PASSWORD),
            headers=super_admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestProfile:

    async def test_profile_includes_active_roles(self, client, city_admin_headers, scope):
        response = await client.get("/auth/profile", headers=city_admin_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["email"] == CITY_ADMIN_EMAIL
        assert data["requires_password_change"] is False
        assert len(data["roles"]) == 1
        role = data["roles"][0]
        assert role["role_name"] == "city_admin"
        assert role["city_id"] == str(scope.city_id)
        assert role["sport_id"] == str(scope.sport_id)

    async def test_profile_never_exposes_secrets(self, client, super_admin_headers):
        user = (await client.get("/auth/profile", headers=super_admin_headers)).json()["data"]["user"]
        for field in ("password_hash", "two_factor_secret", "recovery_token_hash"):
            assert field not in user


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class TestLoginRateLimit:

    async def test_login_bucket(self, api, mailbox, clock, super_admin, session_factory):
        app.state.services = build_services(
            TEST_SETTINGS,
            email_dispatcher=mailbox,
            rate_limiter=RateLimiter({"login": RateLimitRule(max_requests=2, window=timedelta(minutes=5))}),
            clock=clock,
        )

        for _ in range(2):
            assert (await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)).status_code == 200

        response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert int(response.headers["Retry-After"]) >= 1

        events = await events_of(session_factory, AuditEventType.RATE_LIMIT_EXCEEDED)
        assert events[0].event_metadata["bucket"] == "login"

    def use_default_rules(self, mailbox, clock, **overrides):
        app.state.services = build_services(
            TEST_SETTINGS.model_copy(update=overrides),
            email_dispatcher=mailbox,
            rate_limiter=RateLimiter(settings.RATE_LIMIT.as_rules()),
            clock=clock,
        )

    async def test_locked_account_answers_before_the_bucket(self, api, mailbox, clock, super_admin):
        """Five failures fill the default login bucket; the lock still wins."""
        self.use_default_rules(mailbox, clock)

        for _ in range(5):
            assert (await api.login(SUPER_ADMIN_EMAIL, "WrongPass123!")).status_code == 401

        for _ in range(3):
            response = await api.login(SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)
            assert response.status_code == 403
            assert response.json()["error"]["code"] == "ACCOUNT_LOCKED"

    async def test_unknown_emails_still_spend_the_bucket(self, api, mailbox, clock, super_admin):
        self.use_default_rules(mailbox, clock)

        for i in range(5):
            assert (await api.login(f"ghost{i}@example.com", "WrongPass123!")).status_code == 401

        response = await api.login("ghost5@example.com", "WrongPass123!")
        assert response.status_code == 429

    async def test_forwarded_header_ignored_from_untrusted_peer(
        self, client, mailbox, clock, super_admin, session_factory
    ):
        self.use_default_rules(mailbox, clock)
        payload = {"email": "ghost@example.com", "password": "WrongPass123!"}

        for i in range(5):
            response = await client.post(
                "/auth/login", json=payload, headers={"X-Forwarded-For": f"10.0.0.{i}"}
            )
            assert response.status_code == 401

        response = await client.post("/auth/login", json=payload, headers={"X-Forwarded-For": "10.0.0.99"})
        assert response.status_code == 429

        failures = await events_of(session_factory, AuditEventType.LOGIN_FAILED)
        assert {e.ip_address for e in failures} == {"127.0.0.1"}

    async def test_trusted_proxy_forwards_client_address(
        self, client, mailbox, clock, super_admin, session_factory
    ):
        self.use_default_rules(mailbox, clock, TRUSTED_PROXIES=["127.0.0.1"])

        response = await client.post(
            "/auth/login",
            json={"email": "ghost@example.com", "password": "WrongPass123!"},
            headers={"X-Forwarded-For": "not-an-address, 203.0.113.9, 127.0.0.1"},
        )
        assert response.status_code == 401

        failures = await events_of(session_factory, AuditEventType.LOGIN_FAILED)
        assert failures[0].ip_address == "203.0.113.9"
