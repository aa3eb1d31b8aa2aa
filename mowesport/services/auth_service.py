"""
Authentication service — login state machine, tokens, recovery and 2FA.

This module contains the core auth logic, separated from HTTP concerns.
The router calls these methods and translates the results into HTTP
responses.

Login flow (first failing step wins):
  1. is_active is False         -> account_inactive
  2. account_status != active   -> account_<status>
  3. locked_until in the future -> account_locked
  4. Rate-limit admission on the "login" bucket
  5. Unknown email              -> unknown_email (rendered as INVALID_CREDENTIALS)
  6. Wrong password             -> counter += 1, progressive lockout, invalid_credentials
  7. 2FA on, no code            -> two_factor_required
  8. 2FA on, wrong code         -> counter += 1, progressive lockout, invalid_two_factor_code
  9. Temporary password expired -> temporary_password_expired
 10. Success: counter = 0, locked_until = None, last_login_at = now, tokens issued

Steps 1-3 answer from stored account state without verifying a password,
so they do not spend the login bucket: a locked account keeps answering
account_locked instead of rate_limited.

Progressive lockout: reaching LOCKOUT.first_threshold failures locks the
account for first_window (15 minutes by default); reaching second_threshold
locks it for second_window (24 hours). Every lock is audited as critical.

Security notes:
  - Password hashing runs in a worker thread and never while a lock is held
  - The counter row is re-read under SELECT ... FOR UPDATE before each
    write, so concurrent attempts never work from stale counters
  - Failed attempts are committed by get_db even though the request fails
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.config import Settings, settings as default_settings
from mowesport.database import utcnow
from mowesport.exceptions import (
    AuthenticationError,
    ErrorKind,
    InputValidationError,
    TokenError,
)
from mowesport.models.audit_event import AuditEventType
from mowesport.models.user import AccountStatus, User
from mowesport.schemas.token import AccessClaims, RefreshClaims
from mowesport.security import (
    burn_password_check,
    create_access_token,
    create_refresh_token,
    decode_token,
    decrypt_value,
    digest_token,
    encrypt_value,
    generate_recovery_token,
    generate_totp_secret,
    hash_password,
    totp_provisioning_uri,
    verify_password,
    verify_totp,
)
from mowesport.services.admission import AdmissionControl
from mowesport.services.audit_service import AuditLog, RequestContext
from mowesport.services.email_service import EmailService
from mowesport.services.password_service import TemporaryPasswordService
from mowesport.validation import InputValidator

logger = logging.getLogger(__name__)


STATUS_ERRORS = {
    AccountStatus.SUSPENDED: ErrorKind.ACCOUNT_SUSPENDED,
    AccountStatus.PAYMENT_PENDING: ErrorKind.ACCOUNT_PAYMENT_PENDING,
    AccountStatus.DISABLED: ErrorKind.ACCOUNT_DISABLED,
}


@dataclass
class LoginResult:
    user: User
    access_token: str
    refresh_token: str
    expires_in: int
    requires_change: bool
    password_expires_at: datetime | None


@dataclass
class RefreshResult:
    user: User
    access_token: str
    expires_in: int


@dataclass
class TwoFactorSetup:
    secret: str
    otpauth_uri: str


class AuthService:

    def __init__(
        self,
        audit: AuditLog,
        admission: AdmissionControl,
        validator: InputValidator,
        emailer: EmailService,
        passwords: TemporaryPasswordService,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.audit = audit
        self.admission = admission
        self.validator = validator
        self.emailer = emailer
        self.passwords = passwords
        self.config = config or default_settings
        self.clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_access_token(self, user: User) -> str:
        return create_access_token(
            user_id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            primary_role=user.primary_role.value,
        )

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.config.JWT_ACCESS_TTL.total_seconds())

    async def _find_by_email(self, db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def _reject_login(
        self,
        db: AsyncSession,
        kind: ErrorKind,
        context: RequestContext,
        email: str,
        user: User | None = None,
        details: dict | None = None,
    ):
        await self.audit.emit(
            db,
            AuditEventType.LOGIN_FAILED,
            f"Login failed: {kind.value}",
            context=context,
            user_id=user.id if user else None,
            metadata={"email": email, "reason": kind.value},
        )
        raise AuthenticationError(kind, details=details)

    async def _register_failure(self, db: AsyncSession, user: User, context: RequestContext) -> None:
        """Increment the failure counter under a row lock and apply lockout."""
        await db.refresh(user, with_for_update=True)
        now = self.clock()
        lockout = self.config.LOCKOUT

        user.failed_login_attempts += 1
        attempts = user.failed_login_attempts

        window = None
        if attempts >= lockout.second_threshold:
            window = lockout.second_window
        elif attempts >= lockout.first_threshold:
            window = lockout.first_window
        if window is not None:
            user.locked_until = now + window
        await db.flush()

        if window is not None:
            logger.warning(f"Account {user.email} locked until {user.locked_until.isoformat()} after {attempts} failures")
            await self.audit.emit(
                db,
                AuditEventType.ACCOUNT_LOCKED,
                f"Account locked after {attempts} failed login attempts",
                context=context,
                user_id=user.id,
                metadata={"failed_attempts": attempts, "locked_until": user.locked_until},
            )

    @staticmethod
    def _admission_error(user: User) -> ErrorKind | None:
        if not user.is_active:
            return ErrorKind.ACCOUNT_INACTIVE
        return STATUS_ERRORS.get(user.account_status)

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        totp: str | None,
        context: RequestContext,
    ) -> LoginResult:
        """
        Run the login state machine.

        Raises:
            AuthenticationError: With the kind of the first failing step.
            RateLimitExceededError: If the login bucket is exhausted.
        """
        email = email.strip().lower()
        user = await self._find_by_email(db, email)
        now = self.clock()

        if user is not None:
            kind = self._admission_error(user)
            if kind is not None:
                await self._reject_login(db, kind, context, email, user)

            if user.locked_until is not None:
                if user.locked_until > now:
                    await self._reject_login(
                        db, ErrorKind.ACCOUNT_LOCKED, context, email, user,
                        details={"locked_until": user.locked_until.isoformat()},
                    )
                # Window elapsed; the counter stays so the next failure relocks
                user.locked_until = None

        await self.admission.admit(db, context, "login")

        if user is None:
            # Spend the same hashing time as a real account would
            await asyncio.to_thread(burn_password_check, password)
            await self._reject_login(db, ErrorKind.UNKNOWN_EMAIL, context, email)

        if not await asyncio.to_thread(verify_password, password, user.password_hash):
            await self._register_failure(db, user, context)
            await self._reject_login(db, ErrorKind.INVALID_CREDENTIALS, context, email, user)

        if user.two_factor_enabled:
            if not totp:
                await self._reject_login(db, ErrorKind.TWO_FACTOR_REQUIRED, context, email, user)
            if not verify_totp(decrypt_value(user.two_factor_secret), totp):
                await self._register_failure(db, user, context)
                await self._reject_login(db, ErrorKind.INVALID_TWO_FACTOR_CODE, context, email, user)

        if user.token_expiration_date is not None and user.token_expiration_date <= now:
            await self._reject_login(db, ErrorKind.TEMPORARY_PASSWORD_EXPIRED, context, email, user)

        await db.refresh(user, with_for_update=True)
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = now
        await db.flush()

        requires_change = user.token_expiration_date is not None
        await self.audit.emit(
            db,
            AuditEventType.LOGIN,
            "User logged in",
            context=context,
            user_id=user.id,
            metadata={"requires_change": requires_change},
        )
        logger.info(f"Login succeeded for {user.email}")

        return LoginResult(
            user=user,
            access_token=self._issue_access_token(user),
            refresh_token=create_refresh_token(user.id),
            expires_in=self.access_ttl_seconds,
            requires_change=requires_change,
            password_expires_at=user.token_expiration_date,
        )

    async def refresh(self, db: AsyncSession, refresh_token: str, context: RequestContext) -> RefreshResult:
        try:
            claims = decode_token(refresh_token, RefreshClaims)
        except TokenError as exc:
            raise TokenError(exc.kind, "Invalid refresh token", code="INVALID_REFRESH_TOKEN")

        user = await db.get(User, claims.user_id)
        if user is None or self._admission_error(user) is not None or (
            user.locked_until is not None and user.locked_until > self.clock()
        ):
            raise TokenError(
                ErrorKind.INVALID_TOKEN,
                "User is no longer allowed to sign in",
                code="INVALID_REFRESH_TOKEN",
            )

        return RefreshResult(
            user=user,
            access_token=self._issue_access_token(user),
            expires_in=self.access_ttl_seconds,
        )

    async def resolve_access_token(self, db: AsyncSession, token: str) -> User:
        """Map a bearer access token to an admissible User."""
        claims = decode_token(token, AccessClaims)
        user = await db.get(User, claims.user_id)
        if user is None:
            raise TokenError(ErrorKind.INVALID_TOKEN)
        kind = self._admission_error(user)
        if kind is not None:
            raise AuthenticationError(kind)
        return user

    async def logout(self, db: AsyncSession, user: User, context: RequestContext) -> None:
        # Tokens are stateless; logging out is an audited acknowledgement
        await self.audit.emit(db, AuditEventType.LOGOUT, "User logged out", context=context, user_id=user.id)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def request_recovery(self, db: AsyncSession, email: str, context: RequestContext) -> None:
        """
        Start password recovery. Never reveals whether the email exists.

        A known, active user gets a single-use token valid for
        RECOVERY_TOKEN_TTL; only its SHA-256 digest is stored.
        """
        await self.admission.admit(db, context, "general")

        email = (email or "").strip().lower()
        user = await self._find_by_email(db, email)
        if user is None or self._admission_error(user) is not None:
            await self.audit.emit(
                db,
                AuditEventType.PASSWORD_RESET,
                "Password recovery requested for an unknown or inactive account",
                context=context,
                user_id=user.id if user else None,
                metadata={"email": email, "issued": False},
            )
            return

        token = generate_recovery_token()
        user.recovery_token_hash = digest_token(token)
        user.recovery_token_expires_at = self.clock() + self.config.RECOVERY_TOKEN_TTL
        await self.audit.emit(
            db,
            AuditEventType.PASSWORD_RESET,
            "Password recovery requested",
            context=context,
            user_id=user.id,
            metadata={"email": email, "issued": True},
        )
        await db.commit()

        ttl_minutes = int(self.config.RECOVERY_TOKEN_TTL.total_seconds() // 60)
        if not await self.emailer.send_password_recovery(user, token, ttl_minutes):
            logger.error(f"Recovery email for {email} could not be delivered")

    async def reset_password(
        self,
        db: AsyncSession,
        token: str,
        new_password: str,
        context: RequestContext,
    ) -> User:
        invalid = TokenError(ErrorKind.INVALID_TOKEN, "Invalid or expired recovery token")
        if not token:
            raise invalid

        result = await db.execute(
            select(User)
            .where(User.recovery_token_hash == digest_token(token.strip()))
            .with_for_update()
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise invalid
        if user.recovery_token_expires_at is None or user.recovery_token_expires_at <= self.clock():
            user.recovery_token_hash = None
            user.recovery_token_expires_at = None
            raise invalid

        self.validator.validate_password(new_password, field="new_password")

        user.password_hash = await asyncio.to_thread(hash_password, new_password)
        user.recovery_token_hash = None
        user.recovery_token_expires_at = None
        user.failed_login_attempts = 0
        user.locked_until = None
        self.passwords.mark_used(user)

        await self.audit.emit(
            db,
            AuditEventType.PASSWORD_RESET,
            "Password reset with recovery token",
            context=context,
            user_id=user.id,
        )
        return user

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    async def change_password(
        self,
        db: AsyncSession,
        user: User,
        current_password: str,
        new_password: str,
        confirm_password: str,
        context: RequestContext,
    ) -> None:
        if new_password != confirm_password:
            raise InputValidationError(ErrorKind.PASSWORD_MISMATCH)

        if not await asyncio.to_thread(verify_password, current_password, user.password_hash):
            await self.audit.emit(
                db,
                AuditEventType.SECURITY_VIOLATION,
                "Password change rejected: wrong current password",
                context=context,
                user_id=user.id,
            )
            raise AuthenticationError(ErrorKind.INVALID_CURRENT_PASSWORD)

        self.validator.validate_password(new_password, field="new_password")
        if new_password == current_password:
            raise InputValidationError(
                ErrorKind.VALIDATION_ERROR,
                "New password must differ from the current password",
                details={"new_password": "must differ from the current password"},
            )

        was_temporary = user.token_expiration_date is not None
        user.password_hash = await asyncio.to_thread(hash_password, new_password)
        self.passwords.mark_used(user)

        if was_temporary:
            await self.audit.emit(
                db,
                AuditEventType.TEMPORARY_PASSWORD_USED,
                "Temporary password replaced by user",
                context=context,
                user_id=user.id,
            )
        else:
            await self.audit.emit(
                db,
                AuditEventType.PASSWORD_RESET,
                "Password changed by user",
                context=context,
                user_id=user.id,
            )

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    async def setup_2fa(self, db: AsyncSession, user: User, context: RequestContext) -> TwoFactorSetup:
        """Provision a new secret; 2FA stays off until verify_2fa succeeds."""
        if user.two_factor_enabled:
            raise AuthenticationError(ErrorKind.TWO_FACTOR_ALREADY_ENABLED)

        secret = generate_totp_secret()
        user.two_factor_secret = encrypt_value(secret)
        await db.flush()
        logger.info(f"2FA secret provisioned for {user.email}")
        return TwoFactorSetup(secret=secret, otpauth_uri=totp_provisioning_uri(secret, user.email))

    async def verify_2fa(self, db: AsyncSession, user: User, code: str, context: RequestContext) -> None:
        if user.two_factor_enabled:
            raise AuthenticationError(ErrorKind.TWO_FACTOR_ALREADY_ENABLED)
        if not user.two_factor_secret:
            raise AuthenticationError(ErrorKind.TWO_FACTOR_NOT_SETUP)
        if not verify_totp(decrypt_value(user.two_factor_secret), code):
            raise AuthenticationError(ErrorKind.INVALID_TWO_FACTOR_CODE)

        user.two_factor_enabled = True
        await db.flush()
        logger.info(f"2FA enabled for {user.email}")

    async def disable_2fa(self, db: AsyncSession, user: User, code: str, context: RequestContext) -> None:
        if not user.two_factor_enabled:
            raise AuthenticationError(ErrorKind.TWO_FACTOR_NOT_ENABLED)
        if not verify_totp(decrypt_value(user.two_factor_secret), code):
            await self.audit.emit(
                db,
                AuditEventType.SECURITY_VIOLATION,
                "2FA disable rejected: invalid code",
                context=context,
                user_id=user.id,
            )
            raise AuthenticationError(ErrorKind.INVALID_TWO_FACTOR_CODE)

        user.two_factor_enabled = False
        user.two_factor_secret = None
        await db.flush()
        logger.info(f"2FA disabled for {user.email}")
