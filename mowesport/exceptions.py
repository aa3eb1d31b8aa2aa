"""
Domain error kinds, exception classes and FastAPI exception handlers.

The service layer raises MoweSportError subclasses carrying an ErrorKind and
never imports HTTP concepts. register_exception_handlers() is the single place
where a kind becomes a status code and an UPPER_SNAKE error code, rendered in
the shared envelope:

    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}

Exception hierarchy:
    MoweSportError (base)
    ├── AuthenticationError    — login state machine and credential checks
    ├── AuthorizationError     — hierarchy and scope checks
    ├── InputValidationError   — malformed or suspicious input
    ├── ConflictError          — uniqueness violations
    ├── NotFoundError          — missing users, roles, cities, sports
    ├── RateLimitExceededError — rate limiter rejection
    ├── RequestTimeoutError    — request deadline exceeded
    ├── TokenError             — JWT decoding and recovery token failures
    └── IntegrityFailure       — RNG unavailable, critical audit write failed
"""

import enum
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    # Authentication
    UNKNOWN_EMAIL = "unknown_email"
    INVALID_CREDENTIALS = "invalid_credentials"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    INVALID_TWO_FACTOR_CODE = "invalid_two_factor_code"
    ACCOUNT_INACTIVE = "account_inactive"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_PAYMENT_PENDING = "account_payment_pending"
    ACCOUNT_DISABLED = "account_disabled"
    ACCOUNT_LOCKED = "account_locked"
    TEMPORARY_PASSWORD_EXPIRED = "temporary_password_expired"
    INVALID_CURRENT_PASSWORD = "invalid_current_password"
    TWO_FACTOR_NOT_ENABLED = "two_factor_not_enabled"
    TWO_FACTOR_ALREADY_ENABLED = "two_factor_already_enabled"
    TWO_FACTOR_NOT_SETUP = "two_factor_not_setup"
    # Authorization
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    PERMISSION_DENIED = "permission_denied"
    # Input
    VALIDATION_ERROR = "validation_error"
    INVALID_EMAIL_FORMAT = "invalid_email_format"
    INVALID_PHONE_FORMAT = "invalid_phone_format"
    INVALID_IDENTIFICATION_FORMAT = "invalid_identification_format"
    SUSPICIOUS_INPUT = "suspicious_input"
    WEAK_PASSWORD = "weak_password"
    PASSWORD_MISMATCH = "password_mismatch"
    INVALID_STATUS = "invalid_status"
    INVALID_ROLE = "invalid_role"
    # Conflict
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    ADMIN_ALREADY_EXISTS = "admin_already_exists"
    ROLE_ALREADY_ASSIGNED = "role_already_assigned"
    ROLE_ALREADY_INACTIVE = "role_already_inactive"
    # Reference
    CITY_NOT_FOUND = "city_not_found"
    SPORT_NOT_FOUND = "sport_not_found"
    USER_NOT_FOUND = "user_not_found"
    ROLE_NOT_FOUND = "role_not_found"
    # Capacity
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    # Integrity
    RNG_UNAVAILABLE = "rng_unavailable"
    AUDIT_WRITE_FAILED = "audit_write_failed"
    # Token
    INVALID_TOKEN = "invalid_token"
    INVALID_TOKEN_TYPE = "invalid_token_type"
    INVALID_TOKEN_CLAIMS = "invalid_token_claims"
    EXPIRED_TOKEN = "expired_token"


ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.UNKNOWN_EMAIL: 401,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.TWO_FACTOR_REQUIRED: 401,
    ErrorKind.INVALID_TWO_FACTOR_CODE: 401,
    ErrorKind.ACCOUNT_INACTIVE: 403,
    ErrorKind.ACCOUNT_SUSPENDED: 403,
    ErrorKind.ACCOUNT_PAYMENT_PENDING: 403,
    ErrorKind.ACCOUNT_DISABLED: 403,
    ErrorKind.ACCOUNT_LOCKED: 403,
    ErrorKind.TEMPORARY_PASSWORD_EXPIRED: 403,
    ErrorKind.INVALID_CURRENT_PASSWORD: 401,
    ErrorKind.TWO_FACTOR_NOT_ENABLED: 400,
    ErrorKind.TWO_FACTOR_ALREADY_ENABLED: 409,
    ErrorKind.TWO_FACTOR_NOT_SETUP: 400,
    ErrorKind.INSUFFICIENT_PERMISSIONS: 403,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.INVALID_EMAIL_FORMAT: 400,
    ErrorKind.INVALID_PHONE_FORMAT: 400,
    ErrorKind.INVALID_IDENTIFICATION_FORMAT: 400,
    ErrorKind.SUSPICIOUS_INPUT: 400,
    ErrorKind.WEAK_PASSWORD: 400,
    ErrorKind.PASSWORD_MISMATCH: 400,
    ErrorKind.INVALID_STATUS: 400,
    ErrorKind.INVALID_ROLE: 400,
    ErrorKind.EMAIL_ALREADY_EXISTS: 409,
    ErrorKind.ADMIN_ALREADY_EXISTS: 409,
    ErrorKind.ROLE_ALREADY_ASSIGNED: 409,
    ErrorKind.ROLE_ALREADY_INACTIVE: 409,
    ErrorKind.CITY_NOT_FOUND: 404,
    ErrorKind.SPORT_NOT_FOUND: 404,
    ErrorKind.USER_NOT_FOUND: 404,
    ErrorKind.ROLE_NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.TIMEOUT: 500,
    ErrorKind.RNG_UNAVAILABLE: 500,
    ErrorKind.AUDIT_WRITE_FAILED: 500,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.INVALID_TOKEN_TYPE: 401,
    ErrorKind.INVALID_TOKEN_CLAIMS: 401,
    ErrorKind.EXPIRED_TOKEN: 401,
}

# Kinds whose public code differs from kind.value.upper()
ERROR_CODES: dict[ErrorKind, str] = {
    # Unknown e-mail must be indistinguishable from a wrong password
    ErrorKind.UNKNOWN_EMAIL: "INVALID_CREDENTIALS",
    ErrorKind.RATE_LIMITED: "RATE_LIMIT_EXCEEDED",
    ErrorKind.INVALID_TWO_FACTOR_CODE: "INVALID_2FA_CODE",
    ErrorKind.TWO_FACTOR_NOT_ENABLED: "2FA_NOT_ENABLED",
    ErrorKind.TWO_FACTOR_ALREADY_ENABLED: "2FA_ALREADY_ENABLED",
    ErrorKind.TWO_FACTOR_NOT_SETUP: "2FA_NOT_SETUP",
}

DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.UNKNOWN_EMAIL: "Invalid email or password",
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    ErrorKind.TWO_FACTOR_REQUIRED: "Two-factor authentication code required",
    ErrorKind.INVALID_TWO_FACTOR_CODE: "Invalid two-factor authentication code",
    ErrorKind.ACCOUNT_INACTIVE: "Account is inactive",
    ErrorKind.ACCOUNT_SUSPENDED: "Account is suspended",
    ErrorKind.ACCOUNT_PAYMENT_PENDING: "Account has a pending payment",
    ErrorKind.ACCOUNT_DISABLED: "Account is disabled",
    ErrorKind.ACCOUNT_LOCKED: "Account is temporarily locked due to failed login attempts",
    ErrorKind.TEMPORARY_PASSWORD_EXPIRED: "Temporary password has expired, please recover your account",
    ErrorKind.INVALID_CURRENT_PASSWORD: "Current password is incorrect",
    ErrorKind.TWO_FACTOR_NOT_ENABLED: "2FA is not enabled",
    ErrorKind.TWO_FACTOR_ALREADY_ENABLED: "2FA is already enabled",
    ErrorKind.TWO_FACTOR_NOT_SETUP: "2FA has not been set up",
    ErrorKind.INSUFFICIENT_PERMISSIONS: "Insufficient permissions for this operation",
    ErrorKind.PERMISSION_DENIED: "Permission denied",
    ErrorKind.VALIDATION_ERROR: "Request validation failed",
    ErrorKind.INVALID_EMAIL_FORMAT: "Invalid email format",
    ErrorKind.INVALID_PHONE_FORMAT: "Invalid phone format",
    ErrorKind.INVALID_IDENTIFICATION_FORMAT: "Invalid identification format",
    ErrorKind.SUSPICIOUS_INPUT: "Suspicious input detected",
    ErrorKind.WEAK_PASSWORD: "Password does not meet the security policy",
    ErrorKind.PASSWORD_MISMATCH: "New password and confirmation do not match",
    ErrorKind.INVALID_STATUS: "Invalid account status",
    ErrorKind.INVALID_ROLE: "Invalid role",
    ErrorKind.EMAIL_ALREADY_EXISTS: "Email is already registered",
    ErrorKind.ADMIN_ALREADY_EXISTS: "An active administrator already exists for this city and sport",
    ErrorKind.ROLE_ALREADY_ASSIGNED: "Role is already assigned in this scope",
    ErrorKind.ROLE_ALREADY_INACTIVE: "Role assignment is already inactive",
    ErrorKind.CITY_NOT_FOUND: "City not found",
    ErrorKind.SPORT_NOT_FOUND: "Sport not found",
    ErrorKind.USER_NOT_FOUND: "User not found",
    ErrorKind.ROLE_NOT_FOUND: "Role assignment not found",
    ErrorKind.RATE_LIMITED: "Too many requests, please try again later",
    ErrorKind.TIMEOUT: "Request timed out",
    ErrorKind.RNG_UNAVAILABLE: "Internal server error",
    ErrorKind.AUDIT_WRITE_FAILED: "Internal server error",
    ErrorKind.INVALID_TOKEN: "Invalid token",
    ErrorKind.INVALID_TOKEN_TYPE: "Invalid token type",
    ErrorKind.INVALID_TOKEN_CLAIMS: "Invalid token claims",
    ErrorKind.EXPIRED_TOKEN: "Token has expired",
}


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class MoweSportError(Exception):
    """
    Base exception for all MoweSport domain errors.

    Attributes:
        kind: The ErrorKind driving status code and default message.
        message: Human-readable message (defaults per kind).
        details: Optional per-field detail object or string.
        code: Public UPPER_SNAKE code; overrides the per-kind default for
            endpoints that expose a more specific code (INVALID_REFRESH_TOKEN).
    """

    # The request session is committed when this error escapes, so audit
    # events and failed-login counters written before raising persist.
    commit_session = True

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        details: dict | str | None = None,
        code: str | None = None,
    ):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES.get(kind, "An error occurred")
        self.details = details
        self.code = code or ERROR_CODES.get(kind, kind.value.upper())
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS.get(self.kind, 500)


# ---------------------------------------------------------------------------
# Category exceptions
# ---------------------------------------------------------------------------

class AuthenticationError(MoweSportError):
    """Login state machine and credential-change failures."""


class AuthorizationError(MoweSportError):
    """Caller lacks the role or scope for the operation."""

    def __init__(self, kind: ErrorKind = ErrorKind.INSUFFICIENT_PERMISSIONS, message: str | None = None, **kwargs):
        super().__init__(kind, message, **kwargs)


class InputValidationError(MoweSportError):
    """Raised when input is malformed, suspicious or violates policy."""

    def __init__(self, kind: ErrorKind = ErrorKind.VALIDATION_ERROR, message: str | None = None, **kwargs):
        super().__init__(kind, message, **kwargs)


class ConflictError(MoweSportError):
    """A uniqueness rule would be violated."""


class NotFoundError(MoweSportError):
    """A referenced user, role assignment, city or sport does not exist."""


class TokenError(MoweSportError):
    """Raised for malformed, expired, tampered or mistyped tokens."""

    def __init__(self, kind: ErrorKind = ErrorKind.INVALID_TOKEN, message: str | None = None, **kwargs):
        super().__init__(kind, message, **kwargs)


class RateLimitExceededError(MoweSportError):
    """Raised when a (identifier, bucket) pair has exhausted its ceiling."""

    def __init__(self, bucket: str, retry_after: float | None = None):
        self.bucket = bucket
        self.retry_after = retry_after
        super().__init__(ErrorKind.RATE_LIMITED, details={"bucket": bucket})


class RequestTimeoutError(MoweSportError):
    """The request exceeded its deadline; in-flight database work is discarded."""

    commit_session = False

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(ErrorKind.TIMEOUT, f"Request timed out after {seconds:g} seconds")


class IntegrityFailure(MoweSportError):
    """Internal failure that aborts the request with an opaque 500."""

    commit_session = False


class AuditWriteError(IntegrityFailure):
    """Raised when an audit event could not be persisted."""

    def __init__(self, event_type: str, severity: str):
        self.event_type = event_type
        self.severity = severity
        super().__init__(ErrorKind.AUDIT_WRITE_FAILED)


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def error_response(status_code: int, code: str, message: str, details=None, headers=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


_HTTP_CODES = {
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Every error leaves the API in the same envelope. This is called once
    during app startup in main.py.
    """

    @app.exception_handler(MoweSportError)
    async def mowesport_error_handler(request: Request, exc: MoweSportError) -> JSONResponse:
        status_code = exc.status_code
        if status_code >= 500:
            # Internal failures stay opaque to the client
            logger.critical(
                f"Internal failure on {request.method} {request.url.path}: {exc.kind.value}"
            )
            return error_response(status_code, exc.code, exc.message)

        headers = None
        if isinstance(exc, RateLimitExceededError) and exc.retry_after is not None:
            headers = {"Retry-After": str(max(1, int(exc.retry_after)))}
        elif status_code == 401:
            headers = {"WWW-Authenticate": "Bearer"}
        return error_response(status_code, exc.code, exc.message, exc.details, headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = {}
        for err in exc.errors():
            location = ".".join(str(part) for part in err["loc"] if part != "body")
            fields[location or "body"] = err["msg"]
        return error_response(400, "VALIDATION_ERROR", "Request validation failed", jsonable_encoder(fields))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        return error_response(exc.status_code, code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.critical(
            f"Unhandled error on {request.method} {request.url.path}", exc_info=exc
        )
        return error_response(500, "INTERNAL_ERROR", "Internal server error")
