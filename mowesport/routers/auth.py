"""
Authentication router — credentials, tokens, recovery and second factor.

Endpoints:
  POST /auth/login            — Email + password (+ TOTP) -> access/refresh tokens
  POST /auth/refresh          — Refresh token -> new access token
  POST /auth/logout           — Audited acknowledgement (tokens are stateless)
  POST /auth/forgot-password  — Start recovery; identical answer for every email
  POST /auth/reset-password   — Consume a recovery token
  POST /auth/2fa/setup        — Provision a TOTP secret and otpauth URI
  POST /auth/2fa/verify       — Enable 2FA with a first valid code
  POST /auth/2fa/disable      — Disable 2FA with a valid code
  GET  /auth/profile          — Own profile and active role assignments
  POST /auth/change-password  — Rotate the password (temporary ones included)
  GET  /auth/password-status  — Temporary password state

Security notes:
  - Plaintext passwords, tokens and TOTP secrets are never logged.
  - An unknown email and a wrong password produce byte-identical responses.
  - Every handler runs under AUTH_TIMEOUT; a timeout rolls the session back.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.database import get_db
from mowesport.dependencies import (
    get_current_user,
    get_request_context,
    get_services,
    run_with_timeout,
)
from mowesport.models.user import User
from mowesport.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    PasswordStatusResponse,
    RefreshRequest,
    RefreshResponse,
    ResetPasswordRequest,
    TwoFactorCodeRequest,
    TwoFactorSetupResponse,
)
from mowesport.schemas.common import MessageData, SuccessResponse
from mowesport.schemas.user import ProfileResponse, RoleAssignmentResponse, UserResponse
from mowesport.services.audit_service import RequestContext
from mowesport.services.container import Services

router = APIRouter()

RECOVERY_ACKNOWLEDGEMENT = "If the email is registered, a recovery code has been sent"


@router.post(
    "/login",
    response_model=SuccessResponse[LoginResponse],
    summary="Authenticate and get tokens",
)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """
    Authenticate with email and password (plus a TOTP code when 2FA is on).

    Returns an access token for the Authorization header:

        Authorization: Bearer <access_token>

    and a refresh token for POST /auth/refresh. `requires_change` is true
    while the password is a temporary one.
    """
    result = await run_with_timeout(
        services.auth.authenticate(db, request.email, request.password, request.totp, context),
        services.config.AUTH_TIMEOUT,
    )
    return SuccessResponse(data=LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        requires_change=result.requires_change,
        password_expires_at=result.password_expires_at,
        user=UserResponse.model_validate(result.user),
    ))


@router.post(
    "/refresh",
    response_model=SuccessResponse[RefreshResponse],
    summary="Exchange a refresh token for a new access token",
)
async def refresh(
    request: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    result = await run_with_timeout(
        services.auth.refresh(db, request.refresh_token, context),
        services.config.AUTH_TIMEOUT,
    )
    return SuccessResponse(data=RefreshResponse(
        access_token=result.access_token,
        expires_in=result.expires_in,
        user=UserResponse.model_validate(result.user),
    ))


@router.post("/logout", response_model=SuccessResponse[MessageData], summary="Log out")
async def logout(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """Tokens are not revoked server-side; the client discards them."""
    await services.auth.logout(db, user, context)
    return SuccessResponse(data=MessageData(message="Logged out"))


@router.post(
    "/forgot-password",
    response_model=SuccessResponse[MessageData],
    summary="Start password recovery",
)
async def forgot_password(
    request: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """Always succeeds with the same message, whether or not the email exists."""
    await run_with_timeout(
        services.auth.request_recovery(db, request.email, context),
        services.config.AUTH_TIMEOUT,
    )
    return SuccessResponse(data=MessageData(message=RECOVERY_ACKNOWLEDGEMENT))


@router.post(
    "/reset-password",
    response_model=SuccessResponse[MessageData],
    summary="Reset the password with a recovery token",
)
async def reset_password(
    request: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    await run_with_timeout(
        services.auth.reset_password(db, request.token, request.new_password, context),
        services.config.AUTH_TIMEOUT,
    )
    return SuccessResponse(data=MessageData(message="Password has been reset"))


# ---------------------------------------------------------------------------
# Two-factor
# ---------------------------------------------------------------------------

@router.post(
    "/2fa/setup",
    response_model=SuccessResponse[TwoFactorSetupResponse],
    summary="Provision a TOTP secret",
)
async def setup_2fa(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """
    Returns the base32 secret and an otpauth:// URI for authenticator apps.
    2FA is not enforced until /auth/2fa/verify succeeds.
    """
    setup = await services.auth.setup_2fa(db, user, context)
    return SuccessResponse(data=TwoFactorSetupResponse(secret=setup.secret, otpauth_uri=setup.otpauth_uri))


@router.post("/2fa/verify", response_model=SuccessResponse[MessageData], summary="Enable 2FA")
async def verify_2fa(
    request: TwoFactorCodeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    await services.auth.verify_2fa(db, user, request.code, context)
    return SuccessResponse(data=MessageData(message="Two-factor authentication enabled"))


@router.post("/2fa/disable", response_model=SuccessResponse[MessageData], summary="Disable 2FA")
async def disable_2fa(
    request: TwoFactorCodeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    await services.auth.disable_2fa(db, user, request.code, context)
    return SuccessResponse(data=MessageData(message="Two-factor authentication disabled"))


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------

@router.get("/profile", response_model=SuccessResponse[ProfileResponse], summary="Get own profile")
async def profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    assignments = await services.authz.active_assignments(db, user.id)
    return SuccessResponse(data=ProfileResponse(
        user=UserResponse.model_validate(user),
        roles=[RoleAssignmentResponse.model_validate(a) for a in assignments],
        requires_password_change=user.token_expiration_date is not None,
    ))


@router.post(
    "/change-password",
    response_model=SuccessResponse[MessageData],
    summary="Change own password",
)
async def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """
    Rotate the password. Also the way out of a temporary password: on
    success the temporary marker is cleared and requires_change turns false.
    """
    await run_with_timeout(
        services.auth.change_password(
            db, user, request.current_password, request.new_password, request.confirm_password, context
        ),
        services.config.AUTH_TIMEOUT,
    )
    return SuccessResponse(data=MessageData(message="Password changed"))


@router.get(
    "/password-status",
    response_model=SuccessResponse[PasswordStatusResponse],
    summary="Temporary password state",
)
async def password_status(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    status = services.passwords.status(user)
    return SuccessResponse(data=PasswordStatusResponse(**asdict(status)))
