"""
Admin router — city admin registration, the admin directory and oversight.

Endpoints:
  POST /admin/register                              — Create a city_admin (super_admin)
  GET  /admin/validate-email                        — Email format + availability check
  GET  /admin/list                                  — Paginated city admin directory (super_admin)
  GET  /admin/audit-events                          — Query the security audit log (super_admin)
  POST /admin/users/{user_id}/regenerate-password   — Issue a new temporary password (super_admin)
  POST /admin/users/{user_id}/force-password-change — Require rotation at next login (super_admin)

Role checks happen in the services so that every refusal is audited with
the attempted action. Handlers run under ADMIN_TIMEOUT.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.database import get_db
from mowesport.dependencies import (
    get_current_user,
    get_request_context,
    get_services,
    run_with_timeout,
)
from mowesport.models.audit_event import AuditEventType, AuditSeverity
from mowesport.models.user import AccountStatus, User
from mowesport.schemas.admin import (
    AdminListResponse,
    AdminSummary,
    AuditEventResponse,
    EmailValidationResponse,
    RegistrationRequest,
    RegistrationResponse,
)
from mowesport.schemas.common import SuccessResponse
from mowesport.schemas.user import RoleAssignmentResponse, UserResponse
from mowesport.services.audit_service import RequestContext
from mowesport.services.container import Services

router = APIRouter()


@router.post(
    "/register",
    response_model=SuccessResponse[RegistrationResponse],
    status_code=status.HTTP_201_CREATED,
    summary="[Super admin] Register a city administrator",
)
async def register_admin(
    request: RegistrationRequest,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """
    Create a city_admin for one (city, sport) scope.

    The new account receives a temporary password by email, valid for 24
    hours; the first login reports requires_change=true. A failed email
    delivery does not undo the registration (welcome_email_sent=false).
    """
    outcome = await run_with_timeout(
        services.registration.register_admin(db, caller, request, context),
        services.config.ADMIN_TIMEOUT,
    )
    return SuccessResponse(data=RegistrationResponse(
        user=UserResponse.model_validate(outcome.user),
        role_assignment=RoleAssignmentResponse.model_validate(outcome.assignment),
        temporary_password_expires_at=outcome.user.token_expiration_date,
        welcome_email_sent=outcome.welcome_email_sent,
    ))


@router.get(
    "/validate-email",
    response_model=SuccessResponse[EmailValidationResponse],
    summary="Check an email's format and availability",
)
async def validate_email(
    email: str = Query(min_length=1, max_length=320),
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    result = await services.registration.check_email(db, email, context)
    return SuccessResponse(data=EmailValidationResponse(**result))


@router.get(
    "/list",
    response_model=SuccessResponse[AdminListResponse],
    summary="[Super admin] List city administrators",
)
async def list_admins(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    city_id: uuid.UUID | None = None,
    sport_id: uuid.UUID | None = None,
    account_status: AccountStatus | None = Query(None, alias="status"),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """
    Page through city admins with their scope's city and sport names.

    sort_by accepts first_name, last_name, email, created_at or
    last_login_at; anything else falls back to created_at.
    """
    result = await run_with_timeout(
        services.registration.list_admins(
            db, caller, context,
            page=page,
            limit=limit,
            search=search,
            city_id=city_id,
            sport_id=sport_id,
            status=account_status,
            sort_by=sort_by,
            sort_order=sort_order,
        ),
        services.config.ADMIN_TIMEOUT,
    )
    return SuccessResponse(data=AdminListResponse(
        admins=[AdminSummary(**row) for row in result.rows],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
        has_next=result.page < result.total_pages,
        has_prev=result.page > 1,
    ))


@router.get(
    "/audit-events",
    response_model=SuccessResponse[list[AuditEventResponse]],
    summary="[Super admin] Query the security audit log",
)
async def list_audit_events(
    event_type: AuditEventType | None = None,
    user_id: uuid.UUID | None = None,
    ip_address: str | None = Query(None, max_length=64),
    severity: AuditSeverity | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(100, ge=1, le=500),
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """Newest events first."""
    await services.authz.ensure_super_admin(db, caller, context, "read audit log")
    events = await services.audit.query(
        db,
        event_type=event_type,
        user_id=user_id,
        ip_address=ip_address,
        severity=severity,
        since=since,
        until=until,
        limit=limit,
    )
    return SuccessResponse(data=[AuditEventResponse.model_validate(e) for e in events])


# ---------------------------------------------------------------------------
# Temporary password administration
# ---------------------------------------------------------------------------

@router.post(
    "/users/{user_id}/regenerate-password",
    response_model=SuccessResponse[UserResponse],
    summary="[Super admin] Issue a new temporary password",
)
async def regenerate_password(
    user_id: uuid.UUID,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """The new password is mailed to the user, never returned here."""
    user = await run_with_timeout(
        services.passwords.regenerate(db, caller, user_id, context),
        services.config.ADMIN_TIMEOUT,
    )
    return SuccessResponse(data=UserResponse.model_validate(user))


@router.post(
    "/users/{user_id}/force-password-change",
    response_model=SuccessResponse[UserResponse],
    summary="[Super admin] Require a password change at next login",
)
async def force_password_change(
    user_id: uuid.UUID,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    user = await services.passwords.force_change(db, caller, user_id, context)
    return SuccessResponse(data=UserResponse.model_validate(user))
