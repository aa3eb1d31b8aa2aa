"""
Users router — directory, account state, role assignments, view permissions.

Endpoints:
  GET    /users                                — List users (admin; city admins see their scopes)
  POST   /users/register                       — Register owner/referee/player/coach
  POST   /users/roles                          — Assign a scoped role
  DELETE /users/roles/{assignment_id}          — Revoke a role assignment
  POST   /users/permissions                    — Upsert a view permission (super_admin)
  GET    /users/me/permissions/{view_name}     — Resolve the caller's access to a view
  GET    /users/{user_id}                      — Get a user
  PUT    /users/{user_id}                      — Update personal data
  PATCH  /users/{user_id}/status               — Change account status
  POST   /users/{user_id}/unlock               — Clear failed attempts and lock window
  GET    /users/{user_id}/roles                — A user's role assignments

Every endpoint counts against the "general" rate limit bucket.
"""

import math
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.database import get_db
from mowesport.dependencies import (
    admit_general,
    get_current_user,
    get_request_context,
    get_services,
    run_with_timeout,
)
from mowesport.models.user import AccountStatus, PrimaryRole, User
from mowesport.schemas.admin import RegistrationResponse, UserRegistrationRequest
from mowesport.schemas.common import SuccessResponse
from mowesport.schemas.user import (
    RoleAssignRequest,
    RoleAssignmentResponse,
    StatusUpdateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
    ViewAccessResponse,
    ViewPermissionRequest,
    ViewPermissionResponse,
)
from mowesport.services.audit_service import RequestContext
from mowesport.services.container import Services

router = APIRouter()

rate_limited = [Depends(admit_general)]


@router.get(
    "",
    response_model=SuccessResponse[UserListResponse],
    dependencies=rate_limited,
    summary="List users",
)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    role: PrimaryRole | None = None,
    account_status: AccountStatus | None = Query(None, alias="status"),
    is_active: bool | None = None,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    users, total, page, limit = await services.users.list_users(
        db, caller, context,
        page=page,
        limit=limit,
        search=search,
        role=role,
        status=account_status,
        is_active=is_active,
    )
    total_pages = math.ceil(total / limit) if total else 0
    return SuccessResponse(data=UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    ))


@router.post(
    "/register",
    response_model=SuccessResponse[RegistrationResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register a user below the caller in the hierarchy",
)
async def register_user(
    request: UserRegistrationRequest,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """
    City admins register owners and referees; owners register players and
    coaches. Both must hold their own role in the requested (city, sport).
    """
    outcome = await run_with_timeout(
        services.registration.register_user(db, caller, request, request.role, context),
        services.config.ADMIN_TIMEOUT,
    )
    return SuccessResponse(data=RegistrationResponse(
        user=UserResponse.model_validate(outcome.user),
        role_assignment=RoleAssignmentResponse.model_validate(outcome.assignment),
        temporary_password_expires_at=outcome.user.token_expiration_date,
        welcome_email_sent=outcome.welcome_email_sent,
    ))


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------

@router.post(
    "/roles",
    response_model=SuccessResponse[RoleAssignmentResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=rate_limited,
    summary="Assign a role",
)
async def assign_role(
    request: RoleAssignRequest,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    assignment = await services.users.assign_role(db, caller, request, context)
    return SuccessResponse(data=RoleAssignmentResponse.model_validate(assignment))


@router.delete(
    "/roles/{assignment_id}",
    response_model=SuccessResponse[RoleAssignmentResponse],
    dependencies=rate_limited,
    summary="Revoke a role assignment",
)
async def revoke_role(
    assignment_id: uuid.UUID,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """The assignment is deactivated, not deleted."""
    assignment = await services.users.revoke_role(db, caller, assignment_id, context)
    return SuccessResponse(data=RoleAssignmentResponse.model_validate(assignment))


@router.post(
    "/permissions",
    response_model=SuccessResponse[ViewPermissionResponse],
    dependencies=rate_limited,
    summary="[Super admin] Set a view permission",
)
async def set_view_permission(
    request: ViewPermissionRequest,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    """Targets either one user or every holder of a role, never both."""
    permission = await services.users.set_view_permission(db, caller, request, context)
    return SuccessResponse(data=ViewPermissionResponse.model_validate(permission))


@router.get(
    "/me/permissions/{view_name}",
    response_model=SuccessResponse[ViewAccessResponse],
    dependencies=rate_limited,
    summary="Check own access to a view",
)
async def my_view_permission(
    view_name: str,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    allowed = await services.authz.can_view(db, caller, view_name)
    return SuccessResponse(data=ViewAccessResponse(view_name=view_name, is_allowed=allowed))


# ---------------------------------------------------------------------------
# Single user
# ---------------------------------------------------------------------------

@router.get(
    "/{user_id}",
    response_model=SuccessResponse[UserResponse],
    dependencies=rate_limited,
    summary="Get a user",
)
async def get_user(
    user_id: uuid.UUID,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    user = await services.users.get_user(db, caller, user_id, context)
    return SuccessResponse(data=UserResponse.model_validate(user))


@router.put(
    "/{user_id}",
    response_model=SuccessResponse[UserResponse],
    dependencies=rate_limited,
    summary="Update a user's personal data",
)
async def update_user(
    user_id: uuid.UUID,
    request: UserUpdateRequest,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    user = await services.users.update_user(db, caller, user_id, request, context)
    return SuccessResponse(data=UserResponse.model_validate(user))


@router.patch(
    "/{user_id}/status",
    response_model=SuccessResponse[UserResponse],
    dependencies=rate_limited,
    summary="Change a user's account status",
)
async def update_status(
    user_id: uuid.UUID,
    request: StatusUpdateRequest,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    user = await services.users.update_status(
        db, caller, user_id, request.account_status, request.reason, context
    )
    return SuccessResponse(data=UserResponse.model_validate(user))


@router.post(
    "/{user_id}/unlock",
    response_model=SuccessResponse[UserResponse],
    dependencies=rate_limited,
    summary="Unlock a locked account",
)
async def unlock_user(
    user_id: uuid.UUID,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    user = await services.users.unlock(db, caller, user_id, context)
    return SuccessResponse(data=UserResponse.model_validate(user))


@router.get(
    "/{user_id}/roles",
    response_model=SuccessResponse[list[RoleAssignmentResponse]],
    dependencies=rate_limited,
    summary="List a user's role assignments",
)
async def list_user_roles(
    user_id: uuid.UUID,
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
):
    assignments = await services.users.list_roles(db, caller, user_id, context)
    return SuccessResponse(data=[RoleAssignmentResponse.model_validate(a) for a in assignments])
