"""
User management — profiles, account status, role assignments, view permissions.

Authorization rules:
  - Reading or editing another user, changing their status or unlocking
    them requires super_admin, or a city_admin sharing a scope with the
    target (never over another admin).
  - Assigning a role follows the registration hierarchy; super_admin may
    assign any role except super_admin.
  - Revoking an assignment requires admin of its scope (or super_admin);
    city_admin assignments can only be revoked by a super_admin.
  - View permissions are super_admin only.
"""

import logging
import uuid

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.exceptions import (
    ConflictError,
    ErrorKind,
    InputValidationError,
    NotFoundError,
)
from mowesport.models.audit_event import AuditEventType
from mowesport.models.reference import City, Sport
from mowesport.models.role_assignment import RoleAssignment
from mowesport.models.user import AccountStatus, PrimaryRole, User
from mowesport.models.view_permission import ViewPermission
from mowesport.schemas.user import RoleAssignRequest, UserUpdateRequest, ViewPermissionRequest
from mowesport.services.audit_service import AuditLog, RequestContext
from mowesport.services.authorization_service import ADMIN_ROLES, AuthorizationService
from mowesport.validation import InputValidator

logger = logging.getLogger(__name__)


class UserManagementService:

    def __init__(self, authz: AuthorizationService, audit: AuditLog, validator: InputValidator):
        self.authz = authz
        self.audit = audit
        self.validator = validator

    async def _get_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(ErrorKind.USER_NOT_FOUND)
        return user

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_user(self, db: AsyncSession, caller: User, user_id: uuid.UUID, context: RequestContext) -> User:
        user = await self._get_user(db, user_id)
        if user.id != caller.id:
            await self.authz.ensure_admin_over_user(db, caller, user, context, "view profile")
        return user

    async def list_users(
        self,
        db: AsyncSession,
        caller: User,
        context: RequestContext,
        *,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        role: PrimaryRole | None = None,
        status: AccountStatus | None = None,
        is_active: bool | None = None,
    ) -> tuple[list[User], int, int, int]:
        """Paginated user directory; city admins only see users of their scopes."""
        await self.authz.ensure_admin(db, caller, context, "list users")
        page = max(1, page)
        limit = min(max(1, limit), 100)

        stmt = select(User)
        if caller.primary_role != PrimaryRole.SUPER_ADMIN:
            scopes = [
                and_(RoleAssignment.city_id == a.city_id, RoleAssignment.sport_id == a.sport_id)
                for a in await self.authz.active_assignments(db, caller.id)
                if a.role_name == PrimaryRole.CITY_ADMIN
            ]
            if not scopes:
                return [], 0, page, limit
            in_scope = select(RoleAssignment.user_id).where(
                RoleAssignment.is_active.is_(True), or_(*scopes)
            )
            stmt = stmt.where(User.id.in_(in_scope))
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern), User.email.ilike(pattern))
            )
        if role is not None:
            stmt = stmt.where(User.primary_role == role)
        if status is not None:
            stmt = stmt.where(User.account_status == status)
        if is_active is not None:
            stmt = stmt.where(User.is_active.is_(is_active))

        total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        result = await db.execute(
            stmt.order_by(User.created_at.desc(), User.id).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total, page, limit

    async def update_user(
        self,
        db: AsyncSession,
        caller: User,
        user_id: uuid.UUID,
        payload: UserUpdateRequest,
        context: RequestContext,
    ) -> User:
        user = await self._get_user(db, user_id)
        if user.id != caller.id:
            await self.authz.ensure_admin_over_user(db, caller, user, context, "update profile")

        changes = payload.model_dump(exclude_unset=True)
        country = changes.pop("country", None)

        findings = self.validator.detect_suspicious(
            {k: v for k, v in changes.items() if k in ("first_name", "last_name", "phone", "identification")}
        )
        if findings:
            await self.audit.emit(
                db,
                AuditEventType.SUSPICIOUS_ACTIVITY,
                "Suspicious input in profile update",
                context=context,
                user_id=caller.id,
                metadata={"target_user_id": user.id, "findings": [f.as_dict() for f in findings]},
            )
            if self.validator.suspicious_policy.abort_on_findings:
                raise InputValidationError(
                    ErrorKind.SUSPICIOUS_INPUT,
                    details={"fields": sorted({f.field for f in findings})},
                )

        for name in ("first_name", "last_name"):
            if name in changes:
                value = self.validator.sanitize(changes[name])
                if not value:
                    raise InputValidationError(details={name: "must not be empty"})
                setattr(user, name, value)
        if "phone" in changes:
            user.phone = self.validator.validate_phone(changes["phone"]) if changes["phone"] else None
        if "identification" in changes:
            user.identification = (
                self.validator.validate_identification(changes["identification"], country)
                if changes["identification"]
                else None
            )
        if "photo_url" in changes:
            user.photo_url = self.validator.sanitize(changes["photo_url"]) or None

        await db.flush()
        logger.info(f"Profile of {user.email} updated by {caller.email}")
        return user

    # ------------------------------------------------------------------
    # Account state
    # ------------------------------------------------------------------

    async def update_status(
        self,
        db: AsyncSession,
        caller: User,
        user_id: uuid.UUID,
        status: AccountStatus,
        reason: str | None,
        context: RequestContext,
    ) -> User:
        """Change account_status; disabled also clears is_active, active restores it."""
        user = await self._get_user(db, user_id)
        if user.id == caller.id:
            raise InputValidationError(ErrorKind.INVALID_STATUS, "You cannot change your own account status")
        await self.authz.ensure_admin_over_user(db, caller, user, context, "change account status")

        previous = user.account_status
        user.account_status = status
        if status == AccountStatus.DISABLED:
            user.is_active = False
        elif status == AccountStatus.ACTIVE:
            user.is_active = True
        await db.flush()

        await self.audit.emit(
            db,
            AuditEventType.ACCOUNT_STATUS_CHANGED,
            f"Account status changed from {previous.value} to {status.value}",
            context=context,
            user_id=user.id,
            metadata={
                "changed_by": caller.id,
                "previous_status": previous.value,
                "new_status": status.value,
                "reason": self.validator.sanitize(reason),
            },
        )
        return user

    async def unlock(self, db: AsyncSession, caller: User, user_id: uuid.UUID, context: RequestContext) -> User:
        user = await self._get_user(db, user_id)
        await self.authz.ensure_admin_over_user(db, caller, user, context, "unlock account")

        await db.refresh(user, with_for_update=True)
        user.failed_login_attempts = 0
        user.locked_until = None
        await db.flush()

        await self.audit.emit(
            db,
            AuditEventType.ACCOUNT_UNLOCKED,
            f"Account {user.email} unlocked",
            context=context,
            user_id=user.id,
            metadata={"unlocked_by": caller.id},
        )
        return user

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    async def assign_role(
        self,
        db: AsyncSession,
        caller: User,
        payload: RoleAssignRequest,
        context: RequestContext,
    ) -> RoleAssignment:
        if payload.role_name == PrimaryRole.SUPER_ADMIN:
            raise InputValidationError(ErrorKind.INVALID_ROLE, "super_admin cannot be assigned")
        if payload.role_name == PrimaryRole.CITY_ADMIN and (payload.city_id is None or payload.sport_id is None):
            raise InputValidationError(
                details={"city_id": "required for city_admin", "sport_id": "required for city_admin"}
            )

        target = await self._get_user(db, payload.user_id)
        if payload.city_id is not None and await db.get(City, payload.city_id) is None:
            raise NotFoundError(ErrorKind.CITY_NOT_FOUND)
        if payload.sport_id is not None and await db.get(Sport, payload.sport_id) is None:
            raise NotFoundError(ErrorKind.SPORT_NOT_FOUND)

        if caller.primary_role != PrimaryRole.SUPER_ADMIN:
            await self.authz.ensure_can_register(
                db, caller, payload.role_name, payload.city_id, payload.sport_id, context
            )

        duplicate = await db.execute(
            select(RoleAssignment.id).where(
                RoleAssignment.user_id == target.id,
                RoleAssignment.role_name == payload.role_name,
                RoleAssignment.city_id == payload.city_id if payload.city_id else RoleAssignment.city_id.is_(None),
                RoleAssignment.sport_id == payload.sport_id if payload.sport_id else RoleAssignment.sport_id.is_(None),
                RoleAssignment.is_active.is_(True),
            )
        )
        if duplicate.first() is not None:
            raise ConflictError(ErrorKind.ROLE_ALREADY_ASSIGNED)

        if payload.role_name == PrimaryRole.CITY_ADMIN:
            existing_admin = await db.execute(
                select(RoleAssignment.id).where(
                    RoleAssignment.city_id == payload.city_id,
                    RoleAssignment.sport_id == payload.sport_id,
                    RoleAssignment.role_name == PrimaryRole.CITY_ADMIN,
                    RoleAssignment.is_active.is_(True),
                )
            )
            if existing_admin.first() is not None:
                raise ConflictError(ErrorKind.ADMIN_ALREADY_EXISTS)

        assignment = RoleAssignment(
            user_id=target.id,
            city_id=payload.city_id,
            sport_id=payload.sport_id,
            role_name=payload.role_name,
            assigned_by_user_id=caller.id,
        )
        db.add(assignment)
        await db.flush()

        await self.audit.emit(
            db,
            AuditEventType.ROLE_ASSIGNED,
            f"Role {payload.role_name.value} assigned to {target.email}",
            context=context,
            user_id=target.id,
            metadata={
                "assignment_id": assignment.id,
                "assigned_by": caller.id,
                "city_id": payload.city_id,
                "sport_id": payload.sport_id,
            },
        )
        return assignment

    async def revoke_role(
        self,
        db: AsyncSession,
        caller: User,
        assignment_id: uuid.UUID,
        context: RequestContext,
    ) -> RoleAssignment:
        assignment = await db.get(RoleAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError(ErrorKind.ROLE_NOT_FOUND)

        if caller.primary_role != PrimaryRole.SUPER_ADMIN:
            if assignment.role_name in ADMIN_ROLES:
                await self.authz.ensure_super_admin(db, caller, context, "revoke administrator role")
            await self.authz.ensure_admin(
                db, caller, context, "revoke role",
                city_id=assignment.city_id, sport_id=assignment.sport_id,
            )
        if not assignment.is_active:
            raise ConflictError(ErrorKind.ROLE_ALREADY_INACTIVE)

        assignment.is_active = False
        await db.flush()

        await self.audit.emit(
            db,
            AuditEventType.ROLE_REVOKED,
            f"Role {assignment.role_name.value} revoked",
            context=context,
            user_id=assignment.user_id,
            metadata={"assignment_id": assignment.id, "revoked_by": caller.id},
        )
        return assignment

    async def list_roles(
        self,
        db: AsyncSession,
        caller: User,
        user_id: uuid.UUID,
        context: RequestContext,
    ) -> list[RoleAssignment]:
        """All assignments of a user, revoked ones included."""
        user = await self.get_user(db, caller, user_id, context)
        result = await db.execute(
            select(RoleAssignment)
            .where(RoleAssignment.user_id == user.id)
            .order_by(RoleAssignment.created_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # View permissions
    # ------------------------------------------------------------------

    async def set_view_permission(
        self,
        db: AsyncSession,
        caller: User,
        payload: ViewPermissionRequest,
        context: RequestContext,
    ) -> ViewPermission:
        await self.authz.ensure_super_admin(db, caller, context, "set view permission")
        if payload.user_id is not None:
            await self._get_user(db, payload.user_id)
            target = ViewPermission.user_id == payload.user_id
        else:
            target = ViewPermission.role_name == payload.role_name

        result = await db.execute(
            select(ViewPermission).where(target, ViewPermission.view_name == payload.view_name)
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            permission = ViewPermission(
                user_id=payload.user_id,
                role_name=payload.role_name,
                view_name=payload.view_name,
                is_allowed=payload.is_allowed,
                configured_by_user_id=caller.id,
            )
            db.add(permission)
        else:
            permission.is_allowed = payload.is_allowed
            permission.configured_by_user_id = caller.id
        await db.flush()

        await self.audit.emit(
            db,
            AuditEventType.VIEW_PERMISSION_SET,
            f"View permission for {payload.view_name} set to {payload.is_allowed}",
            context=context,
            user_id=payload.user_id,
            metadata={
                "permission_id": permission.id,
                "role_name": payload.role_name.value if payload.role_name else None,
                "view_name": payload.view_name,
                "is_allowed": payload.is_allowed,
                "configured_by": caller.id,
            },
        )
        return permission


