"""
Authorization service — capability resolution and the registration hierarchy.

Capability resolution for a user and an optional (city, sport) scope:
  1. super_admin is globally authoritative.
  2. Otherwise the user's active role assignments are consulted; an
     assignment matches when its city and sport equal the requested ones
     (a NULL on either side leaves that axis unconstrained).
  3. For named views, per-user ViewPermissions override per-role ones,
     which override the primary-role defaults.

Registration hierarchy (strict, non-transitive):
    super_admin -> city_admin
    city_admin  -> owner, referee   (within their scope)
    owner       -> player, coach    (within their scope)

Every refusal is audited before the error is raised.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.exceptions import AuthorizationError, ErrorKind
from mowesport.models.audit_event import AuditEventType
from mowesport.models.role_assignment import RoleAssignment
from mowesport.models.user import PrimaryRole, User
from mowesport.models.view_permission import ViewPermission
from mowesport.services.audit_service import AuditLog, RequestContext

logger = logging.getLogger(__name__)


REGISTRATION_HIERARCHY: dict[PrimaryRole, frozenset[PrimaryRole]] = {
    PrimaryRole.SUPER_ADMIN: frozenset({PrimaryRole.CITY_ADMIN}),
    PrimaryRole.CITY_ADMIN: frozenset({PrimaryRole.OWNER, PrimaryRole.REFEREE}),
    PrimaryRole.OWNER: frozenset({PrimaryRole.PLAYER, PrimaryRole.COACH}),
}

ADMIN_ROLES = frozenset({PrimaryRole.SUPER_ADMIN, PrimaryRole.CITY_ADMIN})

# Views each primary role sees when no explicit permission exists
DEFAULT_VIEW_ACCESS: dict[PrimaryRole, frozenset[str]] = {
    PrimaryRole.SUPER_ADMIN: frozenset({"*"}),
    PrimaryRole.CITY_ADMIN: frozenset({"*"}),
    PrimaryRole.TOURNAMENT_ADMIN: frozenset({"dashboard", "tournaments", "matches", "statistics"}),
    PrimaryRole.OWNER: frozenset({"dashboard", "teams", "players", "statistics"}),
    PrimaryRole.COACH: frozenset({"dashboard", "teams", "players", "statistics"}),
    PrimaryRole.REFEREE: frozenset({"dashboard", "matches"}),
    PrimaryRole.PLAYER: frozenset({"dashboard", "statistics"}),
    PrimaryRole.CLIENT: frozenset({"dashboard"}),
}


def may_register(creator: PrimaryRole, target: PrimaryRole) -> bool:
    return target in REGISTRATION_HIERARCHY.get(creator, frozenset())


def _axis_matches(assigned: uuid.UUID | None, requested: uuid.UUID | None) -> bool:
    return assigned is None or requested is None or assigned == requested


class AuthorizationService:

    def __init__(self, audit: AuditLog):
        self.audit = audit

    async def active_assignments(self, db: AsyncSession, user_id: uuid.UUID) -> list[RoleAssignment]:
        result = await db.execute(
            select(RoleAssignment)
            .where(RoleAssignment.user_id == user_id, RoleAssignment.is_active.is_(True))
            .order_by(RoleAssignment.created_at)
        )
        return list(result.scalars().all())

    async def has_role(
        self,
        db: AsyncSession,
        user: User,
        roles: set[PrimaryRole] | frozenset[PrimaryRole],
        city_id: uuid.UUID | None = None,
        sport_id: uuid.UUID | None = None,
    ) -> bool:
        """Does the user hold any of `roles` for the given scope?"""
        if user.primary_role == PrimaryRole.SUPER_ADMIN:
            return True
        if user.primary_role in roles and city_id is None and sport_id is None:
            return True
        for assignment in await self.active_assignments(db, user.id):
            if (
                assignment.role_name in roles
                and _axis_matches(assignment.city_id, city_id)
                and _axis_matches(assignment.sport_id, sport_id)
            ):
                return True
        return False

    async def _deny(
        self,
        db: AsyncSession,
        caller: User,
        context: RequestContext,
        event_type: AuditEventType,
        kind: ErrorKind,
        description: str,
        metadata: dict,
    ):
        logger.warning(f"Access denied for {caller.email}: {description}")
        await self.audit.emit(
            db,
            event_type,
            description,
            context=context,
            user_id=caller.id,
            metadata={"caller_role": caller.primary_role.value, **metadata},
        )
        raise AuthorizationError(kind)

    async def ensure_can_register(
        self,
        db: AsyncSession,
        caller: User,
        target_role: PrimaryRole,
        city_id: uuid.UUID | None,
        sport_id: uuid.UUID | None,
        context: RequestContext,
    ) -> None:
        """
        Enforce the registration hierarchy for `caller` creating `target_role`.

        Non-super-admin creators must additionally hold their own role,
        actively assigned, in exactly the requested scope.

        Raises:
            AuthorizationError: insufficient_permissions (audited as
                unauthorized_access, severity high).
        """
        metadata = {
            "target_role": target_role.value,
            "city_id": city_id,
            "sport_id": sport_id,
        }
        if not may_register(caller.primary_role, target_role):
            await self._deny(
                db, caller, context,
                AuditEventType.UNAUTHORIZED_ACCESS,
                ErrorKind.INSUFFICIENT_PERMISSIONS,
                f"{caller.primary_role.value} attempted to register {target_role.value}",
                metadata,
            )

        if caller.primary_role == PrimaryRole.SUPER_ADMIN:
            return

        if city_id is None or sport_id is None or not await self._holds_exact_scope(
            db, caller, caller.primary_role, city_id, sport_id
        ):
            await self._deny(
                db, caller, context,
                AuditEventType.UNAUTHORIZED_ACCESS,
                ErrorKind.INSUFFICIENT_PERMISSIONS,
                f"{caller.primary_role.value} attempted to register {target_role.value} outside their scope",
                metadata,
            )

    async def _holds_exact_scope(
        self,
        db: AsyncSession,
        user: User,
        role: PrimaryRole,
        city_id: uuid.UUID,
        sport_id: uuid.UUID,
    ) -> bool:
        result = await db.execute(
            select(RoleAssignment.id).where(
                RoleAssignment.user_id == user.id,
                RoleAssignment.role_name == role,
                RoleAssignment.city_id == city_id,
                RoleAssignment.sport_id == sport_id,
                RoleAssignment.is_active.is_(True),
            )
        )
        return result.first() is not None

    async def ensure_super_admin(self, db: AsyncSession, caller: User, context: RequestContext, action: str) -> None:
        if caller.primary_role != PrimaryRole.SUPER_ADMIN:
            await self._deny(
                db, caller, context,
                AuditEventType.PERMISSION_DENIED,
                ErrorKind.PERMISSION_DENIED,
                f"Super admin required for {action}",
                {"action": action},
            )

    async def ensure_admin(
        self,
        db: AsyncSession,
        caller: User,
        context: RequestContext,
        action: str,
        city_id: uuid.UUID | None = None,
        sport_id: uuid.UUID | None = None,
    ) -> None:
        """Admin here means super_admin, or city_admin over the given scope."""
        if not await self.has_role(db, caller, ADMIN_ROLES, city_id, sport_id):
            await self._deny(
                db, caller, context,
                AuditEventType.PERMISSION_DENIED,
                ErrorKind.PERMISSION_DENIED,
                f"Admin access required for {action}",
                {"action": action, "city_id": city_id, "sport_id": sport_id},
            )

    async def ensure_admin_over_user(
        self,
        db: AsyncSession,
        caller: User,
        target: User,
        context: RequestContext,
        action: str,
    ) -> None:
        """
        Caller must be super_admin, or a city_admin sharing a scope with the
        target. Nobody may act on a user of equal or higher rank this way.
        """
        if caller.primary_role == PrimaryRole.SUPER_ADMIN and target.primary_role != PrimaryRole.SUPER_ADMIN:
            return
        if caller.primary_role == PrimaryRole.CITY_ADMIN and target.primary_role not in ADMIN_ROLES:
            caller_scopes = {
                (a.city_id, a.sport_id)
                for a in await self.active_assignments(db, caller.id)
                if a.role_name == PrimaryRole.CITY_ADMIN
            }
            target_scopes = {(a.city_id, a.sport_id) for a in await self.active_assignments(db, target.id)}
            if caller_scopes & target_scopes:
                return
        await self._deny(
            db, caller, context,
            AuditEventType.PERMISSION_DENIED,
            ErrorKind.PERMISSION_DENIED,
            f"Not allowed to {action} for user {target.id}",
            {"action": action, "target_user_id": target.id},
        )

    async def can_view(self, db: AsyncSession, user: User, view_name: str) -> bool:
        result = await db.execute(
            select(ViewPermission).where(
                ViewPermission.user_id == user.id,
                ViewPermission.view_name == view_name,
            )
        )
        own = result.scalar_one_or_none()
        if own is not None:
            return own.is_allowed

        roles = {user.primary_role} | {a.role_name for a in await self.active_assignments(db, user.id)}
        result = await db.execute(
            select(ViewPermission).where(
                ViewPermission.role_name.in_(roles),
                ViewPermission.view_name == view_name,
            )
        )
        by_role = {p.role_name: p.is_allowed for p in result.scalars().all()}
        if user.primary_role in by_role:
            return by_role[user.primary_role]
        if by_role:
            return any(by_role.values())

        defaults = DEFAULT_VIEW_ACCESS.get(user.primary_role, frozenset())
        return "*" in defaults or view_name in defaults
