"""
Registration service — creates users with a scoped role and a temporary password.

Registration flow (all-or-nothing up to the commit):
  1. Rate-limit admission ("admin_registration" for city admins)
  2. Validate email/phone/identification, scan for suspicious input,
     sanitize the free-form names
  3. Authorize the caller against the registration hierarchy
  4. Email must be unused; city and sport must exist; a city_admin
     registration must not collide with an active admin of the same scope
  5. Insert the user with a fresh temporary password (expires in 24 h)
  6. Insert the role assignment, with the caller as issuer
  7. Audit admin_registration
  8. Commit, then send the welcome email; a delivery failure is audited but
     never rolls back the account

The same skeleton serves city admins (register_admin) and the roles they
and owners may create (register_user); only the hierarchy check differs.
"""

import logging
import math
import uuid
from dataclasses import dataclass

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.exceptions import (
    ConflictError,
    ErrorKind,
    InputValidationError,
    MoweSportError,
    NotFoundError,
)
from mowesport.models.audit_event import AuditEventType
from mowesport.models.reference import City, Sport
from mowesport.models.role_assignment import RoleAssignment
from mowesport.models.user import AccountStatus, PrimaryRole, User
from mowesport.schemas.admin import RegistrationRequest
from mowesport.services.admission import AdmissionControl
from mowesport.services.audit_service import AuditLog, RequestContext
from mowesport.services.authorization_service import AuthorizationService
from mowesport.services.email_service import EmailService
from mowesport.services.password_service import TemporaryPasswordService
from mowesport.validation import InputValidator

logger = logging.getLogger(__name__)


ADMIN_SORT_COLUMNS = {
    "first_name": User.first_name,
    "last_name": User.last_name,
    "email": User.email,
    "created_at": User.created_at,
    "last_login_at": User.last_login_at,
}


@dataclass
class RegistrationOutcome:
    user: User
    assignment: RoleAssignment
    welcome_email_sent: bool


@dataclass
class CleanRegistration:
    email: str
    first_name: str
    last_name: str
    phone: str | None
    identification: str | None
    photo_url: str | None


@dataclass
class AdminPage:
    rows: list[dict]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


class RegistrationService:

    def __init__(
        self,
        admission: AdmissionControl,
        validator: InputValidator,
        authz: AuthorizationService,
        passwords: TemporaryPasswordService,
        audit: AuditLog,
        emailer: EmailService,
    ):
        self.admission = admission
        self.validator = validator
        self.authz = authz
        self.passwords = passwords
        self.audit = audit
        self.emailer = emailer

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_payload(
        self,
        db: AsyncSession,
        payload: RegistrationRequest,
        context: RequestContext,
        caller_id: uuid.UUID | None = None,
    ) -> CleanRegistration:
        """
        Validate controlled formats, reject suspicious input, sanitize names.

        Raises:
            InputValidationError: The specific format kind, suspicious_input,
                or validation_error for names that sanitize to nothing.
        """
        try:
            email = self.validator.validate_email(payload.email)
            phone = self.validator.validate_phone(payload.phone) if payload.phone else None
            identification = (
                self.validator.validate_identification(payload.identification, payload.country)
                if payload.identification
                else None
            )
        except InputValidationError as exc:
            await self.audit.emit(
                db,
                AuditEventType.DATA_VALIDATION_FAILED,
                f"Registration rejected: {exc.kind.value}",
                context=context,
                user_id=caller_id,
                metadata={"reason": exc.message},
            )
            raise

        findings = self.validator.detect_suspicious({
            "email": payload.email,
            "first_name": payload.first_name,
            "last_name": payload.last_name,
            "phone": payload.phone,
            "identification": payload.identification,
            "photo_url": payload.photo_url,
        })
        if findings:
            await self.audit.emit(
                db,
                AuditEventType.SUSPICIOUS_ACTIVITY,
                "Suspicious input in registration request",
                context=context,
                user_id=caller_id,
                metadata={"findings": [f.as_dict() for f in findings]},
            )
            if self.validator.suspicious_policy.abort_on_findings:
                raise InputValidationError(
                    ErrorKind.SUSPICIOUS_INPUT,
                    details={"fields": sorted({f.field for f in findings})},
                )

        first_name = self.validator.sanitize(payload.first_name)
        last_name = self.validator.sanitize(payload.last_name)
        empty = [name for name, value in (("first_name", first_name), ("last_name", last_name)) if not value]
        if empty:
            raise InputValidationError(details={name: "must not be empty" for name in empty})

        return CleanRegistration(
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            identification=identification,
            photo_url=self.validator.sanitize(payload.photo_url) or None,
        )

    async def _check_references(
        self,
        db: AsyncSession,
        clean: CleanRegistration,
        target_role: PrimaryRole,
        city_id: uuid.UUID,
        sport_id: uuid.UUID,
    ) -> None:
        existing = await db.execute(select(User.id).where(User.email == clean.email))
        if existing.first() is not None:
            raise ConflictError(ErrorKind.EMAIL_ALREADY_EXISTS)

        if await db.get(City, city_id) is None:
            raise NotFoundError(ErrorKind.CITY_NOT_FOUND)
        if await db.get(Sport, sport_id) is None:
            raise NotFoundError(ErrorKind.SPORT_NOT_FOUND)

        if target_role == PrimaryRole.CITY_ADMIN and await self.active_admin_exists(db, city_id, sport_id):
            raise ConflictError(ErrorKind.ADMIN_ALREADY_EXISTS)

    async def active_admin_exists(self, db: AsyncSession, city_id: uuid.UUID, sport_id: uuid.UUID) -> bool:
        result = await db.execute(
            select(RoleAssignment.id).where(
                RoleAssignment.city_id == city_id,
                RoleAssignment.sport_id == sport_id,
                RoleAssignment.role_name == PrimaryRole.CITY_ADMIN,
                RoleAssignment.is_active.is_(True),
            )
        )
        return result.first() is not None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_admin(
        self,
        db: AsyncSession,
        caller: User,
        payload: RegistrationRequest,
        context: RequestContext,
    ) -> RegistrationOutcome:
        """Register a city_admin bound to (payload.city_id, payload.sport_id)."""
        return await self._register(db, caller, payload, PrimaryRole.CITY_ADMIN, context, "admin_registration")

    async def register_user(
        self,
        db: AsyncSession,
        caller: User,
        payload: RegistrationRequest,
        role: PrimaryRole,
        context: RequestContext,
    ) -> RegistrationOutcome:
        """Register a lower-ranked role (owner, referee, player, coach) in a scope."""
        return await self._register(db, caller, payload, role, context, "general")

    async def _register(
        self,
        db: AsyncSession,
        caller: User,
        payload: RegistrationRequest,
        target_role: PrimaryRole,
        context: RequestContext,
        bucket: str,
    ) -> RegistrationOutcome:
        caller_id = caller.id
        await self.admission.admit(db, context, bucket)

        clean = await self.validate_payload(db, payload, context, caller_id)
        await self.authz.ensure_can_register(
            db, caller, target_role, payload.city_id, payload.sport_id, context
        )

        failure_metadata = {
            "email": clean.email,
            "target_role": target_role.value,
            "city_id": payload.city_id,
            "sport_id": payload.sport_id,
        }
        try:
            await self._check_references(db, clean, target_role, payload.city_id, payload.sport_id)
        except MoweSportError as exc:
            await self._audit_failure(db, exc, failure_metadata, caller_id, context)
            raise

        user = User(
            email=clean.email,
            first_name=clean.first_name,
            last_name=clean.last_name,
            phone=clean.phone,
            identification=clean.identification,
            photo_url=clean.photo_url,
            primary_role=target_role,
            is_active=payload.account_status != AccountStatus.DISABLED,
            account_status=payload.account_status,
            failed_login_attempts=0,
            two_factor_enabled=False,
        )
        temporary_password = await self.passwords.issue(user)
        db.add(user)

        # Flush to get user.id assigned (needed for the FK below)
        try:
            await db.flush()
            assignment = RoleAssignment(
                user_id=user.id,
                city_id=payload.city_id,
                sport_id=payload.sport_id,
                role_name=target_role,
                assigned_by_user_id=caller_id,
            )
            db.add(assignment)
            await db.flush()
        except IntegrityError:
            # Lost a race against a concurrent registration; the pre-checks
            # passed, so the unique key tells us which conflict it was.
            await db.rollback()
            exc = await self._classify_conflict(db, clean.email)
            await self._audit_failure(db, exc, failure_metadata, caller_id, context)
            raise exc

        await self.audit.emit(
            db,
            AuditEventType.ADMIN_REGISTRATION,
            f"Registered {target_role.value} {clean.email}",
            context=context,
            user_id=user.id,
            metadata={
                "registered_by": caller_id,
                "target_role": target_role.value,
                "city_id": payload.city_id,
                "sport_id": payload.sport_id,
                "temporary_password_expires_at": user.token_expiration_date,
            },
        )
        await db.commit()
        logger.info(f"Registered {target_role.value} {clean.email} (by {caller_id})")

        scope_label = await self._scope_label(db, payload.city_id, payload.sport_id)
        sent = await self.emailer.send_welcome(db, user, temporary_password, scope_label, context)
        return RegistrationOutcome(user=user, assignment=assignment, welcome_email_sent=sent)

    async def _classify_conflict(self, db: AsyncSession, email: str) -> ConflictError:
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.first() is not None:
            return ConflictError(ErrorKind.EMAIL_ALREADY_EXISTS)
        return ConflictError(ErrorKind.ADMIN_ALREADY_EXISTS)

    async def _audit_failure(
        self,
        db: AsyncSession,
        exc: MoweSportError,
        metadata: dict,
        caller_id: uuid.UUID,
        context: RequestContext,
    ) -> None:
        await self.audit.emit(
            db,
            AuditEventType.ADMIN_REGISTRATION_FAILED,
            f"Registration failed: {exc.kind.value}",
            context=context,
            user_id=caller_id,
            metadata={**metadata, "reason": exc.kind.value},
        )

    async def _scope_label(self, db: AsyncSession, city_id: uuid.UUID, sport_id: uuid.UUID) -> str:
        city = await db.get(City, city_id)
        sport = await db.get(Sport, sport_id)
        return f"{sport.name if sport else 'sport'} - {city.name if city else 'city'}"

    # ------------------------------------------------------------------
    # Email availability and admin directory
    # ------------------------------------------------------------------

    async def check_email(self, db: AsyncSession, email: str, context: RequestContext) -> dict:
        await self.admission.admit(db, context, "email_validation", suffix=":email_validation")
        try:
            normalized = self.validator.validate_email(email)
        except InputValidationError as exc:
            return {"email": email, "is_valid": False, "is_available": False, "message": exc.message}

        findings = self.validator.detect_suspicious({"email": normalized})
        if findings:
            await self.audit.emit(
                db,
                AuditEventType.SUSPICIOUS_ACTIVITY,
                "Suspicious input in email validation request",
                context=context,
                metadata={"email": normalized, "findings": [f.as_dict() for f in findings]},
            )
            return {"email": normalized, "is_valid": False, "is_available": False, "message": "Invalid email format"}

        existing = await db.execute(select(User.id).where(User.email == normalized))
        available = existing.first() is None
        message = "Email is available" if available else "Email is already registered"
        return {"email": normalized, "is_valid": True, "is_available": available, "message": message}

    async def list_admins(
        self,
        db: AsyncSession,
        caller: User,
        context: RequestContext,
        *,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        city_id: uuid.UUID | None = None,
        sport_id: uuid.UUID | None = None,
        status: AccountStatus | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> AdminPage:
        await self.authz.ensure_super_admin(db, caller, context, "list administrators")

        page = max(1, page)
        limit = min(max(1, limit), 100)

        stmt = (
            select(
                User,
                RoleAssignment.city_id,
                City.name.label("city_name"),
                RoleAssignment.sport_id,
                Sport.name.label("sport_name"),
            )
            .select_from(User)
            .outerjoin(
                RoleAssignment,
                and_(
                    RoleAssignment.user_id == User.id,
                    RoleAssignment.role_name == PrimaryRole.CITY_ADMIN,
                    RoleAssignment.is_active.is_(True),
                ),
            )
            .outerjoin(City, City.id == RoleAssignment.city_id)
            .outerjoin(Sport, Sport.id == RoleAssignment.sport_id)
            .where(User.primary_role == PrimaryRole.CITY_ADMIN)
        )
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                    User.email.ilike(pattern),
                )
            )
        if city_id is not None:
            stmt = stmt.where(RoleAssignment.city_id == city_id)
        if sport_id is not None:
            stmt = stmt.where(RoleAssignment.sport_id == sport_id)
        if status is not None:
            stmt = stmt.where(User.account_status == status)

        total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

        column = ADMIN_SORT_COLUMNS.get(sort_by, User.created_at)
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
        stmt = stmt.order_by(ordering, User.id).offset((page - 1) * limit).limit(limit)

        rows = []
        for user, row_city_id, city_name, row_sport_id, sport_name in (await db.execute(stmt)).all():
            rows.append({
                "id": user.id,
                "email": user.email,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "phone": user.phone,
                "account_status": user.account_status,
                "is_active": user.is_active,
                "city_id": row_city_id,
                "city_name": city_name,
                "sport_id": row_sport_id,
                "sport_name": sport_name,
                "created_at": user.created_at,
                "last_login_at": user.last_login_at,
            })
        return AdminPage(rows=rows, total=total, page=page, limit=limit)
