"""
Temporary password lifecycle.

A temporary password is an ordinary Argon2 digest plus a non-null
User.token_expiration_date. While the marker is set, a successful login
reports requires_change=True; once it has passed, the credential is refused
(temporary_password_expired) and the user has to go through recovery.

Operations:
  - issue:         new random password, digest stored, expiry = now + TTL
  - regenerate:    super admin re-issues another user's temporary password
  - force_change:  super admin makes the next login demand a rotation
  - mark_used:     owner chose a new password; clears the marker
  - status:        is_temporary / requires_change / expires_at / remaining
  - sweep_expired: periodic job clearing markers that are already past
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.config import settings
from mowesport.database import utcnow
from mowesport.exceptions import ErrorKind, NotFoundError
from mowesport.models.audit_event import AuditEventType
from mowesport.models.user import User
from mowesport.security import generate_temporary_password, hash_password
from mowesport.services.audit_service import AuditLog, RequestContext
from mowesport.services.authorization_service import AuthorizationService
from mowesport.services.email_service import EmailService

logger = logging.getLogger(__name__)


@dataclass
class PasswordStatus:
    is_temporary: bool
    requires_change: bool
    expires_at: datetime | None
    is_expired: bool
    time_remaining_seconds: int | None


class TemporaryPasswordService:

    def __init__(
        self,
        audit: AuditLog,
        authz: AuthorizationService,
        emailer: EmailService,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.audit = audit
        self.authz = authz
        self.emailer = emailer
        self.ttl = ttl or settings.TEMPORARY_PASSWORD_TTL
        self.clock = clock

    async def issue(self, user: User) -> str:
        """Give `user` a fresh temporary password and return it in clear."""
        password = generate_temporary_password()
        user.password_hash = await asyncio.to_thread(hash_password, password)
        user.token_expiration_date = self.clock() + self.ttl
        return password

    def mark_used(self, user: User) -> None:
        user.token_expiration_date = None

    def status(self, user: User) -> PasswordStatus:
        expires_at = user.token_expiration_date
        if expires_at is None:
            return PasswordStatus(False, False, None, False, None)
        remaining = (expires_at - self.clock()).total_seconds()
        expired = remaining <= 0
        return PasswordStatus(
            is_temporary=not expired,
            requires_change=True,
            expires_at=expires_at,
            is_expired=expired,
            time_remaining_seconds=max(0, int(remaining)),
        )

    async def _get_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(ErrorKind.USER_NOT_FOUND)
        return user

    async def regenerate(
        self,
        db: AsyncSession,
        caller: User,
        user_id: uuid.UUID,
        context: RequestContext,
    ) -> User:
        """
        Replace another user's password with a new temporary one and mail it.

        The new credential is committed before the mail goes out.
        """
        await self.authz.ensure_super_admin(db, caller, context, "regenerate temporary password")
        user = await self._get_user(db, user_id)

        password = await self.issue(user)
        await self.audit.emit(
            db,
            AuditEventType.TEMPORARY_PASSWORD_CREATED,
            f"Temporary password regenerated for {user.email}",
            context=context,
            user_id=user.id,
            metadata={"issued_by": caller.id, "expires_at": user.token_expiration_date},
        )
        await db.commit()

        await self.emailer.send_welcome(db, user, password, "credentials reset", context)
        return user

    async def force_change(
        self,
        db: AsyncSession,
        caller: User,
        user_id: uuid.UUID,
        context: RequestContext,
    ) -> User:
        await self.authz.ensure_super_admin(db, caller, context, "force password change")
        user = await self._get_user(db, user_id)

        user.token_expiration_date = self.clock() + self.ttl
        await self.audit.emit(
            db,
            AuditEventType.PASSWORD_CHANGE_FORCED,
            f"Password change forced for {user.email}",
            context=context,
            user_id=user.id,
            metadata={"forced_by": caller.id},
        )
        return user

    async def sweep_expired(self, db: AsyncSession) -> int:
        """Clear expiry markers already in the past; digests are left alone."""
        result = await db.execute(
            update(User)
            .where(
                User.token_expiration_date.is_not(None),
                User.token_expiration_date < self.clock(),
            )
            .values(token_expiration_date=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Cleared {result.rowcount} expired temporary password markers")
        return result.rowcount
