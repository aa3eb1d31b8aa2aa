"""
Outgoing mail: welcome credentials and password recovery.

Delivery itself is an external collaborator behind the EmailDispatcher
protocol. EmailService composes the messages, retries a failed dispatch
with exponential backoff (backoff_base * 2**attempt seconds) and reports
the outcome to the audit log.

Messages are always sent after the registering transaction has committed,
so a delivery failure never rolls back the new account.
"""

import asyncio
import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.config import MailSettings, settings
from mowesport.models.audit_event import AuditEventType, AuditSeverity
from mowesport.models.user import User
from mowesport.services.audit_service import AuditLog, RequestContext

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised by a dispatcher when a message could not be handed off."""


class EmailDispatcher(Protocol):
    async def send(self, to: str, subject: str, body: str, is_html: bool = False) -> None:
        ...


class LoggingEmailDispatcher:
    """Development dispatcher: logs the envelope instead of sending."""

    async def send(self, to: str, subject: str, body: str, is_html: bool = False) -> None:
        # Bodies carry credentials, so only the envelope is logged
        logger.info(f"[mail] to={to} subject={subject!r} html={is_html}")


class EmailService:

    def __init__(
        self,
        dispatcher: EmailDispatcher,
        audit: AuditLog,
        config: MailSettings | None = None,
        app_name: str | None = None,
        frontend_url: str | None = None,
    ):
        self.dispatcher = dispatcher
        self.audit = audit
        self.config = config or settings.MAIL
        self.app_name = app_name or settings.APP_NAME
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")

    async def _deliver(self, to: str, subject: str, body: str) -> bool:
        attempts = max(1, self.config.max_attempts)
        for attempt in range(attempts):
            try:
                await self.dispatcher.send(to, subject, body, False)
                return True
            except EmailDeliveryError as exc:
                logger.warning(f"Email to {to} failed (attempt {attempt + 1}/{attempts}): {exc}")
                if attempt + 1 < attempts:
                    await asyncio.sleep(self.config.backoff_base * 2 ** attempt)
        logger.error(f"Giving up on email to {to} after {attempts} attempts")
        return False

    async def send_welcome(
        self,
        db: AsyncSession,
        user: User,
        temporary_password: str,
        scope_label: str,
        context: RequestContext,
    ) -> bool:
        """Send the temporary credentials to a newly registered user."""
        subject = f"Welcome to {self.app_name} - Your account credentials"
        expires = user.token_expiration_date.isoformat() if user.token_expiration_date else "soon"
        body = (
            f"Hello {user.full_name},\n\n"
            f"An account has been created for you as {user.primary_role.value} ({scope_label}).\n\n"
            f"Email: {user.email}\n"
            f"Temporary password: {temporary_password}\n"
            f"Expires at: {expires}\n\n"
            f"Sign in at {self.frontend_url}/login and choose a new password.\n"
            f"For your security, never share these credentials.\n"
        )
        delivered = await self._deliver(user.email, subject, body)

        if delivered:
            await self.audit.emit(
                db,
                AuditEventType.WELCOME_EMAIL_SENT,
                f"Welcome email sent to {user.email}",
                context=context,
                user_id=user.id,
                metadata={"delivered": True},
            )
        else:
            await self.audit.emit(
                db,
                AuditEventType.WELCOME_EMAIL_SENT,
                f"Welcome email to {user.email} could not be delivered",
                context=context,
                user_id=user.id,
                metadata={"delivered": False, "attempts": self.config.max_attempts},
                severity=AuditSeverity.HIGH,
            )
        return delivered

    async def send_password_recovery(self, user: User, token: str, ttl_minutes: int) -> bool:
        subject = f"Password recovery - {self.app_name}"
        body = (
            f"Hello {user.full_name},\n\n"
            f"We received a request to reset your password.\n\n"
            f"Recovery code: {token}\n"
            f"Reset link: {self.frontend_url}/reset-password?token={token}\n\n"
            f"The code expires in {ttl_minutes} minutes and can be used once.\n"
            f"If you did not request this, you can ignore this message.\n"
        )
        return await self._deliver(user.email, subject, body)
