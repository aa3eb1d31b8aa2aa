"""
Service wiring.

Services hold no per-request state; one Services bundle is built at startup
and stored on app.state.services. Tests build their own bundle with a
recording mail dispatcher, a fake clock or a permissive rate limiter.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from mowesport.config import Settings, settings as default_settings
from mowesport.database import utcnow
from mowesport.rate_limit import RateLimiter
from mowesport.services.admission import AdmissionControl
from mowesport.services.audit_service import AuditLog
from mowesport.services.auth_service import AuthService
from mowesport.services.authorization_service import AuthorizationService
from mowesport.services.email_service import EmailDispatcher, EmailService, LoggingEmailDispatcher
from mowesport.services.password_service import TemporaryPasswordService
from mowesport.services.registration_service import RegistrationService
from mowesport.services.user_management_service import UserManagementService
from mowesport.validation import InputValidator


@dataclass
class Services:
    config: Settings
    audit: AuditLog
    limiter: RateLimiter
    admission: AdmissionControl
    validator: InputValidator
    authz: AuthorizationService
    emailer: EmailService
    passwords: TemporaryPasswordService
    auth: AuthService
    registration: RegistrationService
    users: UserManagementService


def build_services(
    config: Settings | None = None,
    email_dispatcher: EmailDispatcher | None = None,
    rate_limiter: RateLimiter | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    config = config or default_settings

    audit = AuditLog(config.AUDIT)
    limiter = rate_limiter or RateLimiter(config.RATE_LIMIT.as_rules())
    admission = AdmissionControl(limiter, audit)
    validator = InputValidator(
        email_policy=config.EMAIL,
        phone_policy=config.PHONE,
        identification_policy=config.IDENTIFICATION,
        suspicious_policy=config.SUSPICIOUS,
        password_policy=config.PASSWORD,
    )
    authz = AuthorizationService(audit)
    emailer = EmailService(
        email_dispatcher or LoggingEmailDispatcher(),
        audit,
        config=config.MAIL,
        app_name=config.APP_NAME,
        frontend_url=config.FRONTEND_URL,
    )
    passwords = TemporaryPasswordService(audit, authz, emailer, ttl=config.TEMPORARY_PASSWORD_TTL, clock=clock)
    auth = AuthService(audit, admission, validator, emailer, passwords, config=config, clock=clock)
    registration = RegistrationService(admission, validator, authz, passwords, audit, emailer)
    users = UserManagementService(authz, audit, validator)

    return Services(
        config=config,
        audit=audit,
        limiter=limiter,
        admission=admission,
        validator=validator,
        authz=authz,
        emailer=emailer,
        passwords=passwords,
        auth=auth,
        registration=registration,
        users=users,
    )
