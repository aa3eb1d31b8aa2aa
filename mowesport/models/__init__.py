"""
SQLAlchemy ORM models package.

All models are imported here so that Base.metadata knows every table
before create_all() runs, and other modules can import from
mowesport.models directly.
"""

from mowesport.models.user import User, PrimaryRole, AccountStatus  # noqa: F401
from mowesport.models.reference import City, Sport  # noqa: F401
from mowesport.models.role_assignment import RoleAssignment  # noqa: F401
from mowesport.models.view_permission import ViewPermission  # noqa: F401
from mowesport.models.audit_event import AuditEvent, AuditEventType, AuditSeverity  # noqa: F401
