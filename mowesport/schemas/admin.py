"""
Pydantic schemas for registration and the /admin endpoints.

The registration email is a plain string on purpose: the InputValidator
checks it against the domain policy and reports INVALID_EMAIL_FORMAT.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from mowesport.models.audit_event import AuditEventType, AuditSeverity
from mowesport.models.user import AccountStatus, PrimaryRole
from mowesport.schemas.user import RoleAssignmentResponse, UserResponse


class RegistrationRequest(BaseModel):
    """Request body for POST /admin/register (creates a city_admin)."""
    email: str = Field(min_length=3, max_length=320)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=30)
    identification: str | None = Field(None, max_length=50)
    country: str | None = Field(None, max_length=50)
    photo_url: str | None = Field(None, max_length=500)
    city_id: uuid.UUID
    sport_id: uuid.UUID
    account_status: AccountStatus = AccountStatus.ACTIVE


class UserRegistrationRequest(RegistrationRequest):
    """Request body for POST /users/register (owner, referee, player, coach)."""
    role: PrimaryRole


class RegistrationResponse(BaseModel):
    user: UserResponse
    role_assignment: RoleAssignmentResponse
    temporary_password_expires_at: datetime | None = None
    welcome_email_sent: bool


class EmailValidationResponse(BaseModel):
    email: str
    is_valid: bool
    is_available: bool
    message: str


class AdminSummary(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    account_status: AccountStatus
    is_active: bool
    city_id: uuid.UUID | None = None
    city_name: str | None = None
    sport_id: uuid.UUID | None = None
    sport_name: str | None = None
    created_at: datetime
    last_login_at: datetime | None = None


class AdminListResponse(BaseModel):
    admins: list[AdminSummary]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class AuditEventResponse(BaseModel):
    id: uuid.UUID
    event_type: AuditEventType
    description: str
    user_id: uuid.UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict = Field(validation_alias="event_metadata")
    severity: AuditSeverity
    created_at: datetime

    model_config = {"from_attributes": True}
