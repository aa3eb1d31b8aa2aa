"""
Pydantic schemas for user profiles, role assignments and view permissions.

password_hash, two_factor_secret and recovery_token_hash are NEVER part of
any response schema.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from mowesport.models.user import AccountStatus, PrimaryRole


class UserResponse(BaseModel):
    """Public representation of a User."""
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    identification: str | None = None
    photo_url: str | None = None
    primary_role: PrimaryRole
    is_active: bool
    account_status: AccountStatus
    two_factor_enabled: bool
    failed_login_attempts: int
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RoleAssignmentResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    city_id: uuid.UUID | None = None
    sport_id: uuid.UUID | None = None
    role_name: PrimaryRole
    is_active: bool
    assigned_by_user_id: uuid.UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ProfileResponse(BaseModel):
    user: UserResponse
    roles: list[RoleAssignmentResponse]
    requires_password_change: bool


class UserUpdateRequest(BaseModel):
    """Request body for PUT /users/{user_id}. Email and role are not editable here."""
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=30)
    identification: str | None = Field(None, max_length=50)
    country: str | None = Field(None, max_length=50)
    photo_url: str | None = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    account_status: AccountStatus
    reason: str | None = Field(None, max_length=500)


class RoleAssignRequest(BaseModel):
    user_id: uuid.UUID
    role_name: PrimaryRole
    city_id: uuid.UUID | None = None
    sport_id: uuid.UUID | None = None


class ViewPermissionRequest(BaseModel):
    """Exactly one of user_id / role_name targets the permission."""
    user_id: uuid.UUID | None = None
    role_name: PrimaryRole | None = None
    view_name: str = Field(min_length=1, max_length=100)
    is_allowed: bool

    @model_validator(mode="after")
    def single_target(self):
        if (self.user_id is None) == (self.role_name is None):
            raise ValueError("Exactly one of user_id or role_name must be provided")
        return self


class ViewPermissionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    role_name: PrimaryRole | None = None
    view_name: str
    is_allowed: bool
    configured_by_user_id: uuid.UUID | None = None
    updated_at: datetime

    model_config = {"from_attributes": True}


class ViewAccessResponse(BaseModel):
    view_name: str
    is_allowed: bool


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool
