"""
RoleAssignment model — a role held by a user within a (city, sport) scope.

A user's capabilities are the union of their primary role and every active
assignment. Assignments are revoked by flipping is_active, never deleted, so
the table doubles as the history of who granted what.

At most one active city_admin may exist per (city, sport); the partial unique
index below enforces it at the storage layer.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from mowesport.database import Base, UTCDateTime, enum_values, utcnow
from mowesport.models.user import PrimaryRole


class RoleAssignment(Base):
    __tablename__ = "user_roles_by_city_sport"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    # NULL city/sport means the assignment is not scoped on that axis
    city_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("cities.id"), nullable=True)
    sport_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("sports.id"), nullable=True)

    role_name: Mapped[PrimaryRole] = mapped_column(
        Enum(PrimaryRole, name="primary_role", values_callable=enum_values),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Who granted the role (NULL for bootstrap data)
    assigned_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


Index(
    "uq_active_city_admin_per_scope",
    RoleAssignment.city_id,
    RoleAssignment.sport_id,
    unique=True,
    sqlite_where=text("role_name = 'city_admin' AND is_active = 1"),
    postgresql_where=text("role_name = 'city_admin' AND is_active"),
)
