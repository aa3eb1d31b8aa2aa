"""
ViewPermission model — explicit allow/deny for a named UI view.

Each row targets either one user or one role name, never both. Per-user
rows override per-role rows, which override the primary-role defaults.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mowesport.database import Base, UTCDateTime, enum_values, utcnow
from mowesport.models.user import PrimaryRole


class ViewPermission(Base):
    __tablename__ = "user_view_permissions"

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (role_name IS NULL)",
            name="ck_view_permissions_single_target",
        ),
        UniqueConstraint("user_id", "view_name", name="uq_view_permissions_user_view"),
        UniqueConstraint("role_name", "view_name", name="uq_view_permissions_role_view"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    role_name: Mapped[PrimaryRole | None] = mapped_column(
        Enum(PrimaryRole, name="primary_role", values_callable=enum_values),
        nullable=True,
    )

    view_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False)

    configured_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
