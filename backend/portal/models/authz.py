from __future__ import annotations
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime, func
from typing import Optional

Base = declarative_base()

# --- Core Models ---
class UserRole(Base):
    """Role assignment keyed by the identity provider's user id. No row means 'user'."""
    __tablename__ = 'user_roles'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    # Kept as plain string: an unknown value must reach the role store so it can fail closed.
    role: Mapped[str] = mapped_column(String(16), nullable=False, default='user')
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class RolePermission(Base):
    """One row per role. Column names are the canonical flag names."""
    __tablename__ = 'role_permissions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    role: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)

    can_create_service_ticket: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_view_own_tickets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_view_all_tickets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_edit_own_tickets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_edit_all_tickets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    can_change_to_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_to_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_to_additional_info_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_to_approved_not_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_to_approved_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_to_declined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    can_change_from_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_from_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_from_additional_info_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_from_approved_not_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_from_approved_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_change_from_declined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    can_delete_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete_additional_info_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete_approved_not_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete_approved_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete_declined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Profile(Base):
    __tablename__ = 'profiles'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(128))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    company_name: Mapped[Optional[str]] = mapped_column(String(128))
    address: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
