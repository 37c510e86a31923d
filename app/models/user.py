"""User model."""
import enum

from sqlalchemy import Boolean, Enum as SqlEnum, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class UserRole(str, enum.Enum):
    """Marketplace role carried by the auth subsystem."""

    customer = "customer"
    handyman = "handyman"
    admin = "admin"


class User(Base):
    """Represents a marketplace participant (customer, handyman or administrator)."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(SqlEnum(UserRole, name="userrole"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Stripe Connect payout destination (handymen only)
    stripe_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    stripe_onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
