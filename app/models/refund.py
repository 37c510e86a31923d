"""Refund model definitions."""
import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class RefundType(str, enum.Enum):
    """Why the customer asks for money back."""

    CANCELLATION = "cancellation"
    NO_SHOW = "no_show"
    PARTIAL = "partial"
    QUALITY = "quality"

    @property
    def auto_approved(self) -> bool:
        return self in (RefundType.CANCELLATION, RefundType.NO_SHOW)


class RefundStatus(str, enum.Enum):
    """Status of a refund request."""

    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def is_final(self) -> bool:
        return self in (RefundStatus.COMPLETED, RefundStatus.REJECTED)


class Refund(Base):
    """A refund request attached to exactly one payment."""

    __tablename__ = "refunds"
    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_refunds_payment_id"),
        CheckConstraint("requested_amount > 0", name="ck_refund_positive_requested_amount"),
        CheckConstraint("requested_amount <= original_amount", name="ck_refund_requested_within_original"),
        Index("ix_refunds_requested_by", "requested_by"),
        Index("ix_refunds_status", "status"),
    )

    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False)
    requested_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    refund_type: Mapped[RefundType] = mapped_column(SqlEnum(RefundType), nullable=False)
    refund_reason: Mapped[str] = mapped_column(Text, nullable=False)

    # Amounts (in cents)
    original_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[RefundStatus] = mapped_column(
        SqlEnum(RefundStatus), nullable=False, default=RefundStatus.PENDING
    )
    external_refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payment = relationship("Payment", back_populates="refund")
