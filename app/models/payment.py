"""Payment model definitions."""
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
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class IllegalTransition(ValueError):
    """Raised when code asks for a payment status edge outside the transition table."""

    def __init__(self, current: "PaymentStatus", target: "PaymentStatus") -> None:
        super().__init__(f"Illegal payment transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


class PaymentStatus(str, enum.Enum):
    """Possible statuses for an escrow payment."""

    PENDING = "pending"
    ESCROWED = "escrowed"
    RELEASED = "released"
    REFUNDING = "refunding"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    FAILED = "failed"
    DISPUTED = "disputed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PAYMENT_STATUSES

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in PAYMENT_TRANSITIONS[self]

    def ensure_transition(self, target: "PaymentStatus") -> None:
        if not self.can_transition_to(target):
            raise IllegalTransition(self, target)


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.ESCROWED, PaymentStatus.FAILED, PaymentStatus.DISPUTED}
    ),
    PaymentStatus.ESCROWED: frozenset(
        {
            PaymentStatus.RELEASED,
            PaymentStatus.REFUNDING,
            PaymentStatus.REFUNDED,
            PaymentStatus.PARTIALLY_REFUNDED,
            PaymentStatus.DISPUTED,
        }
    ),
    PaymentStatus.RELEASED: frozenset(
        {
            PaymentStatus.REFUNDING,
            PaymentStatus.REFUNDED,
            PaymentStatus.PARTIALLY_REFUNDED,
            PaymentStatus.DISPUTED,
        }
    ),
    # escrowed/released/disputed are the roll-back edges when the processor rejects a refund
    PaymentStatus.REFUNDING: frozenset(
        {
            PaymentStatus.REFUNDED,
            PaymentStatus.ESCROWED,
            PaymentStatus.RELEASED,
            PaymentStatus.DISPUTED,
        }
    ),
    PaymentStatus.DISPUTED: frozenset(
        {
            PaymentStatus.REFUNDING,
            PaymentStatus.REFUNDED,
            PaymentStatus.RELEASED,
            PaymentStatus.PARTIALLY_REFUNDED,
        }
    ),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.DISPUTED}),
    PaymentStatus.REFUNDED: frozenset({PaymentStatus.DISPUTED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.DISPUTED}),
}

TERMINAL_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.RELEASED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.FAILED,
    }
)


class Payment(Base):
    """One escrow payment per job; amounts are stored in integer cents."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("job_amount > 0", name="ck_payment_positive_job_amount"),
        CheckConstraint("total_charged = job_amount + customer_fee", name="ck_payment_total_charged"),
        CheckConstraint("handyman_payout = job_amount - handyman_fee", name="ck_payment_handyman_payout"),
        Index("ix_payments_created_at", "created_at"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_customer_id", "customer_id"),
        Index("ix_payments_handyman_id", "handyman_id"),
        Index(
            "uq_payments_active_job",
            "job_id",
            unique=True,
            sqlite_where=text("status != 'FAILED'"),
            postgresql_where=text("status != 'FAILED'"),
        ),
    )

    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id"), nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    handyman_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    job_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    handyman_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    total_charged: Mapped[int] = mapped_column(Integer, nullable=False)
    handyman_payout: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")

    status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    external_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    external_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    job = relationship("Job")
    refund = relationship("Refund", back_populates="payment", uselist=False)
