"""Job model (owned by the job-posting subsystem, consumed by payments)."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

UNPAID = "unpaid"


class JobStatus(str, enum.Enum):
    """Lifecycle of a posted job."""

    OPEN = "open"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class Job(Base):
    """A job posted by a customer and accepted by a handyman."""

    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_status", "status"),
        Index("ix_jobs_posted_by", "posted_by"),
        Index("ix_jobs_accepted_by", "accepted_by"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[JobStatus] = mapped_column(SqlEnum(JobStatus), nullable=False, default=JobStatus.OPEN)
    # Projection of Payment.status; the payment row is authoritative.
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default=UNPAID)
    posted_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    accepted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    budget_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
