"""Support ticket model (support subsystem, consumed by ticket resolution)."""
import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class TicketStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketAction(str, enum.Enum):
    """Administrative outcome applied to the ticket's escrowed payment."""

    REFUND = "refund"
    RELEASE = "release"


class SupportTicket(Base):
    """A problem report on a job, resolvable by an administrator."""

    __tablename__ = "support_tickets"
    __table_args__ = (
        Index("ix_support_tickets_status", "status"),
        Index("ix_support_tickets_job_id", "job_id"),
    )

    job_id: Mapped[int | None] = mapped_column(ForeignKey("jobs.id"), nullable=True)
    reported_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    problem_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[TicketStatus] = mapped_column(SqlEnum(TicketStatus), nullable=False, default=TicketStatus.OPEN)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
