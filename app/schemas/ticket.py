"""Schemas for support tickets and their resolution."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.payment import PaymentStatus
from app.models.refund import RefundStatus
from app.models.support_ticket import TicketAction, TicketStatus


class TicketCreate(BaseModel):
    job_id: int = Field(gt=0)
    problem_type: str = Field(min_length=1, max_length=64)
    description: str = Field(min_length=1, max_length=4000)
    priority: str = Field(default="normal", pattern="^(low|normal|high|urgent)$")


class TicketRead(BaseModel):
    id: int
    job_id: int | None
    reported_by: int
    problem_type: str
    description: str
    status: TicketStatus
    priority: str
    resolution: str | None
    resolved_by: int | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TicketResolve(BaseModel):
    action: TicketAction


class TicketResolutionRead(BaseModel):
    ticket: TicketRead
    payment_status: PaymentStatus
    refund_id: int | None
    refund_status: RefundStatus | None
    message: str
