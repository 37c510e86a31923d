"""Schemas for refund requests."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.models.payment import PaymentStatus
from app.models.refund import RefundStatus, RefundType


class RefundCreate(BaseModel):
    job_id: int = Field(gt=0)
    refund_type: RefundType
    reason: str = Field(min_length=1, max_length=2000)
    requested_amount: Decimal | None = Field(default=None, description="Dollars; required for partial and quality refunds.")

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason cannot be blank")
        return value.strip()


class RefundCreateRead(BaseModel):
    refund_id: int
    status: RefundStatus
    payment_status: PaymentStatus
    amount: int
    amount_display: Decimal


class RefundItem(BaseModel):
    id: int
    job_id: int
    job_title: str
    payment_id: int
    payment_status: PaymentStatus
    refund_type: RefundType
    refund_reason: str
    status: RefundStatus
    original_amount_cents: int
    requested_amount_cents: int
    approved_amount_cents: int | None
    original_amount: Decimal
    requested_amount: Decimal
    approved_amount: Decimal | None
    approved_by: int | None
    requested_at: datetime
    approved_at: datetime | None
    processed_at: datetime | None
    completed_at: datetime | None


class RefundSummary(BaseModel):
    total: int
    pending: int
    approved: int
    completed: int
    rejected: int
    total_refunded_cents: int
    total_refunded: Decimal


class RefundListRead(BaseModel):
    refunds: list[RefundItem]
    summary: RefundSummary
