"""Schemas for escrow payment endpoints."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models.job import JobStatus
from app.models.payment import PaymentStatus


class FeeDisplay(BaseModel):
    job_amount: Decimal
    customer_fee: Decimal
    handyman_fee: Decimal
    total_charged: Decimal
    handyman_payout: Decimal


class FeeBreakdownRead(BaseModel):
    """Amounts in integer cents; ``display`` carries dollar values derived from them."""

    job_amount: int
    customer_fee: int
    handyman_fee: int
    total_charged: int
    handyman_payout: int
    display: FeeDisplay


class PaymentCreate(BaseModel):
    job_id: int = Field(gt=0)


class PaymentCreateRead(BaseModel):
    payment_id: int
    status: PaymentStatus
    fees: FeeBreakdownRead
    client_secret: str | None


class PaymentConfirm(BaseModel):
    payment_intent_id: str = Field(min_length=1)


class PaymentConfirmRead(BaseModel):
    payment_id: int
    job_id: int
    status: PaymentStatus
    amount: int
    amount_display: Decimal


class PaymentRelease(BaseModel):
    job_id: int = Field(gt=0)


class PaymentReleaseRead(BaseModel):
    payment_id: int
    status: PaymentStatus
    transfer_id: str
    amount: int
    amount_display: Decimal


class PaymentRead(BaseModel):
    id: int
    job_id: int
    customer_id: int
    handyman_id: int
    job_amount: int
    customer_fee: int
    handyman_fee: int
    total_charged: int
    handyman_payout: int
    currency: str
    status: PaymentStatus
    external_payment_intent_id: str | None
    external_transfer_id: str | None
    paid_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JobSummary(BaseModel):
    id: int
    title: str
    status: JobStatus
    payment_status: str
    budget_amount: Decimal | None
    is_accepted: bool


class PaymentSummary(BaseModel):
    id: int
    status: PaymentStatus
    amounts: FeeBreakdownRead
    currency: str
    paid_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    payment_intent_id: str | None
    transfer_id: str | None


class PaymentStatusRead(BaseModel):
    job: JobSummary
    payment: PaymentSummary | None
    handyman_onboarding_complete: bool | None
    user_role: str
    next_action: str | None
    can_take_action: bool


class PaymentHistoryItem(BaseModel):
    id: int
    job_id: int
    job_title: str | None
    status: PaymentStatus
    amount_cents: int
    amount: Decimal
    created_at: datetime


class PaymentHistoryRead(BaseModel):
    payments: list[PaymentHistoryItem]


class EscrowAlertItem(BaseModel):
    job_id: int
    job_title: str
    payment_id: int
    handyman_id: int
    handyman_payout: Decimal
    handyman_payout_cents: int
    since: datetime | None
    days_since: int


class EscrowAlertSummary(BaseModel):
    total_escrowed: Decimal
    total_escrowed_cents: int
    total_handyman_payout: Decimal
    total_handyman_payout_cents: int
    total_jobs: int
    ready_to_release_count: int
    work_in_progress_count: int


class EscrowAlertsRead(BaseModel):
    summary: EscrowAlertSummary
    ready_to_release: list[EscrowAlertItem]
    work_in_progress: list[EscrowAlertItem]
