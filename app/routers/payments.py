"""Escrow payment endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.api_key import ApiScope
from app.models.refund import RefundStatus
from app.models.user import User
from app.schemas.payment import (
    EscrowAlertsRead,
    PaymentConfirm,
    PaymentConfirmRead,
    PaymentCreate,
    PaymentCreateRead,
    PaymentHistoryRead,
    PaymentRelease,
    PaymentReleaseRead,
    PaymentStatusRead,
)
from app.schemas.refund import RefundCreate, RefundCreateRead, RefundListRead
from app.security import get_current_user, require_scope
from app.services import payments as payments_service
from app.services import refunds as refunds_service
from app.services.fees import cents_to_dollars
from app.services.gateway import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/payments", tags=["payments"])

_customer = [Depends(require_scope({ApiScope.customer}))]
_participant = [Depends(require_scope({ApiScope.customer, ApiScope.handyman}))]


@router.post("/create", response_model=PaymentCreateRead, status_code=status.HTTP_200_OK, dependencies=_customer)
def create_payment(
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentCreateRead:
    """Open (or reuse) the escrow payment for an accepted job."""

    created = payments_service.create_payment(db, gateway, job_id=payload.job_id, actor=user)
    return PaymentCreateRead(
        payment_id=created.payment.id,
        status=created.payment.status,
        fees=created.fees.as_dict(),
        client_secret=created.client_secret,
    )


@router.post("/confirm", response_model=PaymentConfirmRead, dependencies=_customer)
def confirm_payment(
    payload: PaymentConfirm,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentConfirmRead:
    payment = payments_service.confirm_payment(
        db, gateway, payment_intent_id=payload.payment_intent_id, actor=user
    )
    return PaymentConfirmRead(
        payment_id=payment.id,
        job_id=payment.job_id,
        status=payment.status,
        amount=payment.total_charged,
        amount_display=cents_to_dollars(payment.total_charged),
    )


@router.post("/release", response_model=PaymentReleaseRead, dependencies=_customer)
def release_payment(
    payload: PaymentRelease,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentReleaseRead:
    """Release the escrowed payout to the handyman."""

    payment, transfer = payments_service.release_payment(db, gateway, job_id=payload.job_id, actor=user)
    return PaymentReleaseRead(
        payment_id=payment.id,
        status=payment.status,
        transfer_id=transfer.id,
        amount=payment.handyman_payout,
        amount_display=cents_to_dollars(payment.handyman_payout),
    )


@router.post("/refund", response_model=RefundCreateRead, dependencies=_customer)
def request_refund(
    payload: RefundCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> RefundCreateRead:
    refund, payment = refunds_service.request_refund(
        db,
        gateway,
        job_id=payload.job_id,
        actor=user,
        refund_type=payload.refund_type,
        reason=payload.reason,
        requested_amount=payload.requested_amount,
    )
    return RefundCreateRead(
        refund_id=refund.id,
        status=refund.status,
        payment_status=payment.status,
        amount=refund.requested_amount,
        amount_display=cents_to_dollars(refund.requested_amount),
    )


@router.get("/status", response_model=PaymentStatusRead, dependencies=_participant)
def payment_status(
    job_id: int = Query(gt=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return payments_service.get_payment_status(db, job_id=job_id, actor=user)


@router.get("/history", response_model=PaymentHistoryRead, dependencies=_participant)
def payment_history(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"payments": payments_service.payment_history(db, actor=user)}


@router.get("/refunds", response_model=RefundListRead, dependencies=_customer)
def list_refunds(
    job_id: int | None = Query(default=None, gt=0),
    refund_status: RefundStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return refunds_service.list_refunds(db, actor=user, job_id=job_id, status=refund_status)


@router.get("/escrow-alerts", response_model=EscrowAlertsRead, dependencies=_customer)
def escrow_alerts(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return payments_service.escrow_alerts(db, actor=user)
