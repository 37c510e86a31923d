"""Escrow payment operations: create, confirm, release and the read views."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Job, JobStatus, Payment, PaymentStatus, User, UserRole
from app.services.escrow import (
    active_payment_for_job,
    guarded_transition,
    latest_payment_for_job,
    mark_payment_succeeded,
    mirror_job,
    payment_by_intent,
    reconciliation_failure,
    sync_job_mirror,
)
from app.services.fees import FeeBreakdown, calculate_fees, cents_to_dollars
from app.services.gateway import GatewayError, PaymentGateway, TransferInfo
from app.utils.audit import actor_for_user, log_audit
from app.utils.errors import bad_request, forbidden, not_found, processor_error, state_conflict
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20


@dataclass(frozen=True)
class CreatedPayment:
    payment: Payment
    fees: FeeBreakdown
    client_secret: str | None


def _fees_of(payment: Payment) -> FeeBreakdown:
    return FeeBreakdown(
        job_amount=payment.job_amount,
        customer_fee=payment.customer_fee,
        handyman_fee=payment.handyman_fee,
        total_charged=payment.total_charged,
        handyman_payout=payment.handyman_payout,
    )


def _get_job(db: Session, job_id: int) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise not_found("JOB_NOT_FOUND", "Job not found.")
    return job


def _client_secret(gateway: PaymentGateway, payment: Payment) -> str | None:
    if not payment.external_payment_intent_id:
        return None
    try:
        return gateway.retrieve_intent(payment.external_payment_intent_id).client_secret
    except GatewayError as exc:
        logger.warning(
            "Could not re-read payment intent",
            extra={"payment_id": payment.id, "payment_intent_id": payment.external_payment_intent_id},
        )
        raise processor_error("Unable to retrieve the payment intent.", {"reason": str(exc)}) from exc


def _existing_payment(gateway: PaymentGateway, payment: Payment) -> CreatedPayment:
    if payment.status != PaymentStatus.PENDING:
        raise state_conflict(
            "ALREADY_PAID",
            "A payment already exists for this job.",
            payment.status,
            payment_id=payment.id,
        )
    logger.info(
        "Reusing pending payment",
        extra={"payment_id": payment.id, "job_id": payment.job_id},
    )
    return CreatedPayment(payment=payment, fees=_fees_of(payment), client_secret=_client_secret(gateway, payment))


def create_payment(db: Session, gateway: PaymentGateway, *, job_id: int, actor: User) -> CreatedPayment:
    """Open an escrow payment for an accepted job, or return the pending one."""

    job = _get_job(db, job_id)
    if job.posted_by != actor.id:
        raise forbidden("Only the job poster can pay for this job.")
    if job.accepted_by is None:
        raise state_conflict("JOB_NOT_ACCEPTED", "Job must be accepted before payment.", job.status)
    if job.status in (JobStatus.CANCELLED, JobStatus.ARCHIVED):
        raise state_conflict("JOB_NOT_PAYABLE", "Job can no longer be paid for.", job.status)
    if job.budget_amount is None or Decimal(job.budget_amount) <= 0:
        raise bad_request("INVALID_JOB_AMOUNT", "Job has no positive budget amount.")

    existing = active_payment_for_job(db, job.id)
    if existing is not None:
        return _existing_payment(gateway, existing)

    settings = get_settings()
    fees = calculate_fees(job.budget_amount)
    attempt = db.scalar(
        select(func.count(Payment.id)).where(Payment.job_id == job.id, Payment.status == PaymentStatus.FAILED)
    ) or 0
    metadata = {
        "job_id": str(job.id),
        "customer_id": str(actor.id),
        "handyman_id": str(job.accepted_by),
        "job_amount": str(fees.job_amount),
        "customer_fee": str(fees.customer_fee),
        "handyman_fee": str(fees.handyman_fee),
    }
    try:
        intent = gateway.create_intent(
            amount=fees.total_charged,
            currency=settings.PAYMENT_CURRENCY,
            metadata=metadata,
            transfer_group=f"job_{job.id}",
            idempotency_key=f"pi_create_{job.id}_{attempt}",
        )
    except GatewayError as exc:
        logger.warning("Payment intent creation failed", extra={"job_id": job.id, "code": exc.code})
        raise processor_error("Unable to create the payment intent.", {"reason": str(exc)}) from exc

    payment = Payment(
        job_id=job.id,
        customer_id=actor.id,
        handyman_id=job.accepted_by,
        job_amount=fees.job_amount,
        customer_fee=fees.customer_fee,
        handyman_fee=fees.handyman_fee,
        total_charged=fees.total_charged,
        handyman_payout=fees.handyman_payout,
        currency=settings.PAYMENT_CURRENCY,
        status=PaymentStatus.PENDING,
        external_payment_intent_id=intent.id,
    )
    try:
        db.add(payment)
        db.flush()
        mirror_job(db, payment)
        log_audit(
            db,
            actor=actor_for_user(actor),
            action="PAYMENT_CREATED",
            entity="Payment",
            entity_id=payment.id,
            data={
                "job_id": job.id,
                "total_charged": fees.total_charged,
                "handyman_payout": fees.handyman_payout,
                "payment_intent_id": intent.id,
            },
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = active_payment_for_job(db, job.id)
        if winner is None:
            raise
        logger.info(
            "Concurrent payment creation detected; returning existing payment",
            extra={"job_id": job.id, "payment_id": winner.id},
        )
        return _existing_payment(gateway, winner)

    db.refresh(payment)
    logger.info(
        "Payment created",
        extra={"payment_id": payment.id, "job_id": job.id, "payment_intent_id": intent.id},
    )
    return CreatedPayment(payment=payment, fees=fees, client_secret=intent.client_secret)


def confirm_payment(db: Session, gateway: PaymentGateway, *, payment_intent_id: str, actor: User) -> Payment:
    """Escrow a payment after the customer completes it client-side."""

    payment = payment_by_intent(db, payment_intent_id)
    if payment is None:
        raise not_found("PAYMENT_NOT_FOUND", "Payment not found.")
    if payment.customer_id != actor.id:
        raise forbidden()
    if payment.status != PaymentStatus.PENDING:
        logger.info(
            "Payment already confirmed; returning current state",
            extra={"payment_id": payment.id, "status": payment.status.value},
        )
        return payment

    try:
        intent = gateway.retrieve_intent(payment_intent_id)
    except GatewayError as exc:
        raise processor_error("Unable to verify the payment with the processor.", {"reason": str(exc)}) from exc
    if intent.status != "succeeded":
        raise state_conflict(
            "PAYMENT_NOT_SUCCEEDED",
            "Payment has not succeeded at the processor.",
            payment.status,
            processor_status=intent.status,
        )

    mark_payment_succeeded(db, payment, source=actor_for_user(actor))
    return payment


def release_payment(
    db: Session, gateway: PaymentGateway, *, job_id: int, actor: User
) -> tuple[Payment, TransferInfo]:
    """Pay the handyman out of escrow once the job is completed."""

    job = _get_job(db, job_id)
    if job.posted_by != actor.id:
        raise forbidden("Only the job poster can release payment.")
    if job.status != JobStatus.COMPLETED:
        raise state_conflict("JOB_NOT_COMPLETED", "Job must be completed before release.", job.status)

    payment = active_payment_for_job(db, job.id)
    if payment is None:
        raise not_found("PAYMENT_NOT_FOUND", "No payment exists for this job.")
    if payment.status != PaymentStatus.ESCROWED:
        raise state_conflict("INVALID_PAYMENT_STATE", "Payment is not in escrow.", payment.status)

    handyman = db.get(User, payment.handyman_id) if payment.handyman_id else None
    if handyman is None:
        raise state_conflict("HANDYMAN_NOT_ASSIGNED", "No handyman is assigned to this job.", payment.status)
    if not handyman.stripe_account_id:
        raise state_conflict(
            "HANDYMAN_ONBOARDING_INCOMPLETE",
            "Handyman has not completed payout onboarding.",
            payment.status,
        )

    try:
        transfer = gateway.create_transfer(
            amount=payment.handyman_payout,
            currency=payment.currency,
            destination=handyman.stripe_account_id,
            transfer_group=f"job_{job.id}",
            metadata={"job_id": str(job.id), "payment_id": str(payment.id)},
            idempotency_key=f"release_{job.id}",
        )
    except GatewayError as exc:
        logger.warning(
            "Payout transfer failed",
            extra={"job_id": job.id, "payment_id": payment.id, "code": exc.code},
        )
        raise processor_error("Unable to transfer the payout.", {"reason": str(exc)}) from exc

    actor_name = actor_for_user(actor)
    try:
        changed = guarded_transition(
            db,
            payment,
            allowed_from={PaymentStatus.ESCROWED},
            target=PaymentStatus.RELEASED,
            actor=actor_name,
            values={"released_at": utcnow(), "external_transfer_id": transfer.id},
            audit_data={"transfer_id": transfer.id, "amount": transfer.amount},
        )
        if changed:
            db.commit()
    except SQLAlchemyError:
        changed = False
    if not changed:
        raise reconciliation_failure(
            db,
            actor=actor_name,
            payment=payment,
            operation="release",
            details={"transfer_id": transfer.id, "amount": transfer.amount},
        )
    return payment, transfer


# -- Read views ----------------------------------------------------------------


def _next_action(job: Job, payment: Payment | None, role: str, handyman: User | None) -> str | None:
    status = payment.status if payment is not None else None
    if role == UserRole.customer.value:
        if status in (None, PaymentStatus.FAILED) and job.accepted_by is not None:
            return "create_payment"
        if status == PaymentStatus.PENDING:
            return "complete_payment"
        if status == PaymentStatus.ESCROWED and job.status == JobStatus.COMPLETED:
            return "release_payment"
        return None
    if status == PaymentStatus.ESCROWED:
        return "waiting_for_release"
    if handyman is not None and not handyman.stripe_onboarding_complete:
        return "complete_onboarding"
    return None


def payment_amounts(payment: Payment) -> dict[str, Any]:
    return _fees_of(payment).as_dict()


def get_payment_status(db: Session, *, job_id: int, actor: User) -> dict[str, Any]:
    """Job/payment view for a participant with the advisory next action."""

    job = _get_job(db, job_id)
    if actor.id == job.posted_by:
        role = UserRole.customer.value
    elif job.accepted_by is not None and actor.id == job.accepted_by:
        role = UserRole.handyman.value
    else:
        raise forbidden("You do not have permission to view this payment status.")

    if sync_job_mirror(db, job):
        db.commit()
    payment = latest_payment_for_job(db, job.id)
    handyman = db.get(User, job.accepted_by) if job.accepted_by is not None else None
    next_action = _next_action(job, payment, role, handyman)

    payment_view = None
    if payment is not None:
        payment_view = {
            "id": payment.id,
            "status": payment.status,
            "amounts": payment_amounts(payment),
            "currency": payment.currency,
            "paid_at": payment.paid_at,
            "released_at": payment.released_at,
            "refunded_at": payment.refunded_at,
            # intent id is only shown to the paying customer
            "payment_intent_id": payment.external_payment_intent_id if role == UserRole.customer.value else None,
            "transfer_id": payment.external_transfer_id,
        }
    return {
        "job": {
            "id": job.id,
            "title": job.title,
            "status": job.status,
            "payment_status": job.payment_status,
            "budget_amount": job.budget_amount,
            "is_accepted": job.accepted_by is not None,
        },
        "payment": payment_view,
        "handyman_onboarding_complete": handyman.stripe_onboarding_complete if handyman else None,
        "user_role": role,
        "next_action": next_action,
        "can_take_action": next_action is not None and next_action != "waiting_for_release",
    }


def payment_history(db: Session, *, actor: User) -> list[dict[str, Any]]:
    """Most recent payments of the caller, newest first."""

    is_customer = actor.role != UserRole.handyman
    owner = Payment.customer_id if is_customer else Payment.handyman_id
    stmt = (
        select(Payment, Job.title)
        .join(Job, Job.id == Payment.job_id)
        .where(owner == actor.id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(HISTORY_LIMIT)
    )
    entries = []
    for payment, title in db.execute(stmt).all():
        amount = payment.total_charged if is_customer else payment.handyman_payout
        entries.append(
            {
                "id": payment.id,
                "job_id": payment.job_id,
                "job_title": title,
                "status": payment.status,
                "amount_cents": amount,
                "amount": cents_to_dollars(amount),
                "created_at": payment.created_at,
            }
        )
    return entries


def escrow_alerts(db: Session, *, actor: User) -> dict[str, Any]:
    """Summarise the customer's money currently held in escrow."""

    stmt = (
        select(Payment, Job)
        .join(Job, Job.id == Payment.job_id)
        .where(Payment.customer_id == actor.id, Payment.status == PaymentStatus.ESCROWED)
        .order_by(Job.completed_at, Payment.id)
    )
    rows = db.execute(stmt).all()
    now = utcnow()

    def _days_since(moment) -> int:
        if moment is None:
            return 0
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=now.tzinfo)
        return max((now - moment).days, 0)

    def _entry(payment: Payment, job: Job, moment) -> dict[str, Any]:
        return {
            "job_id": job.id,
            "job_title": job.title,
            "payment_id": payment.id,
            "handyman_id": payment.handyman_id,
            "handyman_payout": cents_to_dollars(payment.handyman_payout),
            "handyman_payout_cents": payment.handyman_payout,
            "since": moment,
            "days_since": _days_since(moment),
        }

    ready = [_entry(p, j, j.completed_at) for p, j in rows if j.status == JobStatus.COMPLETED]
    in_progress = [_entry(p, j, j.accepted_at) for p, j in rows if j.status == JobStatus.ACCEPTED]
    total_escrowed = sum(p.total_charged for p, _ in rows)
    total_payout = sum(p.handyman_payout for p, _ in rows)
    return {
        "summary": {
            "total_escrowed": cents_to_dollars(total_escrowed),
            "total_escrowed_cents": total_escrowed,
            "total_handyman_payout": cents_to_dollars(total_payout),
            "total_handyman_payout_cents": total_payout,
            "total_jobs": len(rows),
            "ready_to_release_count": len(ready),
            "work_in_progress_count": len(in_progress),
        },
        "ready_to_release": ready,
        "work_in_progress": in_progress,
    }


__all__ = [
    "CreatedPayment",
    "confirm_payment",
    "create_payment",
    "escrow_alerts",
    "get_payment_status",
    "payment_amounts",
    "payment_history",
    "release_payment",
]
