"""Refund requests and administrative resolution of disputed payments.

Cancellation and no-show refunds are paid back immediately. Partial and
quality refunds are held for review: the payment moves to ``disputed`` and a
support ticket is opened, which an administrator later resolves with either a
refund or a release to the handyman.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import (
    Job,
    JobStatus,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    RefundType,
    SupportTicket,
    TicketAction,
    TicketStatus,
    User,
)
from app.services.escrow import active_payment_for_job, guarded_transition, reconciliation_failure
from app.services.fees import cents_to_dollars, to_cents
from app.services.gateway import GatewayError, PaymentGateway
from app.services.support import open_ticket
from app.utils.audit import actor_for_user, log_audit
from app.utils.errors import bad_request, forbidden, not_found, processor_error, state_conflict
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

REFUNDABLE_FROM = frozenset({PaymentStatus.ESCROWED, PaymentStatus.RELEASED})
RESOLVABLE_FROM = frozenset({PaymentStatus.ESCROWED, PaymentStatus.DISPUTED})
CANCELLABLE_JOB_STATUSES = frozenset({JobStatus.OPEN, JobStatus.ACCEPTED})


def _existing_refund(db: Session, payment_id: int) -> Refund | None:
    return db.scalars(select(Refund).where(Refund.payment_id == payment_id)).one_or_none()


def _refund_amount(
    payment: Payment, job: Job, refund_type: RefundType, requested_amount: Decimal | None
) -> int:
    if refund_type == RefundType.CANCELLATION:
        if job.status not in CANCELLABLE_JOB_STATUSES:
            raise state_conflict(
                "JOB_NOT_CANCELLABLE",
                "Only open or accepted jobs can be cancelled for a refund.",
                job.status,
            )
        return payment.total_charged
    if refund_type == RefundType.NO_SHOW:
        return payment.total_charged

    if requested_amount is None or Decimal(requested_amount) <= 0:
        raise bad_request("INVALID_REFUND_AMOUNT", "A positive refund amount is required.")
    amount = to_cents(requested_amount)
    if amount <= 0:
        raise bad_request("INVALID_REFUND_AMOUNT", "A positive refund amount is required.")
    if amount > payment.total_charged:
        raise bad_request(
            "REFUND_AMOUNT_EXCEEDS_TOTAL",
            "Refund amount cannot exceed the amount charged.",
            {"requested_amount": amount, "total_charged": payment.total_charged},
        )
    return amount


def request_refund(
    db: Session,
    gateway: PaymentGateway,
    *,
    job_id: int,
    actor: User,
    refund_type: RefundType,
    reason: str,
    requested_amount: Decimal | None = None,
) -> tuple[Refund, Payment]:
    """Ask for money back on an escrowed or released payment."""

    job = db.get(Job, job_id)
    if job is None:
        raise not_found("JOB_NOT_FOUND", "Job not found.")
    if job.posted_by != actor.id:
        raise forbidden("Only the job poster can request a refund.")

    payment = active_payment_for_job(db, job.id)
    if payment is None:
        raise not_found("PAYMENT_NOT_FOUND", "No payment exists for this job.")
    if payment.status not in REFUNDABLE_FROM:
        raise state_conflict("INVALID_PAYMENT_STATE", "Payment cannot be refunded in its current state.", payment.status)
    existing = _existing_refund(db, payment.id)
    if existing is not None:
        raise state_conflict(
            "REFUND_ALREADY_EXISTS",
            "A refund was already requested for this payment.",
            payment.status,
            refund_id=existing.id,
            refund_status=existing.status.value,
        )

    amount = _refund_amount(payment, job, refund_type, requested_amount)
    if refund_type.auto_approved:
        return _process_auto_refund(db, gateway, payment, actor, refund_type, reason, amount), payment
    return _open_refund_review(db, payment, actor, refund_type, reason, amount), payment


def _process_auto_refund(
    db: Session,
    gateway: PaymentGateway,
    payment: Payment,
    actor: User,
    refund_type: RefundType,
    reason: str,
    amount: int,
) -> Refund:
    actor_name = actor_for_user(actor)
    previous = payment.status
    claimed = guarded_transition(
        db,
        payment,
        allowed_from={previous},
        target=PaymentStatus.REFUNDING,
        actor=actor_name,
        audit_data={"refund_type": refund_type.value, "amount": amount},
    )
    if not claimed:
        db.rollback()
        raise state_conflict("INVALID_PAYMENT_STATE", "Payment changed while requesting a refund.", payment.status)
    db.commit()

    try:
        processed = gateway.create_refund(
            payment_intent_id=payment.external_payment_intent_id or "",
            amount=amount,
            metadata={"job_id": str(payment.job_id), "payment_id": str(payment.id), "refund_type": refund_type.value},
            idempotency_key=f"refund_{payment.id}_{amount}",
        )
    except GatewayError as exc:
        logger.warning(
            "Processor refund failed; restoring payment status",
            extra={"payment_id": payment.id, "job_id": payment.job_id, "code": exc.code},
        )
        guarded_transition(
            db,
            payment,
            allowed_from={PaymentStatus.REFUNDING},
            target=previous,
            actor=actor_name,
            audit_data={"reason": "processor_refund_failed"},
        )
        db.commit()
        raise processor_error("Unable to process the refund.", {"reason": str(exc)}) from exc

    now = utcnow()
    refund = Refund(
        payment_id=payment.id,
        requested_by=actor.id,
        approved_by=None,
        refund_type=refund_type,
        refund_reason=reason,
        original_amount=payment.total_charged,
        requested_amount=amount,
        approved_amount=amount,
        status=RefundStatus.COMPLETED,
        external_refund_id=processed.id,
        requested_at=now,
        approved_at=now,
        processed_at=now,
        completed_at=now,
    )
    try:
        db.add(refund)
        db.flush()
        changed = guarded_transition(
            db,
            payment,
            allowed_from={PaymentStatus.REFUNDING},
            target=PaymentStatus.REFUNDED,
            actor=actor_name,
            values={"refunded_at": now},
            audit_data={"refund_id": refund.id, "external_refund_id": processed.id, "amount": amount},
        )
        if changed:
            log_audit(
                db,
                actor=actor_name,
                action="REFUND_COMPLETED",
                entity="Refund",
                entity_id=refund.id,
                data={"payment_id": payment.id, "refund_type": refund_type.value, "amount": amount},
            )
            db.commit()
    except SQLAlchemyError:
        changed = False
    if not changed:
        raise reconciliation_failure(
            db,
            actor=actor_name,
            payment=payment,
            operation="refund",
            details={"external_refund_id": processed.id, "amount": amount},
        )

    db.refresh(refund)
    logger.info(
        "Refund completed",
        extra={"refund_id": refund.id, "payment_id": payment.id, "amount": amount},
    )
    return refund


def _open_refund_review(
    db: Session,
    payment: Payment,
    actor: User,
    refund_type: RefundType,
    reason: str,
    amount: int,
) -> Refund:
    actor_name = actor_for_user(actor)
    refund = Refund(
        payment_id=payment.id,
        requested_by=actor.id,
        refund_type=refund_type,
        refund_reason=reason,
        original_amount=payment.total_charged,
        requested_amount=amount,
        status=RefundStatus.PENDING,
        requested_at=utcnow(),
    )
    try:
        db.add(refund)
        db.flush()
    except IntegrityError:
        db.rollback()
        db.refresh(payment)
        raise state_conflict(
            "REFUND_ALREADY_EXISTS", "A refund was already requested for this payment.", payment.status
        )

    changed = guarded_transition(
        db,
        payment,
        allowed_from=REFUNDABLE_FROM,
        target=PaymentStatus.DISPUTED,
        actor=actor_name,
        audit_data={"refund_id": refund.id, "refund_type": refund_type.value, "amount": amount},
    )
    if not changed:
        db.rollback()
        db.refresh(payment)
        raise state_conflict("INVALID_PAYMENT_STATE", "Payment changed while requesting a refund.", payment.status)

    log_audit(
        db,
        actor=actor_name,
        action="REFUND_REQUESTED",
        entity="Refund",
        entity_id=refund.id,
        data={"payment_id": payment.id, "refund_type": refund_type.value, "amount": amount},
    )
    open_ticket(
        db,
        job_id=payment.job_id,
        reporter=actor,
        problem_type=f"refund_{refund_type.value}",
        description=reason,
    )
    db.commit()
    db.refresh(refund)
    logger.info(
        "Refund held for review",
        extra={"refund_id": refund.id, "payment_id": payment.id, "amount": amount},
    )
    return refund


def list_refunds(
    db: Session,
    *,
    actor: User,
    job_id: int | None = None,
    status: RefundStatus | None = None,
) -> dict[str, Any]:
    """Refunds requested by the caller, newest first, with a summary."""

    stmt = (
        select(Refund, Payment, Job)
        .join(Payment, Payment.id == Refund.payment_id)
        .join(Job, Job.id == Payment.job_id)
        .where(Refund.requested_by == actor.id)
        .order_by(Refund.requested_at.desc(), Refund.id.desc())
    )
    if job_id is not None:
        stmt = stmt.where(Payment.job_id == job_id)
    if status is not None:
        stmt = stmt.where(Refund.status == status)

    items = []
    counts = {s: 0 for s in RefundStatus}
    total_refunded = 0
    for refund, payment, job in db.execute(stmt).all():
        counts[refund.status] += 1
        if refund.status == RefundStatus.COMPLETED:
            total_refunded += refund.approved_amount or 0
        items.append(
            {
                "id": refund.id,
                "job_id": job.id,
                "job_title": job.title,
                "payment_id": payment.id,
                "payment_status": payment.status,
                "refund_type": refund.refund_type,
                "refund_reason": refund.refund_reason,
                "status": refund.status,
                "original_amount_cents": refund.original_amount,
                "requested_amount_cents": refund.requested_amount,
                "approved_amount_cents": refund.approved_amount,
                "original_amount": cents_to_dollars(refund.original_amount),
                "requested_amount": cents_to_dollars(refund.requested_amount),
                "approved_amount": cents_to_dollars(refund.approved_amount),
                "approved_by": refund.approved_by,
                "requested_at": refund.requested_at,
                "approved_at": refund.approved_at,
                "processed_at": refund.processed_at,
                "completed_at": refund.completed_at,
            }
        )
    return {
        "refunds": items,
        "summary": {
            "total": len(items),
            "pending": counts[RefundStatus.PENDING],
            "approved": counts[RefundStatus.APPROVED],
            "completed": counts[RefundStatus.COMPLETED],
            "rejected": counts[RefundStatus.REJECTED],
            "total_refunded_cents": total_refunded,
            "total_refunded": cents_to_dollars(total_refunded),
        },
    }


# -- Ticket resolution -----------------------------------------------------------


@dataclass(frozen=True)
class TicketResolution:
    ticket: SupportTicket
    payment: Payment
    refund: Refund | None
    message: str


def _set_ticket_status(
    db: Session, ticket: SupportTicket, *, expected: TicketStatus, target: TicketStatus, **values: Any
) -> bool:
    result = db.execute(
        update(SupportTicket)
        .where(SupportTicket.id == ticket.id, SupportTicket.status == expected)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(ticket)
    return result.rowcount == 1


def _reopen(db: Session, ticket: SupportTicket) -> None:
    _set_ticket_status(db, ticket, expected=TicketStatus.IN_PROGRESS, target=TicketStatus.OPEN)
    db.commit()


def resolve_ticket(
    db: Session,
    gateway: PaymentGateway,
    *,
    ticket_id: int,
    action: TicketAction,
    admin: User,
) -> TicketResolution:
    """Settle a ticket's escrowed or disputed payment by refunding or releasing it."""

    ticket = db.get(SupportTicket, ticket_id)
    if ticket is None:
        raise not_found("TICKET_NOT_FOUND", "Ticket not found.")
    if ticket.status != TicketStatus.OPEN:
        raise state_conflict("TICKET_ALREADY_RESOLVED", "Ticket is not open.", ticket.status)
    if ticket.job_id is None:
        raise bad_request("TICKET_HAS_NO_JOB", "Ticket has no associated job.")
    job = db.get(Job, ticket.job_id)
    payment = active_payment_for_job(db, ticket.job_id)
    if job is None or payment is None:
        raise not_found("PAYMENT_NOT_FOUND", "Job or payment not found.")
    if payment.status not in RESOLVABLE_FROM:
        raise state_conflict("INVALID_PAYMENT_STATE", "Payment is not held in escrow.", payment.status)

    if not _set_ticket_status(db, ticket, expected=TicketStatus.OPEN, target=TicketStatus.IN_PROGRESS):
        db.rollback()
        raise state_conflict("TICKET_ALREADY_RESOLVED", "Ticket is being resolved by someone else.", ticket.status)
    db.commit()

    if action == TicketAction.REFUND:
        return _resolve_with_refund(db, gateway, ticket, job, payment, admin)
    return _resolve_with_release(db, gateway, ticket, job, payment, admin)


def _resolve_with_refund(
    db: Session, gateway: PaymentGateway, ticket: SupportTicket, job: Job, payment: Payment, admin: User
) -> TicketResolution:
    actor_name = actor_for_user(admin)
    refund = _existing_refund(db, payment.id)
    if refund is not None and refund.status != RefundStatus.PENDING:
        _reopen(db, ticket)
        raise state_conflict(
            "REFUND_ALREADY_EXISTS",
            "The refund for this payment is already final.",
            payment.status,
            refund_status=refund.status.value,
        )
    amount = refund.requested_amount if refund is not None else payment.total_charged

    # claim the payment so a charge.refunded webhook for this refund cannot move it first
    previous = payment.status
    claimed = guarded_transition(
        db,
        payment,
        allowed_from={previous},
        target=PaymentStatus.REFUNDING,
        actor=actor_name,
        audit_data={"ticket_id": ticket.id, "amount": amount},
    )
    if not claimed:
        db.rollback()
        _reopen(db, ticket)
        raise state_conflict("INVALID_PAYMENT_STATE", "Payment changed while resolving the ticket.", payment.status)
    db.commit()

    try:
        processed = gateway.create_refund(
            payment_intent_id=payment.external_payment_intent_id or "",
            amount=amount,
            metadata={"job_id": str(job.id), "payment_id": str(payment.id), "ticket_id": str(ticket.id)},
            idempotency_key=f"refund_{payment.id}_{amount}",
        )
    except GatewayError as exc:
        logger.warning(
            "Processor refund failed during ticket resolution",
            extra={"ticket_id": ticket.id, "payment_id": payment.id, "code": exc.code},
        )
        guarded_transition(
            db,
            payment,
            allowed_from={PaymentStatus.REFUNDING},
            target=previous,
            actor=actor_name,
            audit_data={"ticket_id": ticket.id, "reason": "processor_refund_failed"},
        )
        _reopen(db, ticket)
        raise processor_error("Unable to process the refund.", {"reason": str(exc)}) from exc

    now = utcnow()
    message = f'Customer refunded ${cents_to_dollars(amount)} for "{job.title}"'
    try:
        if refund is None:
            refund = Refund(
                payment_id=payment.id,
                requested_by=ticket.reported_by,
                refund_type=RefundType.QUALITY,
                refund_reason=f"Support ticket #{ticket.id} resolution: {ticket.problem_type}",
                original_amount=payment.total_charged,
                requested_amount=amount,
                requested_at=now,
            )
            db.add(refund)
        refund.approved_by = admin.id
        refund.approved_amount = amount
        refund.status = RefundStatus.COMPLETED
        refund.external_refund_id = processed.id
        refund.approved_at = now
        refund.processed_at = now
        refund.completed_at = now
        db.flush()

        changed = guarded_transition(
            db,
            payment,
            allowed_from={PaymentStatus.REFUNDING},
            target=PaymentStatus.REFUNDED,
            actor=actor_name,
            values={"refunded_at": now},
            audit_data={"ticket_id": ticket.id, "refund_id": refund.id, "amount": amount},
        )
        if changed:
            _set_ticket_status(
                db,
                ticket,
                expected=TicketStatus.IN_PROGRESS,
                target=TicketStatus.RESOLVED,
                resolution=f"Refund approved: ${cents_to_dollars(amount)} refunded to the customer.",
                resolved_by=admin.id,
                resolved_at=now,
            )
            _audit_resolution(db, actor_name, ticket, refund, TicketAction.REFUND, amount)
            db.commit()
    except SQLAlchemyError:
        changed = False
    if not changed:
        raise reconciliation_failure(
            db,
            actor=actor_name,
            payment=payment,
            operation="ticket_refund",
            details={"ticket_id": ticket.id, "external_refund_id": processed.id, "amount": amount},
        )

    db.refresh(refund)
    return TicketResolution(ticket=ticket, payment=payment, refund=refund, message=message)


def _resolve_with_release(
    db: Session, gateway: PaymentGateway, ticket: SupportTicket, job: Job, payment: Payment, admin: User
) -> TicketResolution:
    actor_name = actor_for_user(admin)
    values: dict[str, Any] = {}
    if payment.external_transfer_id:
        # the payout already left escrow before the dispute; never transfer it twice
        transfer_id = payment.external_transfer_id
        logger.info(
            "Payout already transferred; settling dispute without a new transfer",
            extra={"ticket_id": ticket.id, "payment_id": payment.id, "transfer_id": transfer_id},
        )
    else:
        handyman = db.get(User, payment.handyman_id) if payment.handyman_id else None
        if handyman is None or not handyman.stripe_account_id:
            _reopen(db, ticket)
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
                metadata={"job_id": str(job.id), "payment_id": str(payment.id), "ticket_id": str(ticket.id)},
                idempotency_key=f"release_{job.id}",
            )
        except GatewayError as exc:
            logger.warning(
                "Payout transfer failed during ticket resolution",
                extra={"ticket_id": ticket.id, "payment_id": payment.id, "code": exc.code},
            )
            _reopen(db, ticket)
            raise processor_error("Unable to transfer the payout.", {"reason": str(exc)}) from exc
        transfer_id = transfer.id
        values = {"released_at": utcnow(), "external_transfer_id": transfer.id}

    now = utcnow()
    refund = _existing_refund(db, payment.id)
    message = f'Payment of ${cents_to_dollars(payment.handyman_payout)} released to handyman for "{job.title}"'
    try:
        changed = guarded_transition(
            db,
            payment,
            allowed_from=RESOLVABLE_FROM,
            target=PaymentStatus.RELEASED,
            actor=actor_name,
            values=values,
            audit_data={"ticket_id": ticket.id, "transfer_id": transfer_id, "amount": payment.handyman_payout},
        )
        if changed:
            if refund is not None and refund.status == RefundStatus.PENDING:
                refund.status = RefundStatus.REJECTED
                refund.approved_by = admin.id
                refund.processed_at = now
                log_audit(
                    db,
                    actor=actor_name,
                    action="REFUND_REJECTED",
                    entity="Refund",
                    entity_id=refund.id,
                    data={"payment_id": payment.id, "ticket_id": ticket.id},
                )
            _set_ticket_status(
                db,
                ticket,
                expected=TicketStatus.IN_PROGRESS,
                target=TicketStatus.RESOLVED,
                resolution=(
                    f"Payment released: ${cents_to_dollars(payment.handyman_payout)} released to handyman. "
                    "Customer issue resolved."
                ),
                resolved_by=admin.id,
                resolved_at=now,
            )
            _audit_resolution(db, actor_name, ticket, refund, TicketAction.RELEASE, payment.handyman_payout)
            db.commit()
    except SQLAlchemyError:
        changed = False
    if not changed and not values:
        db.rollback()
        _reopen(db, ticket)
        raise state_conflict("INVALID_PAYMENT_STATE", "Payment changed while resolving the ticket.", payment.status)
    if not changed:
        raise reconciliation_failure(
            db,
            actor=actor_name,
            payment=payment,
            operation="ticket_release",
            details={"ticket_id": ticket.id, "transfer_id": transfer_id, "amount": payment.handyman_payout},
        )

    if refund is not None:
        db.refresh(refund)
    return TicketResolution(ticket=ticket, payment=payment, refund=refund, message=message)


def _audit_resolution(
    db: Session,
    actor: str,
    ticket: SupportTicket,
    refund: Refund | None,
    action: TicketAction,
    amount: int,
) -> None:
    log_audit(
        db,
        actor=actor,
        action="TICKET_RESOLVED",
        entity="SupportTicket",
        entity_id=ticket.id,
        data={
            "job_id": ticket.job_id,
            "action": action.value,
            "refund_id": getattr(refund, "id", None),
            "amount": amount,
        },
    )
    if action == TicketAction.REFUND and refund is not None:
        log_audit(
            db,
            actor=actor,
            action="REFUND_COMPLETED",
            entity="Refund",
            entity_id=refund.id,
            data={"payment_id": refund.payment_id, "ticket_id": ticket.id, "amount": amount},
        )
    logger.info(
        "Support ticket resolved",
        extra={"ticket_id": ticket.id, "job_id": ticket.job_id, "action": action.value, "amount": amount},
    )


__all__ = ["TicketResolution", "list_refunds", "request_refund", "resolve_ticket"]
