"""Escrow state machine: guarded payment transitions and the job mirror.

Every status change of a payment goes through :func:`guarded_transition`, a
single ``UPDATE ... WHERE status IN (...)``. Two concurrent writers racing on
the same row serialize on that statement; the loser matches zero rows and
becomes a no-op. ``Job.payment_status`` is a projection of the payment row,
written in the same unit of work and repaired on read by
:func:`sync_job_mirror`.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import UNPAID, Job, Payment, PaymentStatus
from app.utils.audit import log_audit
from app.utils.errors import reconciliation_required
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

# Statuses from which each processor-reported outcome is applied. Refund events
# skip `refunding`: the local call that claimed the payment settles it.
SUCCEEDED_FROM = frozenset({PaymentStatus.PENDING})
FAILED_FROM = frozenset({PaymentStatus.PENDING})
FULL_REFUND_FROM = frozenset(
    {
        PaymentStatus.ESCROWED,
        PaymentStatus.RELEASED,
        PaymentStatus.DISPUTED,
        PaymentStatus.PARTIALLY_REFUNDED,
    }
)
PARTIAL_REFUND_FROM = frozenset(
    {PaymentStatus.ESCROWED, PaymentStatus.RELEASED, PaymentStatus.DISPUTED}
)
DISPUTE_FROM = frozenset(status for status in PaymentStatus if status != PaymentStatus.DISPUTED)


def active_payment_for_job(db: Session, job_id: int) -> Payment | None:
    """Return the job's payment that is not a failed attempt, if any."""

    stmt = (
        select(Payment)
        .where(Payment.job_id == job_id, Payment.status != PaymentStatus.FAILED)
        .order_by(Payment.id.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def latest_payment_for_job(db: Session, job_id: int) -> Payment | None:
    """Return the active payment, falling back to the most recent failed attempt."""

    active = active_payment_for_job(db, job_id)
    if active is not None:
        return active
    stmt = select(Payment).where(Payment.job_id == job_id).order_by(Payment.id.desc()).limit(1)
    return db.scalars(stmt).first()


def payment_by_intent(db: Session, intent_id: str) -> Payment | None:
    stmt = select(Payment).where(Payment.external_payment_intent_id == intent_id)
    return db.scalars(stmt).one_or_none()


def mirror_job(db: Session, payment: Payment) -> None:
    """Copy the payment status onto its job."""

    db.execute(
        update(Job)
        .where(Job.id == payment.job_id)
        .values(payment_status=payment.status.value)
        .execution_options(synchronize_session="fetch")
    )


def sync_job_mirror(db: Session, job: Job) -> bool:
    """Recompute ``job.payment_status`` from the authoritative payment row.

    Returns ``True`` when the mirror had drifted and was repaired. The caller
    owns the commit.
    """

    payment = latest_payment_for_job(db, job.id)
    expected = payment.status.value if payment is not None else UNPAID
    if job.payment_status == expected:
        return False
    logger.warning(
        "Job payment mirror out of sync; repairing from payment",
        extra={
            "job_id": job.id,
            "payment_id": getattr(payment, "id", None),
            "mirror_status": job.payment_status,
            "payment_status": expected,
        },
    )
    job.payment_status = expected
    db.add(job)
    db.flush()
    return True


def guarded_transition(
    db: Session,
    payment: Payment,
    *,
    allowed_from: Iterable[PaymentStatus],
    target: PaymentStatus,
    actor: str,
    values: dict[str, Any] | None = None,
    audit_data: dict[str, Any] | None = None,
) -> bool:
    """Move ``payment`` to ``target`` only if it is currently in ``allowed_from``.

    Returns ``True`` when this call performed the transition and ``False`` when
    the row was no longer in an allowed status (another writer won). Edges
    missing from the transition table raise :class:`IllegalTransition`. The
    caller owns the commit.
    """

    allowed = frozenset(allowed_from)
    for status in allowed:
        status.ensure_transition(target)

    previous = payment.status
    stmt = (
        update(Payment)
        .where(Payment.id == payment.id, Payment.status.in_(allowed))
        .values(status=target, updated_at=utcnow(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.refresh(payment)

    if result.rowcount == 0:
        logger.info(
            "Guarded transition skipped; payment no longer in expected status",
            extra={
                "payment_id": payment.id,
                "job_id": payment.job_id,
                "current_status": payment.status.value,
                "target_status": target.value,
                "actor": actor,
            },
        )
        return False

    mirror_job(db, payment)
    log_audit(
        db,
        actor=actor,
        action=f"PAYMENT_{target.name}",
        entity="Payment",
        entity_id=payment.id,
        data={
            "job_id": payment.job_id,
            "from_status": previous.value,
            "to_status": target.value,
            **(audit_data or {}),
        },
    )
    logger.info(
        "Payment transitioned",
        extra={
            "payment_id": payment.id,
            "job_id": payment.job_id,
            "from_status": previous.value,
            "to_status": target.value,
            "actor": actor,
        },
    )
    return True


def reconciliation_failure(
    db: Session,
    *,
    actor: str,
    payment: Payment,
    operation: str,
    details: dict[str, Any],
) -> HTTPException:
    """Record money that moved at the processor without the local row following.

    The pending unit of work is rolled back, the gap is logged at ERROR and
    written to the audit trail, and the 500 to raise is returned. Nothing is
    retried automatically.
    """

    context = {"payment_id": payment.id, "job_id": payment.job_id, "operation": operation, **details}
    db.rollback()
    logger.error("Reconciliation required after processor success", extra=context)
    try:
        log_audit(
            db,
            actor=actor,
            action="RECONCILIATION_REQUIRED",
            entity="Payment",
            entity_id=payment.id,
            data=context,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record reconciliation failure in the audit trail", extra=context)
    return reconciliation_required(
        "The processor accepted the operation but the payment record could not be updated.",
        context,
    )


# -- Reconciliation transitions shared by the confirm call and the webhook ----


def mark_payment_succeeded(db: Session, payment: Payment, *, source: str) -> bool:
    """Escrow the funds once the processor reports success.

    Only ``pending`` payments move; anything else is an idempotent no-op, so
    whichever of the confirm call and the webhook lands first wins.
    """

    changed = guarded_transition(
        db,
        payment,
        allowed_from=SUCCEEDED_FROM,
        target=PaymentStatus.ESCROWED,
        actor=source,
        values={"paid_at": utcnow()},
        audit_data={"payment_intent_id": payment.external_payment_intent_id},
    )
    db.commit()
    if not changed:
        logger.info(
            "Payment success already applied",
            extra={"payment_id": payment.id, "status": payment.status.value, "source": source},
        )
    return changed


def mark_payment_failed(db: Session, payment: Payment, *, source: str, reason: str | None = None) -> bool:
    changed = guarded_transition(
        db,
        payment,
        allowed_from=FAILED_FROM,
        target=PaymentStatus.FAILED,
        actor=source,
        audit_data={"payment_intent_id": payment.external_payment_intent_id, "reason": reason},
    )
    db.commit()
    return changed


def mark_refunded_externally(
    db: Session, payment: Payment, *, amount_refunded: int, amount: int, source: str
) -> bool:
    """Apply a processor-side refund; full vs partial depends on the charge amounts."""

    full = amount_refunded >= amount
    target = PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED
    changed = guarded_transition(
        db,
        payment,
        allowed_from=FULL_REFUND_FROM if full else PARTIAL_REFUND_FROM,
        target=target,
        actor=source,
        values={"refunded_at": utcnow()},
        audit_data={"amount_refunded": amount_refunded, "amount": amount},
    )
    db.commit()
    return changed


def mark_disputed(db: Session, payment: Payment, *, source: str, dispute_id: str | None = None) -> bool:
    """Dispute overrides whatever status the payment is in."""

    changed = guarded_transition(
        db,
        payment,
        allowed_from=DISPUTE_FROM,
        target=PaymentStatus.DISPUTED,
        actor=source,
        audit_data={"dispute_id": dispute_id},
    )
    db.commit()
    return changed


__all__ = [
    "active_payment_for_job",
    "guarded_transition",
    "latest_payment_for_job",
    "mark_disputed",
    "mark_payment_failed",
    "mark_payment_succeeded",
    "mark_refunded_externally",
    "mirror_job",
    "payment_by_intent",
    "reconciliation_failure",
    "sync_job_mirror",
]
