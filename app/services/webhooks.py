"""Stripe webhook intake: signature check, event dedupe and reconciliation."""
from __future__ import annotations

import hashlib
import logging
from typing import Any

from fastapi import HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Payment, WebhookEvent
from app.services.escrow import (
    mark_disputed,
    mark_payment_failed,
    mark_payment_succeeded,
    mark_refunded_externally,
    payment_by_intent,
)
from app.services.gateway import WebhookVerificationError, verify_webhook_payload
from app.services.onboarding import apply_account_update
from app.utils.errors import error_response
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

PROVIDER = "stripe"
WEBHOOK_ACTOR = "stripe:webhook"


def secret_fingerprint(secret: str | None) -> str | None:
    """Deterministic marker for a secret, safe to log or expose."""

    if not secret:
        return None
    return f"sha256:{hashlib.sha256(secret.encode()).hexdigest()[:8]}"


def verify_event(payload: bytes, sig_header: str | None) -> dict[str, Any]:
    """Return the decoded event or raise the HTTP error for a bad signature."""

    settings = get_settings()
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        logger.error("Stripe webhook secret is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("STRIPE_WEBHOOK_NOT_CONFIGURED", "Stripe webhook secret is not configured."),
        )
    if not sig_header:
        logger.warning("Stripe webhook without signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("STRIPE_SIGNATURE_MISSING", "Stripe-Signature header is required."),
        )
    try:
        return verify_webhook_payload(
            payload, sig_header, secret, tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        )
    except WebhookVerificationError:
        logger.warning(
            "Stripe signature verification failed",
            extra={"secret_fingerprint": secret_fingerprint(secret)},
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("STRIPE_SIGNATURE_INVALID", "Invalid Stripe signature."),
        )


def _intent_id(obj: dict[str, Any]) -> str | None:
    value = obj.get("payment_intent")
    if isinstance(value, dict):
        return value.get("id")
    return value


def _payment_for(db: Session, intent_id: str | None, event: dict[str, Any]) -> Payment | None:
    payment = payment_by_intent(db, intent_id) if intent_id else None
    if payment is None:
        logger.warning(
            "Stripe event does not match a known payment",
            extra={"event_id": event.get("id"), "event_type": event.get("type"), "payment_intent_id": intent_id},
        )
    return payment


def apply_event(db: Session, event: dict[str, Any]) -> None:
    """Route a verified event to the matching payment transition."""

    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "payment_intent.succeeded":
        payment = _payment_for(db, obj.get("id"), event)
        if payment is not None:
            mark_payment_succeeded(db, payment, source=WEBHOOK_ACTOR)
    elif event_type == "payment_intent.payment_failed":
        payment = _payment_for(db, obj.get("id"), event)
        if payment is not None:
            error = obj.get("last_payment_error") or {}
            mark_payment_failed(db, payment, source=WEBHOOK_ACTOR, reason=error.get("message"))
    elif event_type == "charge.refunded":
        payment = _payment_for(db, _intent_id(obj), event)
        if payment is not None:
            mark_refunded_externally(
                db,
                payment,
                amount_refunded=int(obj.get("amount_refunded") or 0),
                amount=int(obj.get("amount") or payment.total_charged),
                source=WEBHOOK_ACTOR,
            )
    elif event_type == "charge.dispute.created":
        payment = _payment_for(db, _intent_id(obj), event)
        if payment is not None:
            mark_disputed(db, payment, source=WEBHOOK_ACTOR, dispute_id=obj.get("id"))
    elif event_type == "account.updated":
        apply_account_update(db, obj, source=WEBHOOK_ACTOR)
    else:
        logger.info("Unhandled Stripe event type", extra={"event_type": event_type, "event_id": event.get("id")})


def _register(db: Session, event: dict[str, Any]) -> WebhookEvent | None:
    """Persist the event row; ``None`` means it was already handled."""

    event_id = event.get("id")
    existing = db.scalars(
        select(WebhookEvent).where(WebhookEvent.provider == PROVIDER, WebhookEvent.event_id == event_id)
    ).one_or_none()
    if existing is not None:
        if existing.processed_at is not None:
            return None
        # a previous delivery failed while processing; try again
        existing.error = None
        return existing

    obj = (event.get("data") or {}).get("object") or {}
    record = WebhookEvent(
        provider=PROVIDER,
        event_id=event_id,
        kind=event.get("type") or "unknown",
        psp_ref=obj.get("id"),
        raw_json=event,
        received_at=utcnow(),
    )
    try:
        db.add(record)
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    return record


def process_event(db: Session, event: dict[str, Any]) -> tuple[int, dict[str, Any]]:
    """Apply a verified event once; returns the HTTP status and body to answer with."""

    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("STRIPE_EVENT_INVALID", "Stripe event id is missing."),
        )
    logger.info("Stripe webhook received", extra={"event_id": event_id, "event_type": event_type})

    record = _register(db, event)
    if record is None:
        logger.info("Duplicate Stripe event ignored", extra={"event_id": event_id, "event_type": event_type})
        return status.HTTP_200_OK, {"received": True, "duplicate": True}

    try:
        apply_event(db, event)
    except Exception as exc:
        db.rollback()
        logger.exception(
            "Stripe webhook processing failed",
            extra={"event_id": event_id, "event_type": event_type},
        )
        record.error = f"{type(exc).__name__}: {exc}"
        db.add(record)
        db.commit()
        return status.HTTP_202_ACCEPTED, {"received": True, "error": "processing_failed"}

    record.processed_at = utcnow()
    db.add(record)
    db.commit()
    logger.info("Stripe webhook processed", extra={"event_id": event_id, "event_type": event_type})
    return status.HTTP_200_OK, {"received": True}


async def handle_stripe_webhook(request: Request, db: Session) -> tuple[int, dict[str, Any]]:
    """Verify and process a raw Stripe webhook request."""

    payload = await request.body()
    event = verify_event(payload, request.headers.get("Stripe-Signature"))
    return process_event(db, event)


__all__ = [
    "apply_event",
    "handle_stripe_webhook",
    "process_event",
    "secret_fingerprint",
    "verify_event",
]
