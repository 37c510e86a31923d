"""Stripe Connect payout onboarding for handymen."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import User, UserRole
from app.services.gateway import AccountLinkInfo, GatewayError, PaymentGateway
from app.utils.audit import log_audit
from app.utils.errors import bad_request, processor_error

logger = logging.getLogger(__name__)


def start_payout_onboarding(
    db: Session, gateway: PaymentGateway, *, user: User, actor: str
) -> AccountLinkInfo:
    """Return a hosted onboarding link, creating the connected account on first use."""

    if user.role != UserRole.handyman:
        raise bad_request("NOT_A_HANDYMAN", "Only handymen receive payouts.")

    if not user.stripe_account_id:
        try:
            account = gateway.create_connected_account(
                email=user.email,
                metadata={"user_id": str(user.id)},
                idempotency_key=f"connect_account_{user.id}",
            )
        except GatewayError as exc:
            logger.warning("Connected account creation failed", extra={"user_id": user.id, "code": exc.code})
            raise processor_error("Unable to create the payout account.", {"reason": str(exc)}) from exc
        user.stripe_account_id = account.id
        user.stripe_onboarding_complete = account.details_submitted and account.payouts_enabled
        db.add(user)
        log_audit(
            db,
            actor=actor,
            action="STRIPE_ACCOUNT_CREATED",
            entity="User",
            entity_id=user.id,
            data={"stripe_account_id": account.id},
        )
        db.commit()
        db.refresh(user)
        logger.info("Connected account created", extra={"user_id": user.id})

    settings = get_settings()
    try:
        link = gateway.create_account_link(
            account_id=user.stripe_account_id,
            refresh_url=settings.STRIPE_CONNECT_REFRESH_URL,
            return_url=settings.STRIPE_CONNECT_RETURN_URL,
        )
    except GatewayError as exc:
        logger.warning("Account link creation failed", extra={"user_id": user.id, "code": exc.code})
        raise processor_error("Unable to create the onboarding link.", {"reason": str(exc)}) from exc
    return link


def apply_account_update(db: Session, account: dict[str, Any], *, source: str) -> bool:
    """Mirror a connected account's payout readiness onto its user.

    Returns ``True`` when ``stripe_onboarding_complete`` changed.
    """

    account_id = account.get("id")
    user = (
        db.scalars(select(User).where(User.stripe_account_id == account_id)).one_or_none()
        if account_id
        else None
    )
    if user is None:
        logger.warning("Account update for unknown connected account", extra={"account_id": account_id})
        return False

    complete = bool(account.get("details_submitted")) and bool(account.get("payouts_enabled"))
    if user.stripe_onboarding_complete == complete:
        return False
    user.stripe_onboarding_complete = complete
    db.add(user)
    log_audit(
        db,
        actor=source,
        action="STRIPE_ONBOARDING_UPDATED",
        entity="User",
        entity_id=user.id,
        data={"stripe_account_id": account_id, "onboarding_complete": complete},
    )
    db.commit()
    logger.info("Payout onboarding status updated", extra={"user_id": user.id, "complete": complete})
    return True


__all__ = ["apply_account_update", "start_payout_onboarding"]
