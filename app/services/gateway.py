"""Payment processor capability and its Stripe implementation."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import stripe
from fastapi import HTTPException, status

from app.config import Settings, get_settings
from app.utils.errors import error_response

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """The payment processor rejected a call or could not be reached."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class WebhookVerificationError(ValueError):
    """Webhook payload does not carry a valid processor signature."""


@dataclass(frozen=True)
class IntentInfo:
    id: str
    status: str
    amount: int
    client_secret: str | None = None


@dataclass(frozen=True)
class TransferInfo:
    id: str
    amount: int


@dataclass(frozen=True)
class RefundInfo:
    id: str
    amount: int
    status: str


@dataclass(frozen=True)
class AccountInfo:
    id: str
    details_submitted: bool = False
    payouts_enabled: bool = False


@dataclass(frozen=True)
class AccountLinkInfo:
    url: str
    expires_at: int | None = None


class PaymentGateway(Protocol):
    """Processor operations the escrow core depends on."""

    def create_intent(
        self,
        *,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        transfer_group: str,
        idempotency_key: str,
    ) -> IntentInfo: ...

    def retrieve_intent(self, intent_id: str) -> IntentInfo: ...

    def create_transfer(
        self,
        *,
        amount: int,
        currency: str,
        destination: str,
        transfer_group: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> TransferInfo: ...

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount: int,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> RefundInfo: ...

    def create_connected_account(
        self, *, email: str, metadata: Mapping[str, str], idempotency_key: str
    ) -> AccountInfo: ...

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkInfo: ...


def verify_webhook_payload(
    payload: bytes | str, sig_header: str, secret: str, tolerance: int = 300
) -> dict[str, Any]:
    """Verify a ``Stripe-Signature`` header and return the decoded event."""

    text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    try:
        stripe.WebhookSignature.verify_header(text, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationError(str(exc)) from exc
    try:
        event = json.loads(text)
    except json.JSONDecodeError as exc:
        raise WebhookVerificationError("Webhook payload is not valid JSON.") from exc
    if not isinstance(event, dict):
        raise WebhookVerificationError("Webhook payload must be a JSON object.")
    return event


def _intent_info(intent: Any) -> IntentInfo:
    return IntentInfo(
        id=intent.id,
        status=intent.status,
        amount=int(intent.amount or 0),
        client_secret=getattr(intent, "client_secret", None),
    )


class StripeGateway:
    """Wrapper around the Stripe Python SDK to isolate processor concerns."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._secret_key = settings.STRIPE_SECRET_KEY
        if not self._secret_key:
            raise RuntimeError("Stripe secret key is missing; configure STRIPE_SECRET_KEY.")
        stripe.api_key = self._secret_key

    @classmethod
    def from_env(cls) -> "StripeGateway":
        """Instantiate a gateway using the cached application settings."""

        return cls(get_settings())

    def create_intent(
        self,
        *,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        transfer_group: str,
        idempotency_key: str,
    ) -> IntentInfo:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=dict(metadata),
                transfer_group=transfer_group,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise GatewayError(str(exc), code=getattr(exc, "code", None)) from exc
        if not intent.client_secret:
            raise GatewayError("Missing client_secret on PaymentIntent")
        return _intent_info(intent)

    def retrieve_intent(self, intent_id: str) -> IntentInfo:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as exc:
            raise GatewayError(str(exc), code=getattr(exc, "code", None)) from exc
        return _intent_info(intent)

    def create_transfer(
        self,
        *,
        amount: int,
        currency: str,
        destination: str,
        transfer_group: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> TransferInfo:
        """Move the payout from the platform balance to a connected account."""

        if not destination.startswith("acct_"):
            raise GatewayError("Invalid connected account id", code="invalid_destination")
        if amount <= 0:
            raise GatewayError("Payout must be greater than 0", code="invalid_amount")
        try:
            transfer = stripe.Transfer.create(
                amount=amount,
                currency=currency,
                destination=destination,
                transfer_group=transfer_group,
                metadata=dict(metadata),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise GatewayError(str(exc), code=getattr(exc, "code", None)) from exc
        return TransferInfo(id=transfer.id, amount=int(transfer.amount))

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount: int,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> RefundInfo:
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=amount,
                reason="requested_by_customer",
                metadata=dict(metadata),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise GatewayError(str(exc), code=getattr(exc, "code", None)) from exc
        if refund.status == "failed":
            raise GatewayError("Refund failed at the processor", code="refund_failed")
        return RefundInfo(id=refund.id, amount=int(refund.amount), status=refund.status)

    def create_connected_account(
        self, *, email: str, metadata: Mapping[str, str], idempotency_key: str
    ) -> AccountInfo:
        """Create an Express account that can receive payout transfers."""

        try:
            account = stripe.Account.create(
                type="express",
                email=email,
                capabilities={"transfers": {"requested": True}},
                metadata=dict(metadata),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise GatewayError(str(exc), code=getattr(exc, "code", None)) from exc
        return AccountInfo(
            id=account.id,
            details_submitted=bool(getattr(account, "details_submitted", False)),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
        )

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkInfo:
        try:
            link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as exc:
            raise GatewayError(str(exc), code=getattr(exc, "code", None)) from exc
        return AccountLinkInfo(url=link.url, expires_at=getattr(link, "expires_at", None))


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the configured processor gateway."""

    try:
        return StripeGateway.from_env()
    except RuntimeError as exc:
        logger.error("Stripe gateway configuration error", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("STRIPE_NOT_CONFIGURED", str(exc)),
        ) from exc


__all__ = [
    "AccountInfo",
    "AccountLinkInfo",
    "GatewayError",
    "IntentInfo",
    "PaymentGateway",
    "RefundInfo",
    "StripeGateway",
    "TransferInfo",
    "WebhookVerificationError",
    "get_payment_gateway",
    "verify_webhook_payload",
]
