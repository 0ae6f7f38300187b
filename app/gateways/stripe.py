"""Stripe payment intents."""

from decimal import Decimal

import stripe

from app.core.exceptions import GatewayError, GatewayNotConfiguredError, WebhookSignatureError
from app.core.logging import get_logger
from app.gateways.base import Charge, ChargeStatus, GatewayEvent, PaymentGateway, to_minor_units

log = get_logger(__name__)

_INTENT_STATUS = {
    "succeeded": ChargeStatus.SUCCEEDED,
    "canceled": ChargeStatus.FAILED,
    "requires_payment_method": ChargeStatus.PENDING,
    "requires_confirmation": ChargeStatus.PENDING,
    "processing": ChargeStatus.PENDING,
    "requires_capture": ChargeStatus.PENDING,
    "requires_action": ChargeStatus.REQUIRES_ACTION,
}

# payment_intent.payment_failed returns the intent to requires_payment_method and
# the customer may retry; only cancellation is final.
_EVENT_STATUS = {
    "payment_intent.succeeded": ChargeStatus.SUCCEEDED,
    "payment_intent.canceled": ChargeStatus.FAILED,
}


def _failure_reason(intent) -> str | None:
    error = intent.get("last_payment_error")
    if not error:
        return None
    return error.get("message") or "Payment failed"


def _charge(intent) -> Charge:
    return Charge(
        charge_id=intent["id"],
        status=_INTENT_STATUS.get(intent["status"], ChargeStatus.PENDING),
        raw_status=intent["status"],
        client_secret=intent.get("client_secret"),
        amount=intent.get("amount"),
        currency=(intent.get("currency") or "").upper() or None,
        failure_reason=_failure_reason(intent),
        metadata=dict(intent.get("metadata") or {}),
    )


class StripeGateway(PaymentGateway):
    name = "stripe"
    signature_header = "Stripe-Signature"

    def __init__(self, secret_key: str, publishable_key: str = "", webhook_secret: str = "") -> None:
        self.secret_key = secret_key
        self.public_key = publishable_key or None
        self.webhook_secret = webhook_secret

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def _require_key(self) -> None:
        if not self.secret_key:
            raise GatewayNotConfiguredError("STRIPE_SECRET_KEY is not set")

    async def create_charge(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        receipt_email: str | None = None,
    ) -> Charge:
        self._require_key()
        params = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "payment_method_types": ["card"],
            "metadata": metadata,
        }
        if description:
            params["description"] = description
        if receipt_email:
            params["receipt_email"] = receipt_email
        try:
            intent = await stripe.PaymentIntent.create_async(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            log.warning("stripe_create_failed", error=str(e))
            raise GatewayError(f"Stripe error: {e.user_message or e}") from e
        return _charge(intent)

    async def retrieve_charge(self, charge_id: str) -> Charge:
        self._require_key()
        try:
            intent = await stripe.PaymentIntent.retrieve_async(charge_id, api_key=self.secret_key)
        except stripe.InvalidRequestError as e:
            raise GatewayError(f"Unknown payment intent: {charge_id}", status_code=404) from e
        except stripe.StripeError as e:
            log.warning("stripe_retrieve_failed", charge_id=charge_id, error=str(e))
            raise GatewayError(f"Stripe error: {e.user_message or e}") from e
        return _charge(intent)

    def verify_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if not self.webhook_secret:
            raise GatewayNotConfiguredError("STRIPE_WEBHOOK_SECRET is not set")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError() from e
        intent = event["data"]["object"]
        metadata = intent.get("metadata") or {}
        return GatewayEvent(
            event_id=event["id"],
            event_type=event["type"],
            charge_id=intent.get("id"),
            status=_EVENT_STATUS.get(event["type"]),
            transaction_id=metadata.get("transaction_id"),
            raw_status=intent.get("status"),
            failure_reason=_failure_reason(intent),
        )
