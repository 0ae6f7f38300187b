"""Razorpay orders; the order id is the charge id."""

import asyncio
import json
from decimal import Decimal

import razorpay

from app.core.exceptions import GatewayError, GatewayNotConfiguredError, WebhookSignatureError
from app.core.logging import get_logger
from app.core.security import verify_webhook_hmac
from app.gateways.base import Charge, ChargeStatus, GatewayEvent, PaymentGateway, to_minor_units

log = get_logger(__name__)

# payment.failed is one attempt; the order stays payable and a later attempt can
# still be captured, so it never finalizes the purchase.
_EVENT_STATUS = {
    "order.paid": ChargeStatus.SUCCEEDED,
    "payment.captured": ChargeStatus.SUCCEEDED,
}


class RazorpayGateway(PaymentGateway):
    name = "razorpay"
    signature_header = "X-Razorpay-Signature"

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str = "") -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.public_key = key_id or None
        self._client: razorpay.Client | None = None

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _get_client(self) -> razorpay.Client:
        if not self.configured:
            raise GatewayNotConfiguredError("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET are not set")
        if self._client is None:
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    async def create_charge(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        receipt_email: str | None = None,
    ) -> Charge:
        client = self._get_client()
        data = {
            "amount": to_minor_units(amount),
            "currency": currency.upper(),
            "receipt": metadata.get("transaction_id", "")[:40],
            "notes": metadata,
        }
        try:
            # SDK is synchronous (requests)
            order = await asyncio.to_thread(client.order.create, data)
        except Exception as e:
            log.warning("razorpay_create_failed", error=str(e))
            raise GatewayError(f"Razorpay error: {e}") from e
        return Charge(
            charge_id=order["id"],
            status=ChargeStatus.PENDING,
            raw_status=order.get("status", "created"),
            amount=order.get("amount"),
            currency=order.get("currency"),
            metadata=dict(order.get("notes") or {}),
        )

    async def retrieve_charge(self, charge_id: str) -> Charge:
        client = self._get_client()
        try:
            order = await asyncio.to_thread(client.order.fetch, charge_id)
            payments = await asyncio.to_thread(client.order.payments, charge_id)
        except Exception as e:
            log.warning("razorpay_fetch_failed", charge_id=charge_id, error=str(e))
            raise GatewayError(f"Razorpay error: {e}") from e
        items = payments.get("items") or []
        failure_reason = None
        if order.get("status") == "paid" or any(p.get("status") == "captured" for p in items):
            status = ChargeStatus.SUCCEEDED
        else:
            # failed attempts leave the order payable
            status = ChargeStatus.PENDING
            failed = [p for p in items if p.get("status") == "failed"]
            if failed:
                failure_reason = failed[-1].get("error_description") or "Payment failed"
        return Charge(
            charge_id=order["id"],
            status=status,
            raw_status=order.get("status", ""),
            amount=order.get("amount"),
            currency=order.get("currency"),
            failure_reason=failure_reason,
            metadata=dict(order.get("notes") or {}),
        )

    def verify_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if not self.webhook_secret:
            raise GatewayNotConfiguredError("Webhook secret not configured")
        if not verify_webhook_hmac(payload, signature, self.webhook_secret):
            raise WebhookSignatureError()
        try:
            data = json.loads(payload.decode())
        except ValueError as e:
            raise WebhookSignatureError("Invalid webhook payload") from e
        event_type = data.get("event", "")
        entities = data.get("payload", {})
        payment = entities.get("payment", {}).get("entity", {})
        order = entities.get("order", {}).get("entity", {})
        notes = order.get("notes") or payment.get("notes") or {}
        if isinstance(notes, list):  # Razorpay sends [] for empty notes
            notes = {}
        return GatewayEvent(
            event_id=payment.get("id") or order.get("id") or event_type,
            event_type=event_type,
            charge_id=order.get("id") or payment.get("order_id"),
            status=_EVENT_STATUS.get(event_type),
            transaction_id=notes.get("transaction_id"),
            raw_status=payment.get("status") or order.get("status"),
            failure_reason=payment.get("error_description"),
        )
