"""In-process gateway for local development and tests.

Charges live in memory and stay pending until ``settle`` is called. At most
``max_charges`` are kept, oldest evicted first, so a long-running dev server
stays bounded; this gateway is not meant for production traffic. Webhooks
are JSON bodies signed with HMAC-SHA256 over the raw payload, the same scheme
the Razorpay gateway verifies.
"""

import json
import secrets
from decimal import Decimal

from app.core.exceptions import GatewayError, NotFoundError, WebhookSignatureError
from app.core.security import sign_webhook_payload, verify_webhook_hmac
from app.gateways.base import Charge, ChargeStatus, GatewayEvent, PaymentGateway, to_minor_units

_EVENT_TYPES = {
    ChargeStatus.SUCCEEDED: "charge.succeeded",
    ChargeStatus.FAILED: "charge.failed",
    ChargeStatus.PENDING: "charge.pending",
    ChargeStatus.REQUIRES_ACTION: "charge.requires_action",
}

_EVENT_STATUS = {
    "charge.succeeded": ChargeStatus.SUCCEEDED,
    "charge.failed": ChargeStatus.FAILED,
}


class SimulatedGateway(PaymentGateway):
    name = "simulated"
    signature_header = "X-Simulated-Signature"
    public_key = "pk_simulated"

    def __init__(self, webhook_secret: str, max_charges: int = 10_000) -> None:
        self.webhook_secret = webhook_secret
        self.max_charges = max_charges
        self.charges: dict[str, Charge] = {}

    async def create_charge(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        receipt_email: str | None = None,
    ) -> Charge:
        charge_id = f"sim_{secrets.token_hex(12)}"
        charge = Charge(
            charge_id=charge_id,
            status=ChargeStatus.PENDING,
            raw_status="requires_payment_method",
            client_secret=f"{charge_id}_secret_{secrets.token_hex(8)}",
            amount=to_minor_units(amount),
            currency=currency.upper(),
            metadata=dict(metadata),
        )
        while len(self.charges) >= self.max_charges:
            self.charges.pop(next(iter(self.charges)))
        self.charges[charge_id] = charge
        return charge

    async def retrieve_charge(self, charge_id: str) -> Charge:
        charge = self.charges.get(charge_id)
        if charge is None:
            raise GatewayError(f"Unknown charge: {charge_id}", status_code=404)
        return charge

    def settle(self, charge_id: str, succeeded: bool = True, failure_reason: str | None = None) -> Charge:
        """Decide the outcome of a pending charge, as a customer paying would."""
        charge = self.charges.get(charge_id)
        if charge is None:
            raise NotFoundError("Charge not found")
        if succeeded:
            update = {"status": ChargeStatus.SUCCEEDED, "raw_status": "succeeded"}
        else:
            update = {
                "status": ChargeStatus.FAILED,
                "raw_status": "failed",
                "failure_reason": failure_reason or "Card declined",
            }
        charge = charge.model_copy(update=update)
        self.charges[charge_id] = charge
        return charge

    def build_webhook(self, charge_id: str) -> tuple[bytes, str]:
        """Signed webhook body describing the charge's current status."""
        charge = self.charges[charge_id]
        body = {
            "id": f"evt_{secrets.token_hex(8)}",
            "type": _EVENT_TYPES[charge.status],
            "data": {
                "charge_id": charge.charge_id,
                "status": charge.raw_status,
                "transaction_id": charge.metadata.get("transaction_id"),
                "failure_reason": charge.failure_reason,
            },
        }
        payload = json.dumps(body).encode()
        return payload, sign_webhook_payload(payload, self.webhook_secret)

    def verify_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        if not verify_webhook_hmac(payload, signature, self.webhook_secret):
            raise WebhookSignatureError()
        try:
            body = json.loads(payload.decode())
        except ValueError as e:
            raise WebhookSignatureError("Invalid webhook payload") from e
        data = body.get("data") or {}
        return GatewayEvent(
            event_id=body.get("id", ""),
            event_type=body.get("type", ""),
            charge_id=data.get("charge_id"),
            status=_EVENT_STATUS.get(body.get("type", "")),
            transaction_id=data.get("transaction_id"),
            raw_status=data.get("status"),
            failure_reason=data.get("failure_reason"),
        )
