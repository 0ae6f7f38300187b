"""Payment gateway interface.

Gateways turn provider-specific charge objects and webhook events into
``Charge`` / ``GatewayEvent`` so the payment service only ever sees a
``ChargeStatus``. Provider SDK failures are raised as ``GatewayError``.
"""

from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from app.core.config import Settings


class ChargeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"


class Charge(BaseModel):
    charge_id: str
    status: ChargeStatus
    raw_status: str
    client_secret: str | None = None
    amount: int | None = None  # minor units
    currency: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class GatewayEvent(BaseModel):
    """Verified webhook event; ``status`` is None for events the ledger ignores."""

    event_id: str
    event_type: str
    charge_id: str | None = None
    status: ChargeStatus | None = None
    transaction_id: str | None = None
    raw_status: str | None = None
    failure_reason: str | None = None


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    name: str = "gateway"
    signature_header: str = "X-Signature"
    public_key: str | None = None

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    async def create_charge(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
        description: str | None = None,
        receipt_email: str | None = None,
    ) -> Charge:
        """Request a charge handle; ``metadata`` is echoed back on retrieval and webhooks."""
        ...

    @abstractmethod
    async def retrieve_charge(self, charge_id: str) -> Charge:
        ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        """Authenticate and parse a webhook body; raises WebhookSignatureError."""
        ...


def build_gateway(settings: Settings) -> PaymentGateway:
    if settings.payment_gateway == "simulated":
        from app.gateways.simulated import SimulatedGateway
        return SimulatedGateway(webhook_secret=settings.simulated_webhook_secret)
    if settings.payment_gateway == "razorpay":
        from app.gateways.razorpay import RazorpayGateway
        return RazorpayGateway(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            webhook_secret=settings.razorpay_webhook_secret,
        )
    from app.gateways.stripe import StripeGateway
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        publishable_key=settings.stripe_publishable_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
