"""Ledger records shared by every storage backend.

These are plain pydantic models; the beanie documents in ``app.models`` are the
MongoDB persistence of the same shapes.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.core.security import generate_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InterviewType(str, Enum):
    TEXT = "TEXT"
    VOICE = "VOICE"
    AVATAR = "AVATAR"


class TransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    CONSUMPTION = "CONSUMPTION"
    REFUND = "REFUND"
    BONUS = "BONUS"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED}
)

# Only PENDING rows move; every other status is final.
_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: TERMINAL_STATUSES,
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


class TransactionMetadata(BaseModel):
    """Auxiliary context on a ledger transaction.

    Known keys are typed; anything else a gateway hands back is kept as an
    extra key. Use ``merge`` for updates: keys are added or overwritten, never
    dropped.
    """

    model_config = ConfigDict(extra="allow")

    reason: str | None = None
    failure_reason: str | None = None
    cancellation_reason: str | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    gateway: str | None = None
    gateway_status: str | None = None
    gateway_reference: str | None = None
    confirmed_via: str | None = None
    package_name: str | None = None
    gateway_price_id: str | None = None
    refunded_transaction_id: str | None = None

    def merge(self, update: "TransactionMetadata | dict[str, Any] | None") -> "TransactionMetadata":
        if update is None:
            return self.model_copy()
        if isinstance(update, TransactionMetadata):
            incoming = update.model_dump(exclude_none=True)
        else:
            incoming = {k: v for k, v in update.items() if v is not None}
        return TransactionMetadata.model_validate({**self.model_dump(exclude_none=True), **incoming})


class Account(BaseModel):
    id: str = Field(default_factory=generate_id)
    full_name: str
    email: str
    credits: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Package(BaseModel):
    """Credit package from the catalog (read-only for the ledger)."""

    id: str = Field(default_factory=generate_id)
    name: str
    description: str | None = None
    credits: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    currency: str = "BRL"
    gateway_price_id: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LedgerTransaction(BaseModel):
    id: str = Field(default_factory=generate_id)
    type: TransactionType
    status: TransactionStatus
    amount: int  # positive = credits added, negative = credits removed
    price: Decimal | None = None
    currency: str | None = None
    account_id: str
    related_job_id: str | None = None
    related_package_id: str | None = None
    external_payment_ref: str | None = None
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def money(value: Decimal | None) -> str | None:
    """Render a price with two decimal places for API responses."""
    if value is None:
        return None
    return str(value.quantize(Decimal("0.01")))
