from datetime import datetime
from typing import Any

from beanie import DecimalAnnotation, Document
from pydantic import Field

from app.schemas.ledger import TransactionStatus, TransactionType, utcnow


class CreditTransaction(Document):
    id: str
    type: TransactionType
    status: TransactionStatus = TransactionStatus.PENDING
    amount: int  # positive = credit, negative = debit
    price: DecimalAnnotation | None = None
    currency: str | None = None
    account_id: str
    related_job_id: str | None = None
    related_package_id: str | None = None
    external_payment_ref: str | None = None  # gateway charge / order id
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("account_id", 1), ("created_at", -1)],
            [("external_payment_ref", 1)],
            [("metadata.refunded_transaction_id", 1)],
            [("status", 1)],
            [("type", 1)],
        ]
