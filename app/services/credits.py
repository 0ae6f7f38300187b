"""Credits ledger: interview cost, consumption, bonuses and refunds."""

from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.pagination import paginate
from app.schemas.ledger import (
    Account,
    InterviewType,
    LedgerTransaction,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)
from app.storage.base import LedgerStore, LedgerUnit

log = get_logger(__name__)

BASE_COSTS = {
    InterviewType.TEXT: 1,
    InterviewType.VOICE: 2,
    InterviewType.AVATAR: 3,
}
DEFAULT_COST = 1
LONG_INTERVIEW_MINUTES = 30  # longer interviews cost double


def credit_cost(interview_type: InterviewType | str, duration_minutes: int) -> int:
    """Credits charged for one interview of the given type and length."""
    try:
        base = BASE_COSTS[InterviewType(interview_type)]
    except ValueError:
        base = DEFAULT_COST
    if duration_minutes > LONG_INTERVIEW_MINUTES:
        return base * 2
    return base


class CreditService:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def get_balance(self, account_id: str) -> Account:
        account = await self.store.get_account(account_id)
        if not account:
            raise NotFoundError("Account not found")
        return account

    async def list_transactions(
        self,
        account_id: str,
        page: int = 1,
        per_page: int = 20,
        type: TransactionType | None = None,
    ) -> tuple[int, list[LedgerTransaction]]:
        await self.get_balance(account_id)
        limit, offset = paginate(page, per_page)
        return await self.store.list_transactions(account_id, limit, offset, type=type)

    async def consume(
        self,
        account_id: str,
        job_id: str | None,
        interview_type: InterviewType | str,
        duration_minutes: int,
    ) -> dict:
        """Debit the interview cost and record a COMPLETED CONSUMPTION row atomically."""
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive", details={"duration_minutes": duration_minutes})
        cost = credit_cost(interview_type, duration_minutes)

        async def unit(tx: LedgerUnit) -> tuple[LedgerTransaction, int]:
            # adjust_credits re-checks the balance inside the unit
            remaining = await tx.adjust_credits(account_id, -cost)
            entry = await tx.insert_transaction(
                LedgerTransaction(
                    type=TransactionType.CONSUMPTION,
                    status=TransactionStatus.COMPLETED,
                    amount=-cost,
                    account_id=account_id,
                    related_job_id=job_id,
                    metadata=TransactionMetadata(
                        interview_type=getattr(interview_type, "value", interview_type),
                        duration_minutes=duration_minutes,
                    ),
                )
            )
            return entry, remaining

        entry, remaining = await self.store.run_atomic(unit)
        log.info("credits_consumed", account_id=account_id, job_id=job_id, cost=cost, remaining=remaining)
        return {
            "transaction_id": entry.id,
            "credits_used": cost,
            "remaining_credits": remaining,
        }

    async def add_bonus(self, account_id: str, credits: int, reason: str) -> dict:
        if credits <= 0:
            raise ValidationError("credits must be positive", details={"credits": credits})

        async def unit(tx: LedgerUnit) -> tuple[LedgerTransaction, int]:
            balance = await tx.adjust_credits(account_id, credits)
            entry = await tx.insert_transaction(
                LedgerTransaction(
                    type=TransactionType.BONUS,
                    status=TransactionStatus.COMPLETED,
                    amount=credits,
                    account_id=account_id,
                    metadata=TransactionMetadata(reason=reason),
                )
            )
            return entry, balance

        entry, balance = await self.store.run_atomic(unit)
        log.info("bonus_added", account_id=account_id, credits=credits, reason=reason, balance=balance)
        return {
            "transaction_id": entry.id,
            "credits_added": credits,
            "new_balance": balance,
        }

    async def refund(self, transaction_id: str, credits: int | None = None, reason: str | None = None) -> dict:
        """Give back credits taken by a COMPLETED consumption.

        Partial refunds are allowed; all refunds against one consumption
        together never exceed what it debited.
        """
        original = await self.store.find_transaction(transaction_id)
        if not original:
            raise NotFoundError("Transaction not found")
        if original.type != TransactionType.CONSUMPTION:
            raise InvalidStateError("Only consumption transactions can be refunded", current_status=original.status.value)
        if original.status != TransactionStatus.COMPLETED:
            raise InvalidStateError("Transaction is not completed", current_status=original.status.value)
        if credits is not None and credits <= 0:
            raise ValidationError("credits must be positive", details={"credits": credits})
        debited = -original.amount

        async def unit(tx: LedgerUnit) -> tuple[LedgerTransaction, int]:
            refundable = debited - await tx.refunded_total(original.id)
            amount = refundable if credits is None else credits
            if refundable <= 0 or amount > refundable:
                raise InvalidStateError(
                    f"Refund exceeds refundable credits ({max(refundable, 0)})",
                    current_status=original.status.value,
                )
            balance = await tx.adjust_credits(original.account_id, amount)
            entry = await tx.insert_transaction(
                LedgerTransaction(
                    type=TransactionType.REFUND,
                    status=TransactionStatus.COMPLETED,
                    amount=amount,
                    account_id=original.account_id,
                    related_job_id=original.related_job_id,
                    metadata=TransactionMetadata(
                        reason=reason or "Refund",
                        refunded_transaction_id=original.id,
                    ),
                )
            )
            return entry, balance

        entry, balance = await self.store.run_atomic(unit)
        log.info(
            "credits_refunded",
            account_id=original.account_id,
            transaction_id=original.id,
            credits=entry.amount,
            balance=balance,
        )
        return {
            "transaction_id": entry.id,
            "refunded_transaction_id": original.id,
            "credits_refunded": entry.amount,
            "new_balance": balance,
        }
