"""In-process ledger store for local development and tests.

A single asyncio.Lock serializes atomic units. Each unit writes into its own
copies of the account and transaction maps; the copies replace the live maps
only after the unit's function returns, so an exception leaves nothing behind.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from app.core.exceptions import ConflictError, InsufficientCreditsError, NotFoundError
from app.schemas.ledger import (
    Account,
    LedgerTransaction,
    Package,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
    can_transition,
    utcnow,
)
from app.storage.base import LedgerStore, LedgerUnit

T = TypeVar("T")


class MemoryLedgerUnit(LedgerUnit):
    def __init__(self, accounts: dict[str, Account], transactions: dict[str, LedgerTransaction]) -> None:
        self.accounts = accounts
        self.transactions = transactions

    async def get_account(self, account_id: str) -> Account | None:
        return self.accounts.get(account_id)

    async def insert_account(self, account: Account) -> Account:
        if any(a.email == account.email for a in self.accounts.values()):
            raise ConflictError("Email already registered")
        self.accounts[account.id] = account
        return account

    async def adjust_credits(self, account_id: str, delta: int) -> int:
        account = self.accounts.get(account_id)
        if account is None:
            raise NotFoundError("Account not found")
        balance = account.credits + delta
        if balance < 0:
            raise InsufficientCreditsError(required=-delta, available=account.credits)
        self.accounts[account_id] = account.model_copy(update={"credits": balance, "updated_at": utcnow()})
        return balance

    async def insert_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        self.transactions[transaction.id] = transaction
        return transaction

    async def transition_status(
        self,
        transaction_id: str,
        target: TransactionStatus,
        metadata: TransactionMetadata | None = None,
    ) -> LedgerTransaction | None:
        current = self.transactions.get(transaction_id)
        if current is None or not can_transition(current.status, target):
            return None
        updated = current.model_copy(
            update={
                "status": target,
                "metadata": current.metadata.merge(metadata),
                "updated_at": utcnow(),
            }
        )
        self.transactions[transaction_id] = updated
        return updated

    async def refunded_total(self, transaction_id: str) -> int:
        return sum(
            t.amount
            for t in self.transactions.values()
            if t.type == TransactionType.REFUND and t.metadata.refunded_transaction_id == transaction_id
        )


class MemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, LedgerTransaction] = {}
        self._packages: dict[str, Package] = {}

    async def run_atomic(self, fn: Callable[[LedgerUnit], Awaitable[T]]) -> T:
        async with self._lock:
            unit = MemoryLedgerUnit(dict(self._accounts), dict(self._transactions))
            result = await fn(unit)
            self._accounts = unit.accounts
            self._transactions = unit.transactions
            return result

    async def get_account(self, account_id: str) -> Account | None:
        return self._accounts.get(account_id)

    async def find_account_by_email(self, email: str) -> Account | None:
        return next((a for a in self._accounts.values() if a.email == email), None)

    async def find_transaction(self, transaction_id: str) -> LedgerTransaction | None:
        return self._transactions.get(transaction_id)

    async def find_transaction_by_payment_ref(self, external_payment_ref: str) -> LedgerTransaction | None:
        return next(
            (t for t in self._transactions.values() if t.external_payment_ref == external_payment_ref),
            None,
        )

    async def list_transactions(
        self,
        account_id: str,
        limit: int,
        offset: int,
        type: TransactionType | None = None,
    ) -> tuple[int, list[LedgerTransaction]]:
        rows = [
            t
            for t in self._transactions.values()
            if t.account_id == account_id and (type is None or t.type == type)
        ]
        # same order as the Mongo store: created_at, then id
        rows.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return len(rows), rows[offset : offset + limit]

    async def get_package(self, package_id: str) -> Package | None:
        return self._packages.get(package_id)

    async def find_package_by_gateway_price(self, gateway_price_id: str) -> Package | None:
        return next((p for p in self._packages.values() if p.gateway_price_id == gateway_price_id), None)

    async def list_packages(self, active_only: bool = True) -> list[Package]:
        packages = [p for p in self._packages.values() if p.is_active or not active_only]
        return sorted(packages, key=lambda p: p.price)

    async def insert_package(self, package: Package) -> Package:
        self._packages[package.id] = package
        return package

    async def count_packages(self) -> int:
        return len(self._packages)
