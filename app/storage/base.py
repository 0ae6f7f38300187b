"""Ledger store interface.

The store exclusively owns ``Account.credits`` and the ledger transaction log.
Reads go through the store directly; every balance or status mutation goes
through ``run_atomic`` so the balance change and its transaction row commit
together or not at all.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, TypeVar

from app.core.config import Settings
from app.schemas.ledger import (
    Account,
    LedgerTransaction,
    Package,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)

T = TypeVar("T")


class LedgerUnit(ABC):
    """Mutations available inside one atomic unit."""

    @abstractmethod
    async def get_account(self, account_id: str) -> Account | None:
        ...

    @abstractmethod
    async def insert_account(self, account: Account) -> Account:
        """Raises ConflictError when the email is already registered."""
        ...

    @abstractmethod
    async def adjust_credits(self, account_id: str, delta: int) -> int:
        """Apply ``delta`` to the balance; return the new balance.

        Raises NotFoundError if the account is missing and
        InsufficientCreditsError if the result would be negative. The check
        and the write use the same snapshot of the balance.
        """
        ...

    @abstractmethod
    async def insert_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        ...

    @abstractmethod
    async def transition_status(
        self,
        transaction_id: str,
        target: TransactionStatus,
        metadata: TransactionMetadata | None = None,
    ) -> LedgerTransaction | None:
        """Move a PENDING transaction to ``target`` and merge ``metadata``.

        Compare-and-swap on status: returns the updated transaction, or None
        when the row is no longer PENDING (someone else finalized it).
        """
        ...

    @abstractmethod
    async def refunded_total(self, transaction_id: str) -> int:
        """Sum of REFUND amounts already issued against a transaction."""
        ...


class LedgerStore(ABC):
    async def connect(self) -> None:
        """Open connections / create indexes. No-op by default."""

    @abstractmethod
    async def run_atomic(self, fn: Callable[[LedgerUnit], Awaitable[T]]) -> T:
        """Run ``fn`` as one atomic unit; any exception rolls everything back."""
        ...

    # Accounts

    @abstractmethod
    async def get_account(self, account_id: str) -> Account | None:
        ...

    @abstractmethod
    async def find_account_by_email(self, email: str) -> Account | None:
        ...

    # Transactions

    @abstractmethod
    async def find_transaction(self, transaction_id: str) -> LedgerTransaction | None:
        ...

    @abstractmethod
    async def find_transaction_by_payment_ref(self, external_payment_ref: str) -> LedgerTransaction | None:
        ...

    @abstractmethod
    async def list_transactions(
        self,
        account_id: str,
        limit: int,
        offset: int,
        type: TransactionType | None = None,
    ) -> tuple[int, list[LedgerTransaction]]:
        """Return (total, page) newest first."""
        ...

    # Catalog

    @abstractmethod
    async def get_package(self, package_id: str) -> Package | None:
        ...

    @abstractmethod
    async def find_package_by_gateway_price(self, gateway_price_id: str) -> Package | None:
        ...

    @abstractmethod
    async def list_packages(self, active_only: bool = True) -> list[Package]:
        """Packages ordered by price ascending."""
        ...

    @abstractmethod
    async def insert_package(self, package: Package) -> Package:
        ...

    @abstractmethod
    async def count_packages(self) -> int:
        ...


def build_store(settings: Settings) -> LedgerStore:
    if settings.ledger_backend == "memory":
        from app.storage.memory import MemoryLedgerStore
        return MemoryLedgerStore()
    from app.storage.mongo import MongoLedgerStore
    return MongoLedgerStore(settings)
