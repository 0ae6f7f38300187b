"""MongoDB ledger store (beanie documents, motor sessions).

Atomic units are multi-document transactions, so the server must run as a
replica set. Balance decrements and status transitions are conditional
updates inside the transaction; concurrent units on the same document hit a
write conflict and ``with_transaction`` re-runs the losing unit from scratch.
"""

from typing import Awaitable, Callable, TypeVar

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.config import Settings
from app.core.exceptions import ConflictError, InsufficientCreditsError, NotFoundError
from app.core.logging import get_logger
from app.db.init import init_db
from app.models.credit_package import CreditPackage
from app.models.credit_transaction import CreditTransaction
from app.models.user import User
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

log = get_logger(__name__)

T = TypeVar("T")


def _account(doc: User) -> Account:
    return Account.model_validate(doc.model_dump())


def _transaction(doc: CreditTransaction) -> LedgerTransaction:
    return LedgerTransaction.model_validate(doc.model_dump())


def _package(doc: CreditPackage) -> Package:
    return Package.model_validate(doc.model_dump())


class MongoLedgerUnit(LedgerUnit):
    def __init__(self, session: AsyncIOMotorClientSession) -> None:
        self.session = session

    async def get_account(self, account_id: str) -> Account | None:
        doc = await User.get(account_id, session=self.session)
        return _account(doc) if doc else None

    async def insert_account(self, account: Account) -> Account:
        try:
            await User(**account.model_dump()).insert(session=self.session)
        except DuplicateKeyError as e:
            raise ConflictError("Email already registered") from e
        return account

    async def adjust_credits(self, account_id: str, delta: int) -> int:
        query: dict = {"_id": account_id}
        if delta < 0:
            query["credits"] = {"$gte": -delta}
        raw = await User.get_motor_collection().find_one_and_update(
            query,
            {"$inc": {"credits": delta}, "$set": {"updated_at": utcnow()}},
            session=self.session,
            return_document=ReturnDocument.AFTER,
        )
        if raw is not None:
            return raw["credits"]
        current = await User.get_motor_collection().find_one(
            {"_id": account_id}, {"credits": 1}, session=self.session
        )
        if current is None:
            raise NotFoundError("Account not found")
        raise InsufficientCreditsError(required=-delta, available=current["credits"])

    async def insert_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        doc = CreditTransaction(
            **transaction.model_dump(exclude={"metadata"}),
            metadata=transaction.metadata.model_dump(exclude_none=True),
        )
        await doc.insert(session=self.session)
        return transaction

    async def transition_status(
        self,
        transaction_id: str,
        target: TransactionStatus,
        metadata: TransactionMetadata | None = None,
    ) -> LedgerTransaction | None:
        sources = [s.value for s in TransactionStatus if can_transition(s, target)]
        update = {"status": target.value, "updated_at": utcnow()}
        if metadata is not None:
            # per-key $set keeps existing metadata keys
            for key, value in metadata.model_dump(exclude_none=True).items():
                update[f"metadata.{key}"] = value
        raw = await CreditTransaction.get_motor_collection().find_one_and_update(
            {"_id": transaction_id, "status": {"$in": sources}},
            {"$set": update},
            session=self.session,
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return _transaction(CreditTransaction.model_validate(raw))

    async def refunded_total(self, transaction_id: str) -> int:
        pipeline = [
            {
                "$match": {
                    "type": TransactionType.REFUND.value,
                    "metadata.refunded_transaction_id": transaction_id,
                }
            },
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
        ]
        cursor = CreditTransaction.get_motor_collection().aggregate(pipeline, session=self.session)
        rows = await cursor.to_list(length=1)
        return rows[0]["total"] if rows else 0


class MongoLedgerStore(LedgerStore):
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.client: AsyncIOMotorClient | None = None

    async def connect(self) -> None:
        self.client = await init_db(self.settings)
        log.info("ledger_store_connected", backend="mongo", db=self.settings.mongodb_db_name)

    async def run_atomic(self, fn: Callable[[LedgerUnit], Awaitable[T]]) -> T:
        if self.client is None:
            raise RuntimeError("MongoLedgerStore.connect() was not awaited")

        async def callback(session: AsyncIOMotorClientSession) -> T:
            return await fn(MongoLedgerUnit(session))

        async with await self.client.start_session() as session:
            return await session.with_transaction(callback)

    async def get_account(self, account_id: str) -> Account | None:
        doc = await User.get(account_id)
        return _account(doc) if doc else None

    async def find_account_by_email(self, email: str) -> Account | None:
        doc = await User.find_one(User.email == email)
        return _account(doc) if doc else None

    async def find_transaction(self, transaction_id: str) -> LedgerTransaction | None:
        doc = await CreditTransaction.get(transaction_id)
        return _transaction(doc) if doc else None

    async def find_transaction_by_payment_ref(self, external_payment_ref: str) -> LedgerTransaction | None:
        doc = await CreditTransaction.find_one(CreditTransaction.external_payment_ref == external_payment_ref)
        return _transaction(doc) if doc else None

    async def list_transactions(
        self,
        account_id: str,
        limit: int,
        offset: int,
        type: TransactionType | None = None,
    ) -> tuple[int, list[LedgerTransaction]]:
        query = CreditTransaction.find(CreditTransaction.account_id == account_id)
        if type is not None:
            query = query.find(CreditTransaction.type == type)
        total = await query.count()
        docs = await query.sort("-created_at", "-_id").skip(offset).limit(limit).to_list()
        return total, [_transaction(d) for d in docs]

    async def get_package(self, package_id: str) -> Package | None:
        doc = await CreditPackage.get(package_id)
        return _package(doc) if doc else None

    async def find_package_by_gateway_price(self, gateway_price_id: str) -> Package | None:
        doc = await CreditPackage.find_one(CreditPackage.gateway_price_id == gateway_price_id)
        return _package(doc) if doc else None

    async def list_packages(self, active_only: bool = True) -> list[Package]:
        query = CreditPackage.find(CreditPackage.is_active == True) if active_only else CreditPackage.find_all()  # noqa: E712
        docs = await query.sort(+CreditPackage.price).to_list()
        return [_package(d) for d in docs]

    async def insert_package(self, package: Package) -> Package:
        await CreditPackage(**package.model_dump()).insert()
        return package

    async def count_packages(self) -> int:
        return await CreditPackage.find_all().count()
