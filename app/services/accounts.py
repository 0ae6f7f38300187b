"""Accounts: the billing identity that owns a credit balance."""

from app.core.exceptions import ConflictError, NotFoundError
from app.core.logging import get_logger
from app.schemas.ledger import (
    Account,
    LedgerTransaction,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
)
from app.storage.base import LedgerStore, LedgerUnit

log = get_logger(__name__)

SIGNUP_BONUS_REASON = "signup_bonus"


class AccountService:
    def __init__(self, store: LedgerStore, signup_bonus_credits: int = 0) -> None:
        self.store = store
        self.signup_bonus_credits = signup_bonus_credits

    async def create_account(self, full_name: str, email: str) -> Account:
        email = email.strip().lower()
        if await self.store.find_account_by_email(email):
            raise ConflictError("Email already registered", details={"email": email})
        account = Account(full_name=full_name.strip(), email=email)
        bonus = self.signup_bonus_credits

        async def unit(tx: LedgerUnit) -> Account:
            await tx.insert_account(account)
            if bonus <= 0:
                return account
            balance = await tx.adjust_credits(account.id, bonus)
            await tx.insert_transaction(
                LedgerTransaction(
                    type=TransactionType.BONUS,
                    status=TransactionStatus.COMPLETED,
                    amount=bonus,
                    account_id=account.id,
                    metadata=TransactionMetadata(reason=SIGNUP_BONUS_REASON),
                )
            )
            return account.model_copy(update={"credits": balance})

        created = await self.store.run_atomic(unit)
        log.info("account_created", account_id=created.id, signup_bonus=bonus)
        return created

    async def get_account(self, account_id: str) -> Account:
        account = await self.store.get_account(account_id)
        if not account:
            raise NotFoundError("Account not found")
        return account
