"""Credit purchases: payment intents, confirmation, webhooks and cancellation.

A purchase is a PURCHASE ledger transaction created PENDING with the gateway's
charge id in ``external_payment_ref``. Client confirmation and gateway
webhooks both end in ``apply_gateway_outcome``, which only ever moves a
PENDING row (compare-and-swap on status) and credits the balance in the same
atomic unit. A duplicate webhook or a confirmation racing a webhook therefore
finds the row already final and credits nothing.
"""

from pydantic import BaseModel

from app.core.exceptions import GatewayError, InvalidStateError, NotFoundError
from app.core.logging import get_logger
from app.core.pagination import paginate
from app.core.security import generate_id
from app.gateways.base import ChargeStatus, PaymentGateway
from app.gateways.simulated import SimulatedGateway
from app.schemas.ledger import (
    LedgerTransaction,
    Package,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
    money,
    utcnow,
)
from app.storage.base import LedgerStore, LedgerUnit

log = get_logger(__name__)


class PaymentOutcome(BaseModel):
    transaction: LedgerTransaction
    applied: bool = False  # False when the row was already final
    balance: int | None = None


class PaymentService:
    def __init__(self, store: LedgerStore, gateway: PaymentGateway) -> None:
        self.store = store
        self.gateway = gateway

    async def _resolve_package(self, package_ref: str) -> Package:
        package = await self.store.get_package(package_ref)
        if package is None:
            package = await self.store.find_package_by_gateway_price(package_ref)
        if package is None or not package.is_active:
            raise NotFoundError("Credit package not found or inactive")
        return package

    async def _resolve_transaction(self, reference: str) -> LedgerTransaction | None:
        transaction = await self.store.find_transaction(reference)
        if transaction is None:
            transaction = await self.store.find_transaction_by_payment_ref(reference)
        return transaction

    async def create_intent(self, account_id: str, package_ref: str) -> dict:
        """Create a PENDING purchase and the gateway charge that will pay for it.

        The charge is requested first, tagged with the new transaction id; the
        row is inserted only once the gateway has answered, so a gateway
        failure leaves no pending row behind.
        """
        account = await self.store.get_account(account_id)
        if not account:
            raise NotFoundError("Account not found")
        package = await self._resolve_package(package_ref)

        transaction_id = generate_id()
        charge = await self.gateway.create_charge(
            package.price,
            package.currency,
            metadata={
                "transaction_id": transaction_id,
                "account_id": account.id,
                "package_id": package.id,
                "credits": str(package.credits),
            },
            description=f"Purchase of {package.credits} credits - {package.name}",
            receipt_email=account.email,
        )
        transaction = LedgerTransaction(
            id=transaction_id,
            type=TransactionType.PURCHASE,
            status=TransactionStatus.PENDING,
            amount=package.credits,
            price=package.price,
            currency=package.currency,
            account_id=account.id,
            related_package_id=package.id,
            external_payment_ref=charge.charge_id,
            metadata=TransactionMetadata(
                gateway=self.gateway.name,
                gateway_status=charge.raw_status,
                package_name=package.name,
                gateway_price_id=package.gateway_price_id,
            ),
        )

        async def unit(tx: LedgerUnit) -> LedgerTransaction:
            return await tx.insert_transaction(transaction)

        try:
            await self.store.run_atomic(unit)
        except Exception:
            # the charge exists but nothing points at it; its webhooks will be ignored
            log.exception("purchase_intent_insert_failed", transaction_id=transaction_id, charge_id=charge.charge_id)
            raise
        log.info(
            "purchase_intent_created",
            account_id=account.id,
            transaction_id=transaction_id,
            charge_id=charge.charge_id,
            credits=package.credits,
            gateway=self.gateway.name,
        )
        return {
            "transaction_id": transaction_id,
            "status": transaction.status.value,
            "gateway": self.gateway.name,
            "gateway_status": charge.raw_status,
            "charge_id": charge.charge_id,
            "client_secret": charge.client_secret,
            "publishable_key": self.gateway.public_key,
            "amount": money(package.price),
            "currency": package.currency,
            "credits": package.credits,
            "package": {
                "id": package.id,
                "name": package.name,
                "description": package.description,
                "credits": package.credits,
                "price": money(package.price),
            },
        }

    async def apply_gateway_outcome(
        self,
        transaction: LedgerTransaction,
        status: ChargeStatus,
        *,
        source: str,
        reference: str | None = None,
        raw_status: str | None = None,
        failure_reason: str | None = None,
    ) -> PaymentOutcome:
        """Apply a gateway status to a purchase; no-op unless it is still PENDING."""
        if transaction.status != TransactionStatus.PENDING:
            return PaymentOutcome(transaction=transaction)

        if status == ChargeStatus.SUCCEEDED:
            metadata = TransactionMetadata(
                completed_at=utcnow(),
                gateway_reference=reference,
                gateway_status=raw_status,
                confirmed_via=source,
            )

            async def complete(tx: LedgerUnit) -> PaymentOutcome | None:
                updated = await tx.transition_status(transaction.id, TransactionStatus.COMPLETED, metadata)
                if updated is None:
                    return None
                balance = await tx.adjust_credits(updated.account_id, updated.amount)
                return PaymentOutcome(transaction=updated, applied=True, balance=balance)

            outcome = await self.store.run_atomic(complete)
        elif status == ChargeStatus.FAILED:
            metadata = TransactionMetadata(
                failed_at=utcnow(),
                failure_reason=failure_reason or "Payment failed",
                gateway_reference=reference,
                gateway_status=raw_status,
                confirmed_via=source,
            )

            async def fail(tx: LedgerUnit) -> PaymentOutcome | None:
                updated = await tx.transition_status(transaction.id, TransactionStatus.FAILED, metadata)
                return PaymentOutcome(transaction=updated, applied=True) if updated else None

            outcome = await self.store.run_atomic(fail)
        else:
            return PaymentOutcome(transaction=transaction)

        if outcome is None:
            # lost the race to another confirmation path
            current = await self.store.find_transaction(transaction.id)
            log.info("payment_outcome_skipped", transaction_id=transaction.id, source=source, status=current.status.value)
            return PaymentOutcome(transaction=current)
        log.info(
            "payment_completed" if status == ChargeStatus.SUCCEEDED else "payment_failed",
            transaction_id=transaction.id,
            account_id=transaction.account_id,
            credits=transaction.amount,
            source=source,
            balance=outcome.balance,
        )
        return outcome

    async def confirm(self, reference: str) -> dict:
        """Client-side confirmation by transaction id or gateway charge id."""
        transaction = await self._resolve_transaction(reference)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        if transaction.type != TransactionType.PURCHASE:
            raise InvalidStateError("Only purchase transactions can be confirmed", current_status=transaction.status.value)
        if transaction.status == TransactionStatus.COMPLETED:
            return await self._confirmation(PaymentOutcome(transaction=transaction))
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidStateError("Transaction already processed", current_status=transaction.status.value)
        if not transaction.external_payment_ref:
            raise GatewayError("Transaction has no gateway charge")

        charge = await self.gateway.retrieve_charge(transaction.external_payment_ref)
        echoed = charge.metadata.get("transaction_id")
        if echoed and echoed != transaction.id:
            raise GatewayError("Gateway charge belongs to another transaction")
        if charge.status in (ChargeStatus.PENDING, ChargeStatus.REQUIRES_ACTION):
            return {
                "transaction_id": transaction.id,
                "status": transaction.status.value,
                "gateway_status": charge.raw_status,
                "requires_action": charge.status == ChargeStatus.REQUIRES_ACTION,
                "client_secret": charge.client_secret,
                "failure_reason": charge.failure_reason,
                "already_processed": False,
            }

        outcome = await self.apply_gateway_outcome(
            transaction,
            charge.status,
            source="confirmation",
            reference=charge.charge_id,
            raw_status=charge.raw_status,
            failure_reason=charge.failure_reason,
        )
        if outcome.transaction.status == TransactionStatus.CANCELLED:
            raise InvalidStateError("Transaction already processed", current_status=outcome.transaction.status.value)
        return await self._confirmation(outcome)

    async def _confirmation(self, outcome: PaymentOutcome) -> dict:
        transaction = outcome.transaction
        balance = outcome.balance
        if balance is None:
            account = await self.store.get_account(transaction.account_id)
            balance = account.credits if account else None
        completed = transaction.status == TransactionStatus.COMPLETED
        return {
            "transaction_id": transaction.id,
            "status": transaction.status.value,
            "gateway_status": transaction.metadata.gateway_status,
            "credits_purchased": transaction.amount if completed else 0,
            "new_balance": balance,
            "already_processed": not outcome.applied,
            "failure_reason": transaction.metadata.failure_reason,
            "package": {
                "id": transaction.related_package_id,
                "name": transaction.metadata.package_name,
                "credits": transaction.amount,
                "price": money(transaction.price),
            },
        }

    async def handle_webhook(self, payload: bytes, signature: str | None) -> dict:
        """Verify the gateway signature, then apply the event at most once."""
        event = self.gateway.verify_webhook(payload, signature)
        if event.status is None:
            log.info("webhook_ignored", event_id=event.event_id, event_type=event.event_type, reason="no_final_outcome")
            return {"received": True, "processed": False}

        transaction = None
        if event.charge_id:
            transaction = await self.store.find_transaction_by_payment_ref(event.charge_id)
        if transaction is None and event.transaction_id:
            transaction = await self.store.find_transaction(event.transaction_id)
            if transaction and transaction.external_payment_ref not in (None, event.charge_id):
                transaction = None
        if transaction is None or transaction.type != TransactionType.PURCHASE:
            log.warning(
                "webhook_ignored",
                event_id=event.event_id,
                charge_id=event.charge_id,
                reason="transaction_not_found",
            )
            return {"received": True, "processed": False}

        outcome = await self.apply_gateway_outcome(
            transaction,
            event.status,
            source="webhook",
            reference=event.charge_id,
            raw_status=event.raw_status,
            failure_reason=event.failure_reason,
        )
        if not outcome.applied:
            log.info(
                "webhook_ignored",
                event_id=event.event_id,
                transaction_id=transaction.id,
                reason="already_processed",
                status=outcome.transaction.status.value,
            )
        return {
            "received": True,
            "processed": outcome.applied,
            "transaction_id": outcome.transaction.id,
            "status": outcome.transaction.status.value,
        }

    async def cancel(self, transaction_id: str, reason: str | None = None) -> LedgerTransaction:
        transaction = await self.store.find_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidStateError("Only pending transactions can be cancelled", current_status=transaction.status.value)
        metadata = TransactionMetadata(cancelled_at=utcnow(), cancellation_reason=reason or "User cancelled")

        async def unit(tx: LedgerUnit) -> LedgerTransaction | None:
            return await tx.transition_status(transaction.id, TransactionStatus.CANCELLED, metadata)

        updated = await self.store.run_atomic(unit)
        if updated is None:
            current = await self.store.find_transaction(transaction.id)
            raise InvalidStateError("Only pending transactions can be cancelled", current_status=current.status.value)
        log.info("payment_cancelled", transaction_id=transaction.id, reason=metadata.cancellation_reason)
        return updated

    async def payment_history(
        self, account_id: str, page: int = 1, per_page: int = 20
    ) -> tuple[int, list[LedgerTransaction]]:
        if not await self.store.get_account(account_id):
            raise NotFoundError("Account not found")
        limit, offset = paginate(page, per_page)
        return await self.store.list_transactions(account_id, limit, offset, type=TransactionType.PURCHASE)

    async def simulate_payment(self, charge_id: str, succeeded: bool = True, failure_reason: str | None = None) -> dict:
        """Settle a simulated charge and confirm it, standing in for the customer's checkout."""
        if not isinstance(self.gateway, SimulatedGateway):
            raise NotFoundError("Payment simulation is only available with the simulated gateway")
        self.gateway.settle(charge_id, succeeded=succeeded, failure_reason=failure_reason)
        return await self.confirm(charge_id)

    def config_status(self) -> dict:
        return {
            "gateway": self.gateway.name,
            "configured": self.gateway.configured,
            "publishable_key_configured": bool(self.gateway.public_key),
        }
