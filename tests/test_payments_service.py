"""Purchase lifecycle through the simulated gateway."""

import asyncio
import json

import pytest

from app.core.exceptions import GatewayError, InvalidStateError, NotFoundError, WebhookSignatureError
from app.core.security import sign_webhook_payload
from app.schemas.ledger import TransactionStatus, TransactionType

pytestmark = pytest.mark.asyncio


async def _intent(payment_service, account, package):
    return await payment_service.create_intent(account.id, package.id)


async def test_create_intent_records_pending_purchase(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    assert intent["status"] == "PENDING"
    assert intent["amount"] == "19.90"
    assert intent["credits"] == 25
    assert intent["client_secret"]
    assert intent["gateway"] == "simulated"

    tx = await store.find_transaction(intent["transaction_id"])
    assert tx.type == TransactionType.PURCHASE
    assert tx.status == TransactionStatus.PENDING
    assert tx.amount == 25
    assert str(tx.price) == "19.90"
    assert tx.external_payment_ref == intent["charge_id"]
    assert tx.metadata.package_name == "Popular"
    # the charge carries the ledger id so webhooks can find the row
    assert gateway.charges[intent["charge_id"]].metadata["transaction_id"] == tx.id
    assert (await store.get_account(account.id)).credits == 0


async def test_create_intent_by_gateway_price_id(payment_service, account, package):
    intent = await payment_service.create_intent(account.id, "price_popular")
    assert intent["package"]["id"] == package.id


async def test_create_intent_unknown_package(payment_service, account):
    with pytest.raises(NotFoundError):
        await payment_service.create_intent(account.id, "nope")


async def test_create_intent_inactive_package(payment_service, store, account, package):
    store._packages[package.id] = package.model_copy(update={"is_active": False})
    with pytest.raises(NotFoundError):
        await payment_service.create_intent(account.id, package.id)


async def test_create_intent_unknown_account(payment_service, package):
    with pytest.raises(NotFoundError):
        await payment_service.create_intent("missing", package.id)


async def test_gateway_failure_leaves_no_row(payment_service, store, gateway, account, package, monkeypatch):
    async def down(*args, **kwargs):
        raise GatewayError("gateway unavailable")

    monkeypatch.setattr(gateway, "create_charge", down)
    with pytest.raises(GatewayError):
        await _intent(payment_service, account, package)
    total, _ = await store.list_transactions(account.id, 50, 0)
    assert total == 0


async def test_confirm_succeeded_charge_credits_once(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"])

    result = await payment_service.confirm(intent["transaction_id"])
    assert result["status"] == "COMPLETED"
    assert result["credits_purchased"] == 25
    assert result["new_balance"] == 25
    assert result["already_processed"] is False

    replay = await payment_service.confirm(intent["transaction_id"])
    assert replay["already_processed"] is True
    assert replay["new_balance"] == 25
    assert (await store.get_account(account.id)).credits == 25

    tx = await store.find_transaction(intent["transaction_id"])
    assert tx.metadata.confirmed_via == "confirmation"
    assert tx.metadata.completed_at is not None
    assert tx.metadata.package_name == "Popular"


async def test_confirm_by_charge_id(payment_service, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"])
    result = await payment_service.confirm(intent["charge_id"])
    assert result["transaction_id"] == intent["transaction_id"]
    assert result["status"] == "COMPLETED"


async def test_confirm_pending_charge_returns_client_secret(payment_service, store, account, package):
    intent = await _intent(payment_service, account, package)
    result = await payment_service.confirm(intent["transaction_id"])
    assert result["status"] == "PENDING"
    assert result["client_secret"] == intent["client_secret"]
    assert (await store.get_account(account.id)).credits == 0


async def test_confirm_failed_charge(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"], succeeded=False, failure_reason="Insufficient funds")
    result = await payment_service.confirm(intent["transaction_id"])
    assert result["status"] == "FAILED"
    assert result["failure_reason"] == "Insufficient funds"
    assert (await store.get_account(account.id)).credits == 0

    with pytest.raises(InvalidStateError):
        await payment_service.confirm(intent["transaction_id"])


async def test_confirm_unknown_reference(payment_service):
    with pytest.raises(NotFoundError):
        await payment_service.confirm("missing")


async def test_confirm_rejects_non_purchase(payment_service, credit_service, account):
    bonus = await credit_service.add_bonus(account.id, 5, "gift")
    with pytest.raises(InvalidStateError):
        await payment_service.confirm(bonus["transaction_id"])


async def test_webhook_completes_purchase(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"])
    payload, signature = gateway.build_webhook(intent["charge_id"])

    result = await payment_service.handle_webhook(payload, signature)
    assert result == {
        "received": True,
        "processed": True,
        "transaction_id": intent["transaction_id"],
        "status": "COMPLETED",
    }
    assert (await store.get_account(account.id)).credits == 25


async def test_duplicate_webhook_is_a_no_op(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"])
    payload, signature = gateway.build_webhook(intent["charge_id"])

    await payment_service.handle_webhook(payload, signature)
    again = await payment_service.handle_webhook(payload, signature)
    assert again["processed"] is False
    assert (await store.get_account(account.id)).credits == 25


async def test_webhook_and_confirm_race_credit_once(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"])
    payload, signature = gateway.build_webhook(intent["charge_id"])

    webhook, confirmation = await asyncio.gather(
        payment_service.handle_webhook(payload, signature),
        payment_service.confirm(intent["transaction_id"]),
    )
    assert webhook["status"] == confirmation["status"] == "COMPLETED"
    assert [webhook["processed"], not confirmation["already_processed"]].count(True) == 1
    assert (await store.get_account(account.id)).credits == 25


async def test_webhook_bad_signature_touches_nothing(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"])
    payload, _ = gateway.build_webhook(intent["charge_id"])

    with pytest.raises(WebhookSignatureError):
        await payment_service.handle_webhook(payload, "deadbeef")
    with pytest.raises(WebhookSignatureError):
        await payment_service.handle_webhook(payload, None)
    tx = await store.find_transaction(intent["transaction_id"])
    assert tx.status == TransactionStatus.PENDING


async def test_webhook_failed_charge(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    gateway.settle(intent["charge_id"], succeeded=False, failure_reason="Card expired")
    payload, signature = gateway.build_webhook(intent["charge_id"])

    result = await payment_service.handle_webhook(payload, signature)
    assert result["status"] == "FAILED"
    tx = await store.find_transaction(intent["transaction_id"])
    assert tx.metadata.failure_reason == "Card expired"
    assert tx.metadata.confirmed_via == "webhook"
    assert (await store.get_account(account.id)).credits == 0


async def test_webhook_unknown_event_is_ignored(payment_service, gateway):
    payload = json.dumps({"id": "evt_1", "type": "customer.created", "data": {}}).encode()
    result = await payment_service.handle_webhook(payload, sign_webhook_payload(payload, gateway.webhook_secret))
    assert result == {"received": True, "processed": False}


async def test_webhook_unknown_charge_is_ignored(payment_service, gateway):
    payload = json.dumps(
        {"id": "evt_2", "type": "charge.succeeded", "data": {"charge_id": "sim_unknown", "status": "succeeded"}}
    ).encode()
    result = await payment_service.handle_webhook(payload, sign_webhook_payload(payload, gateway.webhook_secret))
    assert result == {"received": True, "processed": False}


async def test_webhook_pending_event_is_ignored(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    payload, signature = gateway.build_webhook(intent["charge_id"])
    result = await payment_service.handle_webhook(payload, signature)
    assert result["processed"] is False
    assert (await store.find_transaction(intent["transaction_id"])).status == TransactionStatus.PENDING


async def test_cancel_pending_purchase(payment_service, store, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    cancelled = await payment_service.cancel(intent["transaction_id"], "changed my mind")
    assert cancelled.status == TransactionStatus.CANCELLED
    assert cancelled.metadata.cancellation_reason == "changed my mind"
    assert cancelled.metadata.cancelled_at is not None

    with pytest.raises(InvalidStateError):
        await payment_service.cancel(intent["transaction_id"])
    with pytest.raises(InvalidStateError):
        await payment_service.confirm(intent["transaction_id"])

    # a late success webhook cannot revive a cancelled purchase
    gateway.settle(intent["charge_id"])
    payload, signature = gateway.build_webhook(intent["charge_id"])
    result = await payment_service.handle_webhook(payload, signature)
    assert result["processed"] is False
    assert (await store.get_account(account.id)).credits == 0


async def test_cancel_default_reason(payment_service, account, package):
    intent = await _intent(payment_service, account, package)
    cancelled = await payment_service.cancel(intent["transaction_id"])
    assert cancelled.metadata.cancellation_reason == "User cancelled"


async def test_cancel_unknown(payment_service):
    with pytest.raises(NotFoundError):
        await payment_service.cancel("missing")


async def test_payment_history_lists_purchases_only(payment_service, credit_service, account, package):
    await credit_service.add_bonus(account.id, 5, "gift")
    first = await _intent(payment_service, account, package)
    second = await _intent(payment_service, account, package)
    total, items = await payment_service.payment_history(account.id)
    assert total == 2
    assert [t.id for t in items] == [second["transaction_id"], first["transaction_id"]]


async def test_simulate_payment(payment_service, store, account, package):
    intent = await _intent(payment_service, account, package)
    result = await payment_service.simulate_payment(intent["charge_id"])
    assert result["status"] == "COMPLETED"
    assert (await store.get_account(account.id)).credits == 25


async def test_simulate_requires_simulated_gateway(store, account, package):
    from app.gateways.stripe import StripeGateway
    from app.services.payments import PaymentService

    service = PaymentService(store, StripeGateway(secret_key=""))
    with pytest.raises(NotFoundError):
        await service.simulate_payment("sim_x")


async def test_config_status(payment_service):
    assert payment_service.config_status() == {
        "gateway": "simulated",
        "configured": True,
        "publishable_key_configured": True,
    }


async def test_gateway_metadata_mismatch(payment_service, gateway, account, package):
    intent = await _intent(payment_service, account, package)
    charge = gateway.charges[intent["charge_id"]]
    gateway.charges[intent["charge_id"]] = charge.model_copy(update={"metadata": {"transaction_id": "other"}})
    gateway.settle(intent["charge_id"])
    with pytest.raises(GatewayError):
        await payment_service.confirm(intent["transaction_id"])


class _RazorpayOrders:
    def create(self, data):
        return {
            "id": "order_retry",
            "status": "created",
            "amount": data["amount"],
            "currency": data["currency"],
            "notes": data["notes"],
        }


class _RazorpayClient:
    order = _RazorpayOrders()


def _razorpay_event(event: str, status: str, transaction_id: str) -> bytes:
    return json.dumps(
        {
            "event": event,
            "payload": {
                "payment": {
                    "entity": {
                        "id": f"pay_{status}",
                        "order_id": "order_retry",
                        "status": status,
                        "error_description": "Card declined" if status == "failed" else None,
                        "notes": {"transaction_id": transaction_id},
                    }
                }
            },
        }
    ).encode()


async def test_failed_attempt_then_capture_credits_purchase(store, account, package):
    from app.gateways.razorpay import RazorpayGateway
    from app.services.payments import PaymentService

    gateway = RazorpayGateway("rzp_test", "secret", webhook_secret="rzp_whsec")
    gateway._client = _RazorpayClient()
    service = PaymentService(store, gateway)
    intent = await service.create_intent(account.id, package.id)

    failed = _razorpay_event("payment.failed", "failed", intent["transaction_id"])
    result = await service.handle_webhook(failed, sign_webhook_payload(failed, "rzp_whsec"))
    assert result["processed"] is False
    assert (await store.find_transaction(intent["transaction_id"])).status == TransactionStatus.PENDING

    captured = _razorpay_event("payment.captured", "captured", intent["transaction_id"])
    result = await service.handle_webhook(captured, sign_webhook_payload(captured, "rzp_whsec"))
    assert result["processed"] is True
    assert result["status"] == "COMPLETED"
    assert (await store.get_account(account.id)).credits == 25
