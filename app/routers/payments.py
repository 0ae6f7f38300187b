from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.core.pagination import MAX_PER_PAGE, Page
from app.deps import get_payment_service
from app.routers.credits import transaction_out
from app.services.payments import PaymentService

router = APIRouter()


class CreateIntentRequest(BaseModel):
    account_id: str
    package_id: str  # catalog id or gateway price id


class ConfirmRequest(BaseModel):
    transaction_id: str  # ledger id or gateway charge id


class CancelRequest(BaseModel):
    transaction_id: str
    reason: str | None = Field(default=None, max_length=500)


class SimulateRequest(BaseModel):
    outcome: Literal["succeeded", "failed"] = "succeeded"
    failure_reason: str | None = None


@router.post("/create-intent")
async def create_intent(body: CreateIntentRequest, service: PaymentService = Depends(get_payment_service)):
    """Start a credit purchase; the client completes it with the returned client_secret."""
    return await service.create_intent(body.account_id, body.package_id)


@router.post("/confirm")
async def confirm_payment(body: ConfirmRequest, service: PaymentService = Depends(get_payment_service)):
    """Check the gateway and credit the purchase if it succeeded (idempotent)."""
    return await service.confirm(body.transaction_id)


@router.post("/cancel")
async def cancel_payment(body: CancelRequest, service: PaymentService = Depends(get_payment_service)):
    transaction = await service.cancel(body.transaction_id, body.reason)
    return {"transaction_id": transaction.id, "status": transaction.status.value}


@router.get("/config")
async def payments_config(service: PaymentService = Depends(get_payment_service)):
    return service.config_status()


@router.get("/{account_id}/history")
async def payments_history(
    account_id: str,
    service: PaymentService = Depends(get_payment_service),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=MAX_PER_PAGE),
):
    total, items = await service.payment_history(account_id, page=page, per_page=per_page)
    return Page[dict](items=[transaction_out(t) for t in items], page=page, per_page=per_page, total=total)


@router.post("/webhook")
async def payments_webhook(request: Request, service: PaymentService = Depends(get_payment_service)):
    """Gateway webhook: verify the signature, then finalize the purchase at most once."""
    body = await request.body()
    signature = request.headers.get(service.gateway.signature_header)
    return await service.handle_webhook(body, signature)


@router.post("/simulate/{charge_id}")
async def simulate_payment(
    charge_id: str,
    body: SimulateRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """Pay or decline a simulated charge, then confirm it."""
    return await service.simulate_payment(
        charge_id, succeeded=body.outcome == "succeeded", failure_reason=body.failure_reason
    )
