from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.core.pagination import MAX_PER_PAGE, Page
from app.deps import get_credit_service, get_package_service
from app.schemas.ledger import InterviewType, LedgerTransaction, Package, TransactionType, money
from app.services.credits import CreditService, credit_cost
from app.services.packages import PackageService

router = APIRouter()


class CostRequest(BaseModel):
    interview_type: InterviewType
    duration_minutes: int = Field(ge=1)


class ConsumeRequest(BaseModel):
    account_id: str
    job_id: str | None = None
    interview_type: InterviewType
    duration_minutes: int = Field(ge=1)


class BonusRequest(BaseModel):
    credits: int = Field(ge=1)
    reason: str = Field(min_length=1, max_length=500)


class RefundRequest(BaseModel):
    transaction_id: str
    credits: int | None = Field(default=None, ge=1)
    reason: str | None = Field(default=None, max_length=500)


class PackageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    credits: int = Field(ge=1)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    gateway_price_id: str | None = None


def package_out(package: Package) -> dict:
    return {
        "id": package.id,
        "name": package.name,
        "description": package.description,
        "credits": package.credits,
        "price": money(package.price),
        "currency": package.currency,
        "gateway_price_id": package.gateway_price_id,
        "is_active": package.is_active,
    }


def transaction_out(t: LedgerTransaction) -> dict:
    return {
        "id": t.id,
        "type": t.type.value,
        "status": t.status.value,
        "amount": t.amount,
        "price": money(t.price),
        "currency": t.currency,
        "account_id": t.account_id,
        "related_job_id": t.related_job_id,
        "related_package_id": t.related_package_id,
        "external_payment_ref": t.external_payment_ref,
        "metadata": t.metadata.model_dump(mode="json", exclude_none=True),
        "created_at": t.created_at.isoformat(),
        "updated_at": t.updated_at.isoformat(),
    }


@router.get("/packages")
async def packages_list(service: PackageService = Depends(get_package_service)):
    """Active credit packages, cheapest first."""
    packages = await service.list_packages()
    return {"packages": [package_out(p) for p in packages]}


@router.post("/packages", status_code=201)
async def package_create(body: PackageCreate, service: PackageService = Depends(get_package_service)):
    package = await service.create_package(
        body.name,
        body.credits,
        body.price,
        description=body.description,
        currency=body.currency,
        gateway_price_id=body.gateway_price_id,
    )
    return package_out(package)


@router.post("/calculate-cost")
async def calculate_cost(body: CostRequest):
    """Credits an interview would cost; nothing is charged."""
    return {
        "interview_type": body.interview_type.value,
        "duration_minutes": body.duration_minutes,
        "credits": credit_cost(body.interview_type, body.duration_minutes),
    }


@router.post("/consume")
async def credits_consume(body: ConsumeRequest, service: CreditService = Depends(get_credit_service)):
    return await service.consume(body.account_id, body.job_id, body.interview_type, body.duration_minutes)


@router.post("/refund")
async def credits_refund(body: RefundRequest, service: CreditService = Depends(get_credit_service)):
    """Give back credits of a completed interview consumption."""
    return await service.refund(body.transaction_id, credits=body.credits, reason=body.reason)


@router.get("/{account_id}")
async def credits_balance(account_id: str, service: CreditService = Depends(get_credit_service)):
    """Return the current credit balance."""
    account = await service.get_balance(account_id)
    return {"account_id": account.id, "full_name": account.full_name, "credits": account.credits}


@router.get("/{account_id}/transactions")
async def credits_transactions(
    account_id: str,
    service: CreditService = Depends(get_credit_service),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=MAX_PER_PAGE),
    type: TransactionType | None = Query(None),
):
    """Ledger entries for the account, newest first."""
    total, items = await service.list_transactions(account_id, page=page, per_page=per_page, type=type)
    return Page[dict](items=[transaction_out(t) for t in items], page=page, per_page=per_page, total=total)


@router.post("/{account_id}/add-bonus")
async def credits_add_bonus(
    account_id: str,
    body: BonusRequest,
    service: CreditService = Depends(get_credit_service),
):
    return await service.add_bonus(account_id, body.credits, body.reason)
