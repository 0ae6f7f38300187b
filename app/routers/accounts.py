from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.deps import get_account_service
from app.schemas.ledger import Account
from app.services.accounts import AccountService

router = APIRouter()


class AccountCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=320)


def account_out(account: Account) -> dict:
    return {
        "id": account.id,
        "full_name": account.full_name,
        "email": account.email,
        "credits": account.credits,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat(),
    }


@router.post("", status_code=201)
async def account_create(body: AccountCreate, service: AccountService = Depends(get_account_service)):
    """Create an account; a configured signup bonus is credited at once."""
    account = await service.create_account(body.full_name, body.email)
    return account_out(account)


@router.get("/{account_id}")
async def account_get(account_id: str, service: AccountService = Depends(get_account_service)):
    return account_out(await service.get_account(account_id))
