"""Shared FastAPI dependencies.

The store and gateway are built once at startup and kept on ``app.state``;
services are cheap wrappers constructed per request.
"""

from fastapi import Depends, Request

from app.core.config import Settings, get_settings
from app.gateways.base import PaymentGateway
from app.services.accounts import AccountService
from app.services.credits import CreditService
from app.services.packages import PackageService
from app.services.payments import PaymentService
from app.storage.base import LedgerStore


def get_settings_dep() -> Settings:
    return get_settings()


def get_store(request: Request) -> LedgerStore:
    return request.app.state.store


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_credit_service(store: LedgerStore = Depends(get_store)) -> CreditService:
    return CreditService(store)


def get_account_service(
    store: LedgerStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
) -> AccountService:
    return AccountService(store, signup_bonus_credits=settings.signup_bonus_credits)


def get_package_service(
    store: LedgerStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
) -> PackageService:
    return PackageService(store, currency=settings.payment_currency)


def get_payment_service(
    store: LedgerStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentService:
    return PaymentService(store, gateway)
