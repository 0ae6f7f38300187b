"""Credit package catalog."""

from decimal import Decimal

from app.core.logging import get_logger
from app.schemas.ledger import Package
from app.storage.base import LedgerStore

log = get_logger(__name__)

DEFAULT_PACKAGES = [
    ("Basic", "For getting started with text interviews", 10, "9.90"),
    ("Popular", "Regular practice with voice interviews", 25, "19.90"),
    ("Premium", "Frequent users running full interviews", 50, "34.90"),
    ("Business", "Teams and heavy usage", 100, "59.90"),
    ("Mega", "Best value for professional use", 250, "129.90"),
]


class PackageService:
    def __init__(self, store: LedgerStore, currency: str = "BRL") -> None:
        self.store = store
        self.currency = currency.upper()

    async def list_packages(self) -> list[Package]:
        return await self.store.list_packages(active_only=True)

    async def create_package(
        self,
        name: str,
        credits: int,
        price: Decimal,
        description: str | None = None,
        currency: str | None = None,
        gateway_price_id: str | None = None,
    ) -> Package:
        package = Package(
            name=name,
            description=description,
            credits=credits,
            price=Decimal(price).quantize(Decimal("0.01")),
            currency=(currency or self.currency).upper(),
            gateway_price_id=gateway_price_id,
        )
        await self.store.insert_package(package)
        log.info("package_created", package_id=package.id, credits=credits, price=str(package.price))
        return package

    async def seed_default_packages(self) -> int:
        """Insert the default catalog when it is empty; return how many were created."""
        if await self.store.count_packages() > 0:
            log.info("package_seed_skipped", reason="catalog not empty")
            return 0
        for name, description, credits, price in DEFAULT_PACKAGES:
            await self.create_package(name, credits, Decimal(price), description=description)
        log.info("package_seed_done", count=len(DEFAULT_PACKAGES))
        return len(DEFAULT_PACKAGES)
