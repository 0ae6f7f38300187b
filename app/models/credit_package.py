from datetime import datetime

from beanie import DecimalAnnotation, Document
from pydantic import Field

from app.schemas.ledger import utcnow


class CreditPackage(Document):
    """Catalog entry: credits granted and price charged for one purchase."""
    id: str
    name: str
    description: str | None = None
    credits: int
    price: DecimalAnnotation
    currency: str = "BRL"
    gateway_price_id: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_packages"
        indexes = [[("is_active", 1), ("price", 1)], [("gateway_price_id", 1)]]
