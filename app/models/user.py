from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from app.schemas.ledger import utcnow


class User(Document):
    """Platform user; ``credits`` is the ledger balance, written only by the ledger store."""
    id: str
    full_name: str
    email: Indexed(str, unique=True)
    credits: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "users"
