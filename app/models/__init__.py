from app.models.credit_package import CreditPackage
from app.models.credit_transaction import CreditTransaction
from app.models.user import User

__all__ = [
    "User",
    "CreditPackage",
    "CreditTransaction",
]
