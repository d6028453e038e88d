from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    BONUS = "bonus"


class CreditTransaction(BaseModel):
    """Immutable ledger entry. Usage entries carry a negative amount."""
    id: UUID
    user_id: UUID
    amount: int
    type: TransactionType
    description: Optional[str] = None
    generation_id: Optional[UUID] = None
    stripe_payment_id: Optional[str] = Field(None, description="External payment id, unique when set")
    created_at: datetime

    class Config:
        from_attributes = True


class CreditResult(BaseModel):
    """Result of a credit call; created is False for a replayed payment id."""
    transaction: CreditTransaction
    balance: int
    created: bool = True


class CreditPackage(BaseModel):
    id: str
    name: str
    credits: int
    price: int = Field(..., description="Price in cents")
    price_per_credit: float
    popular: bool = False


CREDIT_PACKAGES: List[CreditPackage] = [
    CreditPackage(id="credits_25", name="25 Credits", credits=25, price=999,
                  price_per_credit=0.40),
    CreditPackage(id="credits_100", name="100 Credits", credits=100, price=2999,
                  price_per_credit=0.30, popular=True),
    CreditPackage(id="credits_500", name="500 Credits", credits=500, price=9999,
                  price_per_credit=0.20),
]


def get_package_by_id(package_id: Optional[str]) -> Optional[CreditPackage]:
    """Look up a package in the fixed catalog."""
    for package in CREDIT_PACKAGES:
        if package.id == package_id:
            return package
    return None


class CheckoutRequest(BaseModel):
    package_id: str = Field(..., alias="packageId")

    class Config:
        populate_by_name = True


class CheckoutSession(BaseModel):
    session_id: str
    url: Optional[str] = None


class PaymentOutcome(BaseModel):
    """What a webhook event did. credited and balance are set for checkouts."""
    handled: bool
    event_type: str
    credited: Optional[bool] = None
    balance: Optional[int] = None
