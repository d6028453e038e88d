from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class Profile(BaseModel):
    """User account row. credits is only changed through the credit ledger."""
    id: UUID
    email: str
    full_name: Optional[str] = None
    credits: int = Field(default=0, ge=0)
    stripe_customer_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthenticatedUser(BaseModel):
    """The caller resolved from a bearer token."""
    id: str
    email: Optional[str] = None
