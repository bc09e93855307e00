from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

class UserBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(None, max_length=50)

class UserCreate(UserBase):
    currency: str = Field("BDT", min_length=3, max_length=3)
    opening_balance: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)

class User(UserBase):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class UserWithWallet(User):
    wallet_id: int
    balance: Decimal
    currency: str
