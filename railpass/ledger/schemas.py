from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

class TransactionType(str, Enum):
    """Ledger entry direction"""
    CREDIT = "credit"
    DEBIT = "debit"

class TransactionStatus(str, Enum):
    COMPLETED = "completed"

class Transaction(BaseModel):
    id: int
    wallet_id: int
    amount: Decimal
    type: TransactionType
    status: TransactionStatus
    description: Optional[str] = None
    reference: Optional[str] = None
    reverses_id: Optional[int] = None
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class Wallet(BaseModel):
    id: int
    user_id: int
    balance: Decimal
    currency: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class WalletDetail(Wallet):
    recent_transactions: List[Transaction] = []

class AddFundsRequest(BaseModel):
    """Top up a wallet from an outside payment"""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_method: str = Field("cash", min_length=1, max_length=50)
    payment_id: Optional[str] = Field(None, max_length=100)

class AddFundsResponse(BaseModel):
    success: bool
    message: str
    wallet: Wallet
    transaction: Transaction

class WalletReconciliation(BaseModel):
    """Stored balance compared with the ledger sum"""
    wallet_id: int
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    ledger_balance: Decimal
    is_consistent: bool
