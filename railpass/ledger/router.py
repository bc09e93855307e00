from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List

from railpass.database import get_db
from railpass.errors import BookingError, http_error
from railpass.ledger.schemas import (
    AddFundsRequest, AddFundsResponse, Transaction, Wallet, WalletDetail, WalletReconciliation
)
from railpass.ledger.service import LedgerStore

router = APIRouter()

def _wallet_for_user(ledger: LedgerStore, user_id: int):
    wallet = ledger.get_wallet_by_user(user_id)
    if not wallet:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Wallet not found"
        )
    return wallet

@router.get("/user/{user_id}", response_model=WalletDetail)
def get_user_wallet(
    user_id: int,
    db: Session = Depends(get_db)
):
    """Get a user's wallet with its latest transactions"""

    ledger = LedgerStore(db)
    wallet = _wallet_for_user(ledger, user_id)
    recent = ledger.list_transactions(wallet.id, limit=10)

    return WalletDetail(
        **Wallet.model_validate(wallet).model_dump(),
        recent_transactions=[Transaction.model_validate(t) for t in recent]
    )

@router.post("/user/{user_id}/add-funds", response_model=AddFundsResponse)
def add_funds(
    user_id: int,
    request: AddFundsRequest,
    db: Session = Depends(get_db)
):
    """Credit a wallet from an outside payment"""

    ledger = LedgerStore(db)

    try:
        wallet, transaction = ledger.add_funds(
            user_id,
            request.amount,
            payment_method=request.payment_method,
            payment_id=request.payment_id
        )
    except BookingError as e:
        db.rollback()
        raise http_error(e.code, e.message)

    return AddFundsResponse(
        success=True,
        message="Funds added successfully",
        wallet=Wallet.model_validate(wallet),
        transaction=Transaction.model_validate(transaction)
    )

@router.get("/user/{user_id}/transactions", response_model=List[Transaction])
def get_wallet_transactions(
    user_id: int,
    skip: int = Query(0, ge=0, description="Number of transactions to skip"),
    limit: int = Query(50, ge=1, le=200, description="Number of transactions to return"),
    db: Session = Depends(get_db)
):
    """List a user's ledger entries, newest first"""

    ledger = LedgerStore(db)
    wallet = _wallet_for_user(ledger, user_id)
    return ledger.list_transactions(wallet.id, skip=skip, limit=limit)

@router.get("/{wallet_id}/reconcile", response_model=WalletReconciliation)
def reconcile_wallet(
    wallet_id: int,
    db: Session = Depends(get_db)
):
    """Check that the stored balance matches the ledger"""

    try:
        return LedgerStore(db).reconcile(wallet_id)
    except BookingError as e:
        raise http_error(e.code, e.message)
