from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from railpass.database import get_db
from railpass.users.schemas import UserCreate, UserWithWallet
from railpass.users.service import UserService

router = APIRouter()

def _with_wallet(user) -> UserWithWallet:
    return UserWithWallet(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        created_at=user.created_at,
        wallet_id=user.wallet.id,
        balance=user.wallet.balance,
        currency=user.wallet.currency
    )

@router.post("/", response_model=UserWithWallet, status_code=status.HTTP_201_CREATED)
def create_user(user: UserCreate, db: Session = Depends(get_db)):
    """Register a user and open their wallet"""
    try:
        db_user = UserService(db).create_user(user)
        return _with_wallet(db_user)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

@router.get("/{user_id}", response_model=UserWithWallet)
def get_user(user_id: int, db: Session = Depends(get_db)):
    """Get a user and their wallet balance"""
    user = UserService(db).get_user_by_id(user_id)
    if not user or not user.wallet:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return _with_wallet(user)
