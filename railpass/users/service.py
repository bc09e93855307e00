from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional

from railpass.database import retry_read
from railpass.ledger.service import LedgerStore
from railpass.models import User
from railpass.users.schemas import UserCreate

class UserService:
    def __init__(self, db: Session):
        self.db = db

    @retry_read
    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email"""
        return self.db.query(User).filter(User.email == email).first()

    @retry_read
    def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return self.db.query(User).filter(User.id == user_id).first()

    def create_user(self, user: UserCreate) -> User:
        """Create a user together with an empty wallet"""
        db_user = User(
            name=user.name,
            email=user.email,
            phone=user.phone
        )

        try:
            self.db.add(db_user)
            self.db.flush()

            ledger = LedgerStore(self.db)
            wallet = ledger.open_wallet(db_user.id, currency=user.currency)
            if user.opening_balance:
                ledger.credit(wallet.id, user.opening_balance, "Opening balance", payment_method="opening")

            self.db.commit()
            self.db.refresh(db_user)
            return db_user

        except IntegrityError:
            self.db.rollback()
            raise ValueError("Email already registered")
