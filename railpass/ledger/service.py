import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from railpass.database import retry_read
from railpass.errors import InsufficientFunds, InvalidRequest, NotFound, WalletNotFound
from railpass.ledger.schemas import TransactionStatus, TransactionType, WalletReconciliation
from railpass.models import Transaction, Wallet, utcnow

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_amount(value) -> Decimal:
    """Normalize a money value to two decimal places; must be positive."""
    try:
        amount = Decimal(str(value)).quantize(CENTS)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidRequest(f"Invalid amount: {value!r}") from exc
    if amount <= 0:
        raise InvalidRequest("Amount must be positive")
    return amount


class LedgerStore:
    """Wallet balances, changed only by appending Transaction rows.

    ``debit`` and ``credit`` update the balance and append the ledger entry in
    the caller's transaction; they flush but never commit.
    """

    def __init__(self, db: Session):
        self.db = db

    def open_wallet(self, user_id: int, currency: str = "BDT") -> Wallet:
        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"), currency=currency)
        self.db.add(wallet)
        self.db.flush()
        return wallet

    def debit(
        self,
        wallet_id: int,
        amount,
        description: str,
        reference: Optional[str] = None,
        payment_method: Optional[str] = "wallet"
    ) -> Transaction:
        """Take money out of a wallet, or raise InsufficientFunds"""

        amount = to_amount(amount)

        updated = (
            self.db.query(Wallet)
            .filter(Wallet.id == wallet_id, Wallet.balance >= amount)
            .update(
                {Wallet.balance: Wallet.balance - amount, Wallet.updated_at: utcnow()},
                synchronize_session=False
            )
        )
        if updated != 1:
            if not self.db.query(Wallet.id).filter(Wallet.id == wallet_id).first():
                raise WalletNotFound(f"Wallet {wallet_id} not found")
            raise InsufficientFunds(f"Wallet {wallet_id} cannot cover {amount}")

        return self._append(wallet_id, amount, TransactionType.DEBIT, description,
                            reference=reference, payment_method=payment_method)

    def credit(
        self,
        wallet_id: int,
        amount,
        description: str,
        reference: Optional[str] = None,
        payment_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        reverses_id: Optional[int] = None
    ) -> Transaction:
        """Put money into a wallet; only a missing wallet can make this fail"""

        amount = to_amount(amount)

        updated = (
            self.db.query(Wallet)
            .filter(Wallet.id == wallet_id)
            .update(
                {Wallet.balance: Wallet.balance + amount, Wallet.updated_at: utcnow()},
                synchronize_session=False
            )
        )
        if updated != 1:
            raise WalletNotFound(f"Wallet {wallet_id} not found")

        return self._append(wallet_id, amount, TransactionType.CREDIT, description,
                            reference=reference, payment_id=payment_id,
                            payment_method=payment_method, reverses_id=reverses_id)

    def reverse(self, transaction_id: int, description: Optional[str] = None) -> Transaction:
        """Credit back a debit. Reversing twice returns the first reversal."""

        original = self.db.query(Transaction).filter(Transaction.id == transaction_id).first()
        if not original:
            raise NotFound(f"Transaction {transaction_id} not found")
        if original.type != TransactionType.DEBIT.value:
            raise InvalidRequest(f"Transaction {transaction_id} is not a debit")

        existing = self.db.query(Transaction).filter(Transaction.reverses_id == transaction_id).first()
        if existing:
            return existing

        logger.info("Reversing debit %s of %s on wallet %s", original.id, original.amount, original.wallet_id)
        return self.credit(
            original.wallet_id,
            original.amount,
            description or f"Reversal of transaction {original.id}",
            reference=original.reference,
            payment_method=original.payment_method,
            reverses_id=original.id
        )

    def add_funds(
        self,
        user_id: int,
        amount,
        payment_method: str,
        payment_id: Optional[str] = None
    ) -> Tuple[Wallet, Transaction]:
        """Top up a user's wallet and commit"""

        wallet = self.db.query(Wallet).filter(Wallet.user_id == user_id).first()
        if not wallet:
            raise WalletNotFound(f"No wallet for user {user_id}")

        transaction = self.credit(
            wallet.id,
            amount,
            f"Add funds via {payment_method}",
            payment_id=payment_id,
            payment_method=payment_method
        )
        self.db.commit()
        self.db.refresh(wallet)
        self.db.refresh(transaction)

        logger.info("Added %s to wallet %s (user %s)", transaction.amount, wallet.id, user_id)
        return wallet, transaction

    @retry_read
    def get_wallet(self, wallet_id: int) -> Optional[Wallet]:
        return self.db.query(Wallet).filter(Wallet.id == wallet_id).first()

    @retry_read
    def get_wallet_by_user(self, user_id: int) -> Optional[Wallet]:
        return self.db.query(Wallet).filter(Wallet.user_id == user_id).first()

    @retry_read
    def list_transactions(self, wallet_id: int, skip: int = 0, limit: int = 50) -> List[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.wallet_id == wallet_id)
            .order_by(Transaction.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    @retry_read
    def reconcile(self, wallet_id: int) -> WalletReconciliation:
        """Compare the stored balance with the sum of the ledger"""

        wallet = self.db.query(Wallet).filter(Wallet.id == wallet_id).first()
        if not wallet:
            raise WalletNotFound(f"Wallet {wallet_id} not found")

        totals = dict(
            self.db.query(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0))
            .filter(
                Transaction.wallet_id == wallet_id,
                Transaction.status == TransactionStatus.COMPLETED.value
            )
            .group_by(Transaction.type)
            .all()
        )
        credits = Decimal(str(totals.get(TransactionType.CREDIT.value, 0))).quantize(CENTS)
        debits = Decimal(str(totals.get(TransactionType.DEBIT.value, 0))).quantize(CENTS)
        balance = Decimal(str(wallet.balance)).quantize(CENTS)

        return WalletReconciliation(
            wallet_id=wallet.id,
            balance=balance,
            total_credits=credits,
            total_debits=debits,
            ledger_balance=credits - debits,
            is_consistent=balance == credits - debits
        )

    def _append(self, wallet_id, amount, kind: TransactionType, description, **fields) -> Transaction:
        transaction = Transaction(
            wallet_id=wallet_id,
            amount=amount,
            type=kind.value,
            status=TransactionStatus.COMPLETED.value,
            description=description,
            created_at=utcnow(),
            **fields
        )
        self.db.add(transaction)
        self.db.flush()
        return transaction
