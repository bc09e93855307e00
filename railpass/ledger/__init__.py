"""
Wallet Ledger Module

Append-only transaction ledger backing wallet balances.

- service.py: LedgerStore (debit, credit, reverse, add funds, reconcile)
- router.py: FastAPI endpoints for wallets and top-ups
"""

from .router import router
from .service import LedgerStore

__all__ = ["router", "LedgerStore"]
