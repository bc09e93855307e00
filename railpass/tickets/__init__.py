"""
Ticket Module

- issuer.py: TicketIssuer (HMAC ticket hash, QR payload, gate verification,
  QR PNG and PDF rendering)
- router.py: FastAPI endpoints for verification and ticket downloads
"""

from .router import router
from .issuer import TicketIssuer

__all__ = ["router", "TicketIssuer"]
