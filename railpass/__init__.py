"""
RailPass Booking Core

Seat inventory, wallet ledger, booking saga and ticket issuance for a
railway ticketing backend.
"""
