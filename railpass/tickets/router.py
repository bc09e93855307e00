from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List, Optional

from railpass.database import get_db
from railpass.errors import BookingError, http_error
from railpass.tickets.issuer import TicketIssuer
from railpass.tickets.schemas import (
    Ticket, TicketStatus, TicketVerification, TicketVerificationRequest, TicketWithVerifications,
    VerificationResult
)

router = APIRouter()

def _get_ticket_or_404(issuer: TicketIssuer, ticket_id: int):
    ticket = issuer.get_ticket(ticket_id)
    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found"
        )
    return ticket

@router.post("/verify", response_model=VerificationResult)
def verify_ticket(
    request: TicketVerificationRequest,
    db: Session = Depends(get_db)
):
    """Check a ticket at the gate and mark it used"""

    issuer = TicketIssuer(db)

    try:
        if request.qr_code:
            return issuer.verify_qr(
                request.qr_code,
                verified_by=request.verified_by,
                location=request.location
            )
        if request.ticket_hash and request.presented:
            return issuer.verify(
                request.ticket_hash,
                request.presented,
                verified_by=request.verified_by,
                location=request.location
            )
    except BookingError as e:
        raise http_error(e.code, e.message)

    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail="Provide either qr_code or ticket_hash with presented data"
    )

@router.get("/user/{user_id}", response_model=List[Ticket])
def get_user_tickets(
    user_id: int,
    ticket_status: Optional[TicketStatus] = Query(None, alias="status", description="Filter by ticket status"),
    db: Session = Depends(get_db)
):
    """List a user's tickets, newest first"""
    return TicketIssuer(db).list_user_tickets(user_id, status=ticket_status)

@router.get("/{ticket_id}", response_model=TicketWithVerifications)
def get_ticket(
    ticket_id: int,
    db: Session = Depends(get_db)
):
    """Get ticket details with its verification history"""
    return _get_ticket_or_404(TicketIssuer(db), ticket_id)

@router.get("/{ticket_id}/verifications", response_model=List[TicketVerification])
def get_ticket_verifications(
    ticket_id: int,
    db: Session = Depends(get_db)
):
    """Audit trail of gate checks for a ticket"""
    issuer = TicketIssuer(db)
    _get_ticket_or_404(issuer, ticket_id)
    return issuer.list_verifications(ticket_id)

@router.get("/{ticket_id}/qr.png")
def get_ticket_qr_code(
    ticket_id: int,
    size: int = Query(300, ge=100, le=1000, description="Image size in pixels"),
    db: Session = Depends(get_db)
):
    """QR code image for a ticket"""
    issuer = TicketIssuer(db)
    ticket = _get_ticket_or_404(issuer, ticket_id)
    return Response(content=issuer.render_qr_png(ticket, size=size), media_type="image/png")

@router.get("/{ticket_id}/pdf")
def get_ticket_pdf(
    ticket_id: int,
    db: Session = Depends(get_db)
):
    """Printable PDF ticket"""
    issuer = TicketIssuer(db)
    ticket = _get_ticket_or_404(issuer, ticket_id)
    return Response(
        content=issuer.render_ticket_pdf(ticket),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="ticket_{ticket.id}.pdf"'}
    )
