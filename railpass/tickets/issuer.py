import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from io import BytesIO
from typing import List, Optional, Tuple

import qrcode
from PIL import Image
from pydantic import ValidationError
from qrcode import constants
from sqlalchemy.orm import Session, joinedload

from railpass.config import settings
from railpass.database import retry_read
from railpass.errors import InvalidRequest
from railpass.ledger.service import CENTS
from railpass.models import Schedule, Ticket, TicketVerification, utcnow
from railpass.tickets.schemas import (
    PaymentStatus, PresentedTicketData, TicketDraft, TicketStatus, VerificationOutcome,
    VerificationResult
)

logger = logging.getLogger(__name__)

QR_PAYLOAD_VERSION = 2


def compute_ticket_hash(
    secret: str,
    user_id: int,
    schedule_id: int,
    seat_number: str,
    price,
    issued_at: datetime,
    nonce: str
) -> str:
    """HMAC-SHA256 binding a ticket's identity fields and its nonce to the server secret"""

    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    price = Decimal(str(price)).quantize(CENTS)
    message = f"{user_id}:{schedule_id}:{seat_number}:{price}:{int(issued_at.timestamp())}:{nonce}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def encode_qr_payload(ticket_hash: str, data: PresentedTicketData) -> str:
    payload = {
        "v": QR_PAYLOAD_VERSION,
        "h": ticket_hash,
        "uid": data.user_id,
        "sid": data.schedule_id,
        "seat": data.seat_number,
        "price": str(Decimal(str(data.price)).quantize(CENTS)),
        "iat": data.issued_at.isoformat(),
        "n": data.nonce
    }
    json_data = json.dumps(payload, separators=(',', ':'))
    return base64.b64encode(json_data.encode()).decode()


def decode_qr_payload(qr_code: str) -> Tuple[str, PresentedTicketData]:
    """Split a scanned QR string into (ticket_hash, presented fields)"""

    try:
        payload = json.loads(base64.b64decode(qr_code.encode(), validate=True))
        if payload.get("v") != QR_PAYLOAD_VERSION:
            raise InvalidRequest(f"Unsupported QR payload version {payload.get('v')!r}")
        presented = PresentedTicketData(
            user_id=payload["uid"],
            schedule_id=payload["sid"],
            seat_number=payload["seat"],
            price=payload["price"],
            issued_at=payload["iat"],
            nonce=payload["n"]
        )
        return payload["h"], presented
    except (binascii.Error, ValueError, KeyError, TypeError, AttributeError, ValidationError) as exc:
        raise InvalidRequest("Unreadable QR payload") from exc


class TicketIssuer:
    """Turns paid reservations into tamper-evident tickets and checks them at the gate"""

    def __init__(self, db: Session, secret: Optional[str] = None):
        self.db = db
        self._secret = secret or settings.SECRET_KEY

    def issue(self, draft: TicketDraft) -> Ticket:
        """Insert the ticket row with its hash and QR payload; flushes, never commits"""

        issued_at = utcnow().replace(microsecond=0)
        # hashes stay unique when a refunded seat is reissued within the same second
        nonce = secrets.token_hex(8)
        price = Decimal(str(draft.price)).quantize(CENTS)
        presented = PresentedTicketData(
            user_id=draft.user_id,
            schedule_id=draft.schedule_id,
            seat_number=draft.seat_number,
            price=price,
            issued_at=issued_at,
            nonce=nonce
        )
        ticket_hash = compute_ticket_hash(
            self._secret, draft.user_id, draft.schedule_id, draft.seat_number, price, issued_at, nonce
        )

        ticket = Ticket(
            user_id=draft.user_id,
            schedule_id=draft.schedule_id,
            hold_id=draft.hold_id,
            seat_number=draft.seat_number,
            price=price,
            payment_id=draft.payment_id,
            payment_method=draft.payment_method,
            payment_status=PaymentStatus.COMPLETED.value,
            ticket_hash=ticket_hash,
            nonce=nonce,
            qr_code=encode_qr_payload(ticket_hash, presented),
            status=TicketStatus.ISSUED.value,
            issued_at=issued_at
        )
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def verify(
        self,
        ticket_hash: str,
        presented: PresentedTicketData,
        verified_by: Optional[str] = None,
        location: Optional[str] = None
    ) -> VerificationResult:
        """Check a presented ticket and mark it used; commits the audit record.

        Only one concurrent scan of the same ticket can come back VALID.
        """

        now = utcnow()
        ticket = self.get_ticket_by_hash(ticket_hash)
        if not ticket:
            logger.warning("Verification for unknown ticket hash %s...", ticket_hash[:12])
            return VerificationResult(
                outcome=VerificationOutcome.INVALID,
                allow_entry=False,
                message="Ticket not found",
                reason="not_found",
                verified_at=now
            )

        expected = compute_ticket_hash(
            self._secret, presented.user_id, presented.schedule_id,
            presented.seat_number, presented.price, presented.issued_at, presented.nonce
        )

        outcome, reason, message = VerificationOutcome.INVALID, None, None
        if not hmac.compare_digest(expected, ticket_hash):
            reason, message = "tampered", "Ticket data has been tampered with"
        elif ticket.payment_status != PaymentStatus.COMPLETED.value:
            reason, message = "payment_incomplete", "Ticket payment is not completed"
        else:
            marked = (
                self.db.query(Ticket)
                .filter(Ticket.id == ticket.id, Ticket.status == TicketStatus.ISSUED.value)
                .update(
                    {Ticket.status: TicketStatus.USED.value, Ticket.used_at: now},
                    synchronize_session=False
                )
            )
            if marked == 1:
                outcome, message = VerificationOutcome.VALID, "Ticket verified successfully"
            else:
                current = self.db.query(Ticket.status).filter(Ticket.id == ticket.id).scalar()
                if current == TicketStatus.USED.value:
                    outcome, reason, message = VerificationOutcome.ALREADY_USED, "already_used", "Ticket has already been used"
                else:
                    reason, message = current, f"Ticket is {current}"

        record = TicketVerification(
            ticket_id=ticket.id,
            verified_by=verified_by,
            location=location or "Unknown",
            outcome=outcome.value,
            reason=reason,
            verified_at=now
        )
        self.db.add(record)
        self.db.commit()

        logger.info("Ticket %s verified at %s: %s", ticket.id, record.location, outcome.value)
        return VerificationResult(
            outcome=outcome,
            allow_entry=outcome == VerificationOutcome.VALID,
            message=message,
            reason=reason,
            ticket_id=ticket.id,
            verification_id=record.id,
            verified_at=now
        )

    def verify_qr(self, qr_code: str, verified_by: Optional[str] = None, location: Optional[str] = None) -> VerificationResult:
        ticket_hash, presented = decode_qr_payload(qr_code)
        return self.verify(ticket_hash, presented, verified_by=verified_by, location=location)

    @retry_read
    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        return self.db.query(Ticket).filter(Ticket.id == ticket_id).first()

    @retry_read
    def get_ticket_by_hash(self, ticket_hash: str) -> Optional[Ticket]:
        return self.db.query(Ticket).filter(Ticket.ticket_hash == ticket_hash).first()

    @retry_read
    def list_user_tickets(self, user_id: int, status: Optional[TicketStatus] = None) -> List[Ticket]:
        query = self.db.query(Ticket).filter(Ticket.user_id == user_id)
        if status:
            query = query.filter(Ticket.status == status.value)
        return query.order_by(Ticket.issued_at.desc(), Ticket.id.desc()).all()

    @retry_read
    def list_verifications(self, ticket_id: int) -> List[TicketVerification]:
        return (
            self.db.query(TicketVerification)
            .filter(TicketVerification.ticket_id == ticket_id)
            .order_by(TicketVerification.id)
            .all()
        )

    def render_qr_png(self, ticket: Ticket, size: int = 300) -> bytes:
        """QR image of the ticket payload as PNG bytes"""

        qr = qrcode.QRCode(
            version=1,
            error_correction=constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(ticket.qr_code)
        qr.make(fit=True)

        qr_image = qr.make_image(fill_color="black", back_color="white").get_image()
        qr_image = qr_image.resize((size, size), Image.LANCZOS)

        buf = BytesIO()
        qr_image.save(buf, format="PNG")
        return buf.getvalue()

    def render_ticket_pdf(self, ticket: Ticket) -> bytes:
        """Printable A4 ticket with journey details and the QR code"""

        from reportlab.lib import colors
        from reportlab.lib.pagesizes import A4
        from reportlab.lib.styles import getSampleStyleSheet
        from reportlab.platypus import Image as PDFImage, SimpleDocTemplate, Spacer, Table, TableStyle, Paragraph

        schedule = (
            self.db.query(Schedule)
            .options(joinedload(Schedule.train))
            .filter(Schedule.id == ticket.schedule_id)
            .first()
        )
        train = schedule.train

        buf = BytesIO()
        doc = SimpleDocTemplate(buf, pagesize=A4)
        styles = getSampleStyleSheet()
        story = []

        story.append(Paragraph(settings.PROJECT_NAME, styles['Title']))
        story.append(Spacer(1, 20))
        story.append(Paragraph(f"Ticket #{ticket.id}", styles['Heading2']))
        story.append(Spacer(1, 10))

        journey_info = [
            ["Train:", f"{train.name} ({train.train_number})"],
            ["From:", train.from_station],
            ["To:", train.to_station],
            ["Date:", schedule.journey_date.strftime("%Y-%m-%d")],
            ["Departure:", train.departure_time.strftime("%H:%M")],
            ["Arrival:", train.arrival_time.strftime("%H:%M")],
            ["Seat:", ticket.seat_number],
            ["Price:", f"{ticket.price}"],
            ["Status:", ticket.status.title()],
        ]

        journey_table = Table(journey_info, colWidths=[100, 250])
        journey_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, -1), colors.lightblue),
            ('TEXTCOLOR', (0, 0), (-1, -1), colors.black),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        story.append(journey_table)
        story.append(Spacer(1, 20))

        story.append(PDFImage(BytesIO(self.render_qr_png(ticket)), width=180, height=180))
        story.append(Spacer(1, 10))
        story.append(Paragraph(f"Ticket hash: {ticket.ticket_hash[:16]}...", styles['Italic']))

        doc.build(story)
        return buf.getvalue()
