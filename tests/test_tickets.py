import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from railpass.errors import InvalidRequest
from railpass.tickets.issuer import TicketIssuer, compute_ticket_hash, decode_qr_payload
from railpass.tickets.schemas import PresentedTicketData, TicketDraft, VerificationOutcome

SECRET = "issuer-secret"


@pytest.fixture
def ticket(session_factory, make_schedule, make_user):
    """An issued ticket as (id, ticket_hash, qr_code, presented)"""
    schedule_id = make_schedule(seats=5)
    user_id, _ = make_user()

    with session_factory() as db:
        issued = TicketIssuer(db, secret=SECRET).issue(TicketDraft(
            user_id=user_id,
            schedule_id=schedule_id,
            seat_number="A1",
            price=Decimal("450.00"),
            payment_id="1"
        ))
        db.commit()
        presented = PresentedTicketData(
            user_id=user_id,
            schedule_id=schedule_id,
            seat_number="A1",
            price=issued.price,
            issued_at=issued.issued_at,
            nonce=issued.nonce
        )
        return issued.id, issued.ticket_hash, issued.qr_code, presented


def test_hash_depends_on_every_field():
    issued_at = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
    base = compute_ticket_hash(SECRET, 1, 2, "A1", "450", issued_at, "n1")

    assert base == compute_ticket_hash(SECRET, 1, 2, "A1", Decimal("450.00"), issued_at.replace(tzinfo=None), "n1")
    assert base != compute_ticket_hash(SECRET, 1, 2, "A2", "450", issued_at, "n1")
    assert base != compute_ticket_hash(SECRET, 1, 2, "A1", "451", issued_at, "n1")
    assert base != compute_ticket_hash("other", 1, 2, "A1", "450", issued_at, "n1")
    assert base != compute_ticket_hash(SECRET, 1, 2, "A1", "450", issued_at, "n2")
    assert len(base) == 64


def test_verify_valid_then_already_used(session_factory, ticket):
    ticket_id, ticket_hash, _, presented = ticket

    with session_factory() as db:
        first = TicketIssuer(db, secret=SECRET).verify(ticket_hash, presented, verified_by="gate-1", location="Dhaka")
    with session_factory() as db:
        second = TicketIssuer(db, secret=SECRET).verify(ticket_hash, presented, location="Dhaka")

    assert first.outcome == VerificationOutcome.VALID
    assert first.allow_entry
    assert first.ticket_id == ticket_id
    assert second.outcome == VerificationOutcome.ALREADY_USED
    assert not second.allow_entry

    with session_factory() as db:
        issuer = TicketIssuer(db, secret=SECRET)
        assert issuer.get_ticket(ticket_id).status == "used"
        assert [v.outcome for v in issuer.list_verifications(ticket_id)] == ["valid", "already_used"]


def test_tampered_fields_are_invalid(session_factory, ticket):
    ticket_id, ticket_hash, _, presented = ticket
    forged = presented.model_copy(update={"price": Decimal("1.00")})

    with session_factory() as db:
        result = TicketIssuer(db, secret=SECRET).verify(ticket_hash, forged)

    assert result.outcome == VerificationOutcome.INVALID
    assert result.reason == "tampered"

    with session_factory() as db:
        assert TicketIssuer(db, secret=SECRET).get_ticket(ticket_id).status == "issued"


def test_unknown_hash_is_invalid(session_factory, ticket):
    _, _, _, presented = ticket

    with session_factory() as db:
        result = TicketIssuer(db, secret=SECRET).verify("0" * 64, presented)

    assert result.outcome == VerificationOutcome.INVALID
    assert result.reason == "not_found"
    assert result.ticket_id is None


def test_qr_payload_round_trip_verifies(session_factory, ticket):
    ticket_id, ticket_hash, qr_code, _ = ticket

    decoded_hash, presented = decode_qr_payload(qr_code)
    assert decoded_hash == ticket_hash
    assert presented.seat_number == "A1"

    with session_factory() as db:
        result = TicketIssuer(db, secret=SECRET).verify_qr(qr_code)

    assert result.outcome == VerificationOutcome.VALID
    assert result.ticket_id == ticket_id


@pytest.mark.parametrize("garbage", ["not base64!!", "eyJ2IjogOX0=", ""])
def test_unreadable_qr_rejected(garbage):
    with pytest.raises(InvalidRequest):
        decode_qr_payload(garbage)


def test_concurrent_scans_admit_once(session_factory, ticket):
    _, ticket_hash, _, presented = ticket
    scans = 4
    barrier = threading.Barrier(scans)
    outcomes = []

    def scan():
        barrier.wait()
        with session_factory() as db:
            outcomes.append(TicketIssuer(db, secret=SECRET).verify(ticket_hash, presented).outcome)

    threads = [threading.Thread(target=scan) for _ in range(scans)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(VerificationOutcome.VALID) == 1
    assert outcomes.count(VerificationOutcome.ALREADY_USED) == scans - 1


def test_render_artifacts(session_factory, ticket):
    ticket_id = ticket[0]

    with session_factory() as db:
        issuer = TicketIssuer(db, secret=SECRET)
        row = issuer.get_ticket(ticket_id)
        png = issuer.render_qr_png(row, size=200)
        pdf = issuer.render_ticket_pdf(row)

    assert png.startswith(b"\x89PNG")
    assert pdf.startswith(b"%PDF")
