from decimal import Decimal

import pytest

from railpass.errors import InsufficientFunds, InvalidRequest, WalletNotFound
from railpass.ledger.service import LedgerStore, to_amount


def test_to_amount_normalizes_and_rejects_non_positive():
    assert to_amount("12.5") == Decimal("12.50")
    assert to_amount(3) == Decimal("3.00")
    with pytest.raises(InvalidRequest):
        to_amount(0)
    with pytest.raises(InvalidRequest):
        to_amount("-1")
    with pytest.raises(InvalidRequest):
        to_amount("abc")


def test_debit_and_credit(session_factory, make_user, balance_of):
    _, wallet_id = make_user(balance="100.00")

    with session_factory() as db:
        ledger = LedgerStore(db)
        debit = ledger.debit(wallet_id, "40.00", "Ticket")
        credit = ledger.credit(wallet_id, "5.00", "Top up", payment_method="cash")
        db.commit()
        assert debit.type == "debit"
        assert credit.type == "credit"

    assert balance_of(wallet_id) == Decimal("65.00")


def test_insufficient_funds_leaves_balance(session_factory, make_user, balance_of):
    _, wallet_id = make_user(balance="10.00")

    with session_factory() as db:
        with pytest.raises(InsufficientFunds):
            LedgerStore(db).debit(wallet_id, "10.01", "Ticket")
        db.rollback()

    assert balance_of(wallet_id) == Decimal("10.00")


def test_missing_wallet(session_factory):
    with session_factory() as db:
        ledger = LedgerStore(db)
        with pytest.raises(WalletNotFound):
            ledger.debit(12345, "1.00", "Ticket")
        with pytest.raises(WalletNotFound):
            ledger.credit(12345, "1.00", "Refund")


def test_reverse_is_idempotent(session_factory, make_user, balance_of):
    _, wallet_id = make_user(balance="100.00")

    with session_factory() as db:
        ledger = LedgerStore(db)
        debit = ledger.debit(wallet_id, "30.00", "Ticket", reference="attempt-1")
        first = ledger.reverse(debit.id)
        second = ledger.reverse(debit.id)
        db.commit()
        assert first.id == second.id
        assert first.reverses_id == debit.id

    assert balance_of(wallet_id) == Decimal("100.00")


def test_reverse_rejects_credits(session_factory, make_user):
    _, wallet_id = make_user(balance="0")

    with session_factory() as db:
        ledger = LedgerStore(db)
        credit = ledger.credit(wallet_id, "10.00", "Top up")
        with pytest.raises(InvalidRequest):
            ledger.reverse(credit.id)


def test_add_funds_commits(session_factory, make_user, balance_of):
    user_id, wallet_id = make_user(balance="0")

    with session_factory() as db:
        wallet, transaction = LedgerStore(db).add_funds(user_id, "250.00", "bkash", payment_id="TRX-1")
        assert transaction.payment_id == "TRX-1"
        assert transaction.payment_method == "bkash"

    assert balance_of(wallet_id) == Decimal("250.00")


def test_reconcile_matches_ledger(session_factory, make_user):
    _, wallet_id = make_user(balance="100.00")

    with session_factory() as db:
        ledger = LedgerStore(db)
        debit = ledger.debit(wallet_id, "60.00", "Ticket")
        ledger.reverse(debit.id)
        ledger.debit(wallet_id, "25.00", "Ticket")
        db.commit()

    with session_factory() as db:
        report = LedgerStore(db).reconcile(wallet_id)

    assert report.is_consistent
    assert report.balance == Decimal("75.00")
    assert report.total_credits == Decimal("160.00")
    assert report.total_debits == Decimal("85.00")


def test_transactions_listed_newest_first(session_factory, make_user):
    _, wallet_id = make_user(balance="50.00")

    with session_factory() as db:
        ledger = LedgerStore(db)
        ledger.debit(wallet_id, "20.00", "Ticket")
        db.commit()
        transactions = ledger.list_transactions(wallet_id)

    assert [t.type for t in transactions] == ["debit", "credit"]
