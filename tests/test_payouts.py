from decimal import Decimal

import pytest

from conftest import PASSWORD
from models import db
from models.payout import PayoutRequest
from models.wallet import WalletTransaction
from models.enums import (
    PayoutStatus,
    WalletTransactionStatus,
    WalletTransactionType,
)
from services import wallet
from services.payouts import approve_payout, list_payouts, reject_payout, request_payout
from utils.errors import (
    BadRequestError,
    InsufficientBalanceError,
    NotFoundError,
    UnauthorizedError,
)


@pytest.fixture
def funded_shop(shop, bank_account):
    wallet.credit(shop.id, Decimal("500000"), note="opening balance")
    db.session.commit()
    return shop


def _conserved(shop_id):
    return wallet.get_balance(shop_id) == wallet.ledger_sum(shop_id)


def test_request_debits_immediately(funded_shop, bank_account, owner):
    payout = request_payout(funded_shop.id, 200000, actor_user_id=owner.id)

    assert payout["status"] == PayoutStatus.REQUESTED.value
    assert payout["bank_account"]["id"] == bank_account.id
    assert wallet.get_balance(funded_shop.id) == Decimal("300000.00")

    debit = WalletTransaction.query.filter_by(payout_id=payout["id"]).one()
    assert debit.type == WalletTransactionType.DEBIT_PAYOUT.value
    assert debit.status == WalletTransactionStatus.PENDING.value
    assert _conserved(funded_shop.id)


def test_request_more_than_balance(funded_shop):
    with pytest.raises(InsufficientBalanceError) as exc:
        request_payout(funded_shop.id, 500001)
    assert exc.value.code == "INSUFFICIENT_BALANCE"
    assert PayoutRequest.query.count() == 0
    assert wallet.get_balance(funded_shop.id) == Decimal("500000.00")


def test_second_request_sees_first_debit(funded_shop):
    request_payout(funded_shop.id, 400000)
    with pytest.raises(InsufficientBalanceError):
        request_payout(funded_shop.id, 200000)


@pytest.mark.parametrize("amount", [0, -10, "abc", None])
def test_request_rejects_bad_amount(funded_shop, amount):
    with pytest.raises(BadRequestError):
        request_payout(funded_shop.id, amount)


def test_request_needs_bank_account(shop):
    wallet.credit(shop.id, Decimal("1000"))
    db.session.commit()
    with pytest.raises(NotFoundError):
        request_payout(shop.id, 500)


def test_request_checks_password_when_given(funded_shop, owner):
    with pytest.raises(UnauthorizedError):
        request_payout(funded_shop.id, 1000, actor_user_id=owner.id, actor_password="wrong-password")
    payout = request_payout(funded_shop.id, 1000, actor_user_id=owner.id, actor_password=PASSWORD)
    assert payout["amount"] == 1000


def test_approve_completes_debit(funded_shop, admin):
    payout = request_payout(funded_shop.id, 200000)
    approved = approve_payout(payout["id"], note="sent via BIDV", actor_user_id=admin.id)

    assert approved["status"] == PayoutStatus.PAID.value
    assert approved["transaction_code"].startswith("PAYOUT-")
    assert approved["transaction_code"].endswith(f"-{payout['id']:06d}")
    assert approved["admin_note"] == "sent via BIDV"
    assert wallet.get_balance(funded_shop.id) == Decimal("300000.00")

    debit = WalletTransaction.query.filter_by(payout_id=payout["id"]).one()
    assert debit.status == WalletTransactionStatus.COMPLETED.value
    assert _conserved(funded_shop.id)


def test_reject_restores_balance(funded_shop, admin):
    payout = request_payout(funded_shop.id, 200000)
    rejected = reject_payout(payout["id"], reason="wrong account", actor_user_id=admin.id)

    assert rejected["status"] == PayoutStatus.REJECTED.value
    assert rejected["rejection_reason"] == "wrong account"
    assert wallet.get_balance(funded_shop.id) == Decimal("500000.00")

    rows = {t.type: t for t in WalletTransaction.query.filter_by(payout_id=payout["id"])}
    assert rows[WalletTransactionType.DEBIT_PAYOUT.value].status == WalletTransactionStatus.REVERSED.value
    assert rows[WalletTransactionType.REFUND_PAYOUT.value].amount == Decimal("200000")
    assert _conserved(funded_shop.id)


def test_processed_payout_cannot_change(funded_shop):
    payout = request_payout(funded_shop.id, 100000)
    approve_payout(payout["id"])
    with pytest.raises(BadRequestError):
        reject_payout(payout["id"])
    with pytest.raises(BadRequestError):
        approve_payout(payout["id"])


def test_unknown_payout(app):
    with pytest.raises(NotFoundError):
        approve_payout(404)


def test_list_payouts_filters(funded_shop):
    first = request_payout(funded_shop.id, 100000)
    request_payout(funded_shop.id, 50000)
    approve_payout(first["id"])

    all_rows = list_payouts(shop_id=funded_shop.id)
    assert all_rows["pagination"]["total"] == 2

    paid = list_payouts(status="paid")
    assert [p["id"] for p in paid["data"]] == [first["id"]]

    with pytest.raises(BadRequestError):
        list_payouts(status="bogus")


def test_wallet_stats(funded_shop):
    payout = request_payout(funded_shop.id, 100000)
    request_payout(funded_shop.id, 50000)
    approve_payout(payout["id"])

    stats = wallet.wallet_stats(funded_shop.id)
    assert stats["balance"] == 350000
    assert stats["total_paid_out"] == 100000
    assert stats["pending_payout_amount"] == 50000
