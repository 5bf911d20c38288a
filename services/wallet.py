"""
Shop wallet balance and its transaction trail.

The balance moves only together with a WalletTransaction row and always as a
single `balance = balance +/- x` statement, so balance equals the signed sum of
the trail. Functions here join the caller's transaction and never commit.
"""
import logging
from decimal import Decimal

from sqlalchemy import func

from models import db
from models.wallet import ShopWallet, WalletTransaction
from models.payout import PayoutRequest
from models.enums import (
    PayoutStatus,
    WalletTransactionStatus,
    WalletTransactionType,
)
from services.pricing import round_money
from utils.errors import BadRequestError

logger = logging.getLogger(__name__)


def get_wallet(shop_id: int, lock: bool = False, create: bool = True):
    q = ShopWallet.query.filter_by(shop_id=shop_id)
    if lock:
        q = q.with_for_update().populate_existing()
    wallet = q.first()
    if wallet is None and create:
        wallet = ShopWallet(shop_id=shop_id, balance=Decimal("0"))
        db.session.add(wallet)
        db.session.flush()
    return wallet


def get_balance(shop_id: int) -> Decimal:
    wallet = get_wallet(shop_id, create=False)
    if wallet is None:
        return Decimal("0.00")
    return round_money(wallet.balance)


def _apply(shop_id: int, tx_type: WalletTransactionType, amount, status, note, booking_id, payout_id):
    amount = round_money(amount)
    if amount <= 0:
        raise BadRequestError("Wallet amount must be positive")

    wallet = get_wallet(shop_id)
    delta = amount * tx_type.sign
    wallet.balance = ShopWallet.balance + delta

    tx = WalletTransaction(
        shop_id=shop_id,
        type=tx_type.value,
        amount=amount,
        status=status.value,
        note=note,
        booking_id=booking_id,
        payout_id=payout_id,
    )
    db.session.add(tx)
    db.session.flush()
    logger.info("wallet shop=%s %s %s (%s)", shop_id, tx_type.value, delta, status.value)
    return tx


def credit(shop_id: int, amount, tx_type=WalletTransactionType.CREDIT_SETTLEMENT,
           note=None, booking_id=None, payout_id=None,
           status=WalletTransactionStatus.COMPLETED) -> WalletTransaction:
    if tx_type.sign < 0:
        raise ValueError(f"{tx_type.value} is not a credit")
    return _apply(shop_id, tx_type, amount, status, note, booking_id, payout_id)


def debit(shop_id: int, amount, tx_type=WalletTransactionType.DEBIT_PAYOUT,
          note=None, booking_id=None, payout_id=None,
          status=WalletTransactionStatus.COMPLETED) -> WalletTransaction:
    if tx_type.sign > 0:
        raise ValueError(f"{tx_type.value} is not a debit")
    return _apply(shop_id, tx_type, amount, status, note, booking_id, payout_id)


def has_settlement(booking_id: int) -> bool:
    return db.session.query(WalletTransaction.id).filter_by(
        booking_id=booking_id,
        type=WalletTransactionType.CREDIT_SETTLEMENT.value,
    ).first() is not None


def ledger_sum(shop_id: int) -> Decimal:
    """Signed sum of every transaction; equals the stored balance."""
    rows = (
        db.session.query(WalletTransaction.type, func.coalesce(func.sum(WalletTransaction.amount), 0))
        .filter(WalletTransaction.shop_id == shop_id)
        .group_by(WalletTransaction.type)
        .all()
    )
    total = Decimal("0")
    for tx_type, amount in rows:
        total += Decimal(str(amount)) * WalletTransactionType(tx_type).sign
    return round_money(total)


def serialize_transaction(tx: WalletTransaction) -> dict:
    return {
        "id": tx.id,
        "type": tx.type,
        "amount": float(tx.amount),
        "delta": float(tx.delta),
        "status": tx.status,
        "note": tx.note,
        "booking_id": tx.booking_id,
        "payout_id": tx.payout_id,
        "created_at": tx.created_at.isoformat() if tx.created_at else None,
    }


def list_transactions(shop_id: int, limit: int = 50, offset: int = 0):
    limit = max(1, min(int(limit or 50), 200))
    offset = max(0, int(offset or 0))
    rows = (
        WalletTransaction.query
        .filter_by(shop_id=shop_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return [serialize_transaction(t) for t in rows]


def wallet_stats(shop_id: int) -> dict:
    def _sum(*filters):
        value = db.session.query(func.coalesce(func.sum(WalletTransaction.amount), 0)).filter(
            WalletTransaction.shop_id == shop_id, *filters
        ).scalar()
        return float(value or 0)

    pending_payouts = db.session.query(func.coalesce(func.sum(PayoutRequest.amount), 0)).filter(
        PayoutRequest.shop_id == shop_id,
        PayoutRequest.status == PayoutStatus.REQUESTED.value,
    ).scalar()

    return {
        "shop_id": shop_id,
        "balance": float(get_balance(shop_id)),
        "total_settled": _sum(WalletTransaction.type == WalletTransactionType.CREDIT_SETTLEMENT.value),
        "total_paid_out": _sum(
            WalletTransaction.type == WalletTransactionType.DEBIT_PAYOUT.value,
            WalletTransaction.status == WalletTransactionStatus.COMPLETED.value,
        ),
        "total_refunded": _sum(WalletTransaction.type == WalletTransactionType.DEBIT_REFUND.value),
        "pending_payout_amount": float(pending_payouts or 0),
        "transaction_count": WalletTransaction.query.filter_by(shop_id=shop_id).count(),
    }
