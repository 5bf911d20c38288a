"""
Shop payout requests against the wallet.

The wallet is debited when the request is made, with the wallet row locked
across the balance check and the debit, so two concurrent requests can never
spend the same balance. Approval only finalizes that debit; rejection puts the
amount back with a refund_payout credit.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from models import db
from models.payout import PayoutRequest
from models.shop import Shop, ShopBankAccount
from models.user import User
from models.wallet import WalletTransaction
from models.enums import PayoutStatus, WalletTransactionStatus, WalletTransactionType
from security.password import verify_password
from services import wallet
from services.pricing import round_money
from utils.audit import log_event
from utils.errors import (
    BadRequestError,
    InsufficientBalanceError,
    NotFoundError,
    UnauthorizedError,
)
from utils.notifications import send_payout_decision, send_payout_request_alert
from utils.transactions import atomic

logger = logging.getLogger(__name__)


def transaction_code(payout: PayoutRequest, when: datetime) -> str:
    return f"PAYOUT-{when.strftime('%Y%m%d')}-{payout.id:06d}"


def serialize_payout(p: PayoutRequest) -> dict:
    bank = p.bank_account
    return {
        "id": p.id,
        "shop_id": p.shop_id,
        "shop_name": p.shop.name if p.shop else None,
        "amount": float(p.amount),
        "status": p.status,
        "note": p.note,
        "admin_note": p.admin_note,
        "rejection_reason": p.rejection_reason,
        "transaction_code": p.transaction_code,
        "bank_account": {
            "id": bank.id,
            "bank_name": bank.bank_name,
            "account_number": bank.account_number,
            "account_holder": bank.account_holder,
        } if bank else None,
        "requested_at": p.requested_at.isoformat() if p.requested_at else None,
        "processed_at": p.processed_at.isoformat() if p.processed_at else None,
    }


def _parse_amount(value) -> Decimal:
    try:
        amount = round_money(Decimal(str(value)))
    except (InvalidOperation, TypeError, ValueError):
        raise BadRequestError("amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise BadRequestError("amount must be positive")
    return amount


def _resolve_bank_account(shop_id: int, bank_account_id=None) -> ShopBankAccount:
    q = ShopBankAccount.query.filter_by(shop_id=shop_id)
    if bank_account_id:
        account = q.filter_by(id=bank_account_id).first()
    else:
        account = (
            q.order_by(ShopBankAccount.is_default.desc(), ShopBankAccount.id.asc()).first()
        )
    if not account:
        raise NotFoundError("Bank account not found. Select or add an account first")
    return account


def _load_payout(payout_id: int) -> PayoutRequest:
    payout = (
        PayoutRequest.query
        .filter_by(id=payout_id)
        .with_for_update().populate_existing()
        .first()
    )
    if not payout:
        raise NotFoundError("Payout request not found")
    return payout


def _payout_debit(payout_id: int):
    return WalletTransaction.query.filter_by(
        payout_id=payout_id,
        type=WalletTransactionType.DEBIT_PAYOUT.value,
    ).first()


def request_payout(shop_id: int, amount, bank_account_id=None, note=None,
                   actor_user_id=None, actor_password=None) -> dict:
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise NotFoundError("Shop not found")

    amount = _parse_amount(amount)

    if actor_user_id and actor_password:
        user = db.session.get(User, actor_user_id)
        if not user:
            raise NotFoundError("User not found")
        if not verify_password(actor_password, user.password_hash):
            raise UnauthorizedError("Incorrect password")

    account = _resolve_bank_account(shop_id, bank_account_id)
    note = (note or "").strip() or None

    with atomic("payout_request"):
        shop_wallet = wallet.get_wallet(shop_id, lock=True)
        balance = round_money(shop_wallet.balance)
        if balance < amount:
            raise InsufficientBalanceError(
                "Insufficient wallet balance",
                details={"balance": float(balance), "requested": float(amount)},
            )

        payout = PayoutRequest(
            shop_id=shop_id,
            bank_account_id=account.id,
            amount=amount,
            status=PayoutStatus.REQUESTED.value,
            note=note,
        )
        db.session.add(payout)
        db.session.flush()

        wallet.debit(
            shop_id,
            amount,
            tx_type=WalletTransactionType.DEBIT_PAYOUT,
            payout_id=payout.id,
            status=WalletTransactionStatus.PENDING,
            note=f"Payout request PAYOUT-{payout.id}",
        )
        log_event("PAYOUT_REQUEST", user_id=actor_user_id, entity="payout", entity_id=payout.id,
                  metadata={"shop_id": shop_id, "amount": amount})
        payout_id = payout.id

    payout = db.session.get(PayoutRequest, payout_id)
    send_payout_request_alert(payout, shop, account)
    return serialize_payout(payout)


def approve_payout(payout_id: int, note=None, actor_user_id=None) -> dict:
    with atomic("payout_approve"):
        payout = _load_payout(payout_id)
        if payout.status != PayoutStatus.REQUESTED.value:
            raise BadRequestError("Only 'requested' payouts can be approved")

        now = datetime.utcnow()
        payout.status = PayoutStatus.PAID.value
        payout.processed_at = now
        payout.transaction_code = transaction_code(payout, now)
        payout.admin_note = (note or "").strip() or None

        debit = _payout_debit(payout.id)
        if debit is not None:
            debit.status = WalletTransactionStatus.COMPLETED.value

        log_event("PAYOUT_APPROVE", user_id=actor_user_id, entity="payout", entity_id=payout.id,
                  metadata={"transaction_code": payout.transaction_code})

    payout = db.session.get(PayoutRequest, payout_id)
    send_payout_decision(payout, payout.shop, "approved", note=payout.admin_note)
    return serialize_payout(payout)


def reject_payout(payout_id: int, reason=None, actor_user_id=None) -> dict:
    reason = (reason or "").strip() or None

    with atomic("payout_reject"):
        payout = _load_payout(payout_id)
        if payout.status != PayoutStatus.REQUESTED.value:
            raise BadRequestError("Only 'requested' payouts can be rejected")

        payout.status = PayoutStatus.REJECTED.value
        payout.processed_at = datetime.utcnow()
        payout.rejection_reason = reason

        debit = _payout_debit(payout.id)
        if debit is not None:
            debit.status = WalletTransactionStatus.REVERSED.value

        wallet.get_wallet(payout.shop_id, lock=True)
        wallet.credit(
            payout.shop_id,
            payout.amount,
            tx_type=WalletTransactionType.REFUND_PAYOUT,
            payout_id=payout.id,
            note=f"Rejected payout PAYOUT-{payout.id}",
        )
        log_event("PAYOUT_REJECT", user_id=actor_user_id, entity="payout", entity_id=payout.id,
                  metadata={"reason": reason, "refunded": payout.amount})

    payout = db.session.get(PayoutRequest, payout_id)
    send_payout_decision(payout, payout.shop, "rejected", reason=reason)
    return serialize_payout(payout)


def list_payouts(shop_id=None, status=None, limit=20, offset=0) -> dict:
    limit = min(max(1, int(limit or 20)), 100)
    offset = max(0, int(offset or 0))

    q = PayoutRequest.query
    if shop_id is not None:
        q = q.filter_by(shop_id=shop_id)
    if status:
        parsed = PayoutStatus.parse(status)
        if parsed is None:
            raise BadRequestError("Invalid status filter")
        q = q.filter_by(status=parsed.value)

    total = q.count()
    rows = (
        q.order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return {
        "data": [serialize_payout(p) for p in rows],
        "pagination": {"limit": limit, "offset": offset, "total": total},
    }
