"""
Payments for bookings and the single path that settles one.

confirm_payment() is shared by admin verification and the bank webhook. It
runs every write in one transaction with the payment and booking rows
locked, and each step checks whether it already happened so a retry cannot
credit the wallet or bump the rent counter twice.
"""
import json
import logging
from datetime import datetime
from urllib.parse import urlencode

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.cart import CartEntry
from models.field import Field
from models.payment import Payment, PaymentLog
from models.enums import (
    BookingPaymentStatus,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
)
from services import slot_ledger, wallet
from services.pricing import calculate_fees, round_money
from utils.audit import log_event
from utils.errors import BadRequestError, ConflictError, NotFoundError
from utils.notifications import send_booking_confirmation
from utils.transactions import atomic

logger = logging.getLogger(__name__)


def build_transfer_reference(booking_id: int) -> str:
    return f"BK{booking_id}"


def _format_amount(amount) -> str:
    amount = round_money(amount)
    if amount == amount.to_integral_value():
        return str(int(amount))
    return str(amount)


def build_qr_url(amount, reference: str) -> str:
    cfg = current_app.config
    query = urlencode({
        "acc": cfg.get("SEPAY_ACC") or "",
        "bank": cfg.get("SEPAY_BANK") or "",
        "amount": _format_amount(amount),
        "des": reference,
    })
    return f"{cfg.get('SEPAY_QR_BASE_URL', 'https://qr.sepay.vn/img')}?{query}"


def log_payment_action(payment_id: int, action: str, request_data=None, response_data=None,
                       external_id=None, result_code=None, result_message=None) -> PaymentLog:
    """Append to the payment trail in the caller's transaction."""
    row = PaymentLog(
        payment_id=payment_id,
        action=action,
        external_id=str(external_id) if external_id not in (None, "") else None,
        request_json=json.dumps(request_data, default=str) if request_data is not None else None,
        response_json=json.dumps(response_data, default=str) if response_data is not None else None,
        result_code=result_code,
        result_message=result_message,
    )
    db.session.add(row)
    db.session.flush()
    return row


def create_payment(booking: Booking, amount=None, method=PaymentMethod.BANK_TRANSFER.value) -> Payment:
    parsed = PaymentMethod.parse(method)
    if parsed is None:
        raise BadRequestError(
            "Invalid payment method",
            details={"allowed": [m.value for m in PaymentMethod]},
        )
    amount = round_money(booking.total_price if amount is None else amount)

    with atomic("payment_create"):
        payment = Payment(
            booking_id=booking.id,
            method=parsed.value,
            amount=amount,
            status=PaymentStatus.PENDING.value,
        )
        db.session.add(payment)
        db.session.flush()
        log_payment_action(payment.id, "payment_created", response_data={"amount": amount, "method": parsed.value})
    return payment


def latest_payment(booking_id: int):
    return (
        Payment.query
        .filter_by(booking_id=booking_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .first()
    )


def get_payment_status(booking_id: int) -> dict:
    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")

    payment = latest_payment(booking_id)
    if not payment:
        return {
            "payment_id": None,
            "booking_code": booking.id,
            "reference": booking.reference,
            "amount": float(booking.total_price),
            "status": booking.payment_status or BookingPaymentStatus.PENDING.value,
            "paid_at": None,
        }
    return {
        "payment_id": payment.id,
        "booking_code": booking.id,
        "reference": booking.reference,
        "amount": float(payment.amount),
        "method": payment.method,
        "status": payment.status,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
    }


def _summary(payment: Payment, booking: Booking, already_paid: bool) -> dict:
    total, fee, net = calculate_fees(payment.amount)
    return {
        "success": True,
        "payment_id": payment.id,
        "booking_code": booking.id,
        "reference": booking.reference,
        "amount": float(total),
        "platform_fee": float(fee),
        "net_to_shop": float(net),
        "already_paid": already_paid,
    }


def confirm_payment(payment_id: int, external_id=None, source: str = "manual", actor_user_id=None) -> dict:
    with atomic("payment_confirm"):
        payment = Payment.query.filter_by(id=payment_id).with_for_update().populate_existing().first()
        if not payment:
            raise NotFoundError("Payment not found")
        booking = Booking.query.filter_by(id=payment.booking_id).with_for_update().populate_existing().first()
        if not booking:
            raise NotFoundError("Booking not found")

        if payment.status == PaymentStatus.PAID.value:
            return _summary(payment, booking, already_paid=True)

        if not PaymentStatus(payment.status).can_transition_to(PaymentStatus.PAID):
            raise ConflictError(f"Payment {payment.id} is {payment.status} and cannot be confirmed")
        if booking.status == BookingStatus.CANCELLED.value:
            raise ConflictError(f"Booking {booking.reference} was cancelled")

        ledger_rows = slot_ledger.ledger_rows_for_booking(booking.id, lock=True)
        if len(ledger_rows) != len(booking.slots):
            raise ConflictError(
                f"Held slots of booking {booking.reference} were released",
                details={"expected": len(booking.slots), "held": len(ledger_rows)},
            )

        now = datetime.utcnow()
        was_confirmed = booking.status == BookingStatus.CONFIRMED.value

        payment.status = PaymentStatus.PAID.value
        payment.paid_at = now
        if external_id:
            payment.external_transaction_id = str(external_id)

        if booking.status == BookingStatus.PENDING.value:
            booking.status = BookingStatus.CONFIRMED.value
        booking.payment_status = BookingPaymentStatus.PAID.value

        CartEntry.query.filter_by(booking_id=booking.id).delete(synchronize_session="fetch")
        slot_ledger.mark_booked(booking.id)

        field = db.session.get(Field, booking.field_id)
        total, fee, net = calculate_fees(payment.amount)
        if net > 0 and not wallet.has_settlement(booking.id):
            wallet.credit(
                field.shop_id,
                net,
                booking_id=booking.id,
                note=f"Payment from booking {booking.reference}",
            )

        if not was_confirmed:
            field.rent_count = Field.rent_count + 1

        summary = _summary(payment, booking, already_paid=False)
        log_payment_action(
            payment.id,
            "payment_success",
            request_data={"source": source, "external_id": external_id},
            response_data=summary,
            external_id=external_id,
            result_code=0,
            result_message="Success",
        )
        log_event(
            "PAYMENT_CONFIRM",
            user_id=actor_user_id,
            entity="payment",
            entity_id=payment.id,
            metadata={"booking_id": booking.id, "source": source, "net_to_shop": net},
        )
        field_name = field.name

    send_booking_confirmation(booking, field_name)
    return summary


def fail_pending_payments(booking_id: int, reason: str) -> int:
    """Mark a booking's pending payments failed, in the caller's transaction."""
    rows = Payment.query.filter_by(booking_id=booking_id, status=PaymentStatus.PENDING.value).all()
    for p in rows:
        p.status = PaymentStatus.FAILED.value
        log_payment_action(p.id, "payment_failed", response_data={"reason": reason}, result_message=reason[:255])
    return len(rows)


def is_duplicate_delivery(action: str, external_id) -> bool:
    if not external_id:
        return False
    return PaymentLog.query.filter_by(action=action, external_id=str(external_id)).first() is not None


def record_delivery(payment_id: int, action: str, payload, external_id, message: str) -> bool:
    """
    Tag a webhook delivery with its external id in its own transaction.
    Returns False when another worker recorded the same delivery first.
    """
    try:
        with atomic("payment_delivery"):
            log_payment_action(payment_id, action, request_data=payload,
                               response_data={"status": "processing"},
                               external_id=external_id, result_code=0, result_message=message)
    except IntegrityError:
        return False
    return True
