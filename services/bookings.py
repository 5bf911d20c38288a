"""
Reading bookings and moving them through their lifecycle.

transition_booking() is the one state machine used by customers, shop owners
and admins. Who may request which move is decided here from the actor's roles
and relation to the booking, not in the routes.
"""
import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from models import db
from models.booking import Booking
from models.cart import CartEntry
from models.field import Field
from models.payment import Payment
from models.slot import FieldSlot
from models.enums import (
    BookingPaymentStatus,
    BookingStatus,
    PaymentStatus,
    WalletTransactionType,
)
from services import slot_ledger, wallet
from services.hold_reaper import reap_expired_holds
from services.payments import (
    confirm_payment,
    create_payment,
    fail_pending_payments,
    latest_payment,
    log_payment_action,
)
from services.reservations import parse_play_date
from utils.audit import log_event
from utils.errors import BadRequestError, ForbiddenError, NotFoundError
from utils.transactions import atomic

logger = logging.getLogger(__name__)


# ---------- SERIALIZATION ----------
def serialize_booking(b: Booking, include_checkin: bool = False) -> dict:
    out = {
        "booking_code": b.id,
        "reference": b.reference,
        "field_id": b.field_id,
        "field_name": b.field.name if b.field else None,
        "quantity_id": b.quantity_id,
        "status": b.status,
        "payment_status": b.payment_status,
        "total_price": float(b.total_price),
        "discount_amount": float(b.discount_amount or 0),
        "platform_fee": float(b.platform_fee or 0),
        "net_to_shop": float(b.net_to_shop or 0),
        "promotion_code": b.promotion_code,
        "customer": {
            "user_id": b.customer_user_id,
            "name": b.customer_name,
            "email": b.customer_email,
            "phone": b.customer_phone,
        },
        "created_at": b.created_at.isoformat() if b.created_at else None,
        "completed_at": b.completed_at.isoformat() if b.completed_at else None,
        "cancelled_at": b.cancelled_at.isoformat() if b.cancelled_at else None,
        "cancel_reason": b.cancel_reason,
        "checkin_at": b.checkin_at.isoformat() if b.checkin_at else None,
        "slots": [
            {
                "id": s.id,
                "quantity_id": s.quantity_id,
                "play_date": s.play_date.isoformat(),
                "start_time": s.start_time.strftime("%H:%M"),
                "end_time": s.end_time.strftime("%H:%M"),
                "price": float(s.price_per_slot),
                "status": s.status,
            }
            for s in b.slots
        ],
    }
    if include_checkin and b.status == BookingStatus.CONFIRMED.value:
        out["checkin_code"] = b.checkin_code
    return out


# ---------- ACCESS ----------
def _is_admin(actor) -> bool:
    return actor is not None and actor.has_role("ADMIN")


def _owns_field_shop(actor, booking: Booking) -> bool:
    if actor is None or booking.field is None or booking.field.shop is None:
        return False
    return booking.field.shop.owner_user_id == actor.id


def _relation(actor, booking: Booking):
    if _is_admin(actor):
        return "admin"
    if _owns_field_shop(actor, booking):
        return "owner"
    if actor is not None and booking.customer_user_id == actor.id:
        return "customer"
    return None


def _load_booking(booking_id: int, lock: bool = False) -> Booking:
    q = Booking.query.filter_by(id=booking_id)
    if lock:
        q = q.with_for_update().populate_existing()
    booking = q.first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def get_booking(booking_id: int, actor) -> dict:
    booking = _load_booking(booking_id)
    if _relation(actor, booking) is None:
        # don't reveal other customers' bookings
        raise NotFoundError("Booking not found")
    return serialize_booking(booking, include_checkin=True)


def list_customer_bookings(user_id: int, status=None, limit=10, offset=0) -> dict:
    limit = min(max(1, int(limit or 10)), 100)
    offset = max(0, int(offset or 0))

    q = Booking.query.filter_by(customer_user_id=user_id)
    if status:
        parsed = BookingStatus.parse(status)
        if parsed is None:
            raise BadRequestError("Invalid status filter")
        q = q.filter_by(status=parsed.value)

    total = q.count()
    rows = q.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset).all()
    return {
        "data": [serialize_booking(b, include_checkin=True) for b in rows],
        "pagination": {"limit": limit, "offset": offset, "total": total},
    }


def list_cart(user_id: int, now=None) -> dict:
    """A customer's bookings still on hold, soonest deadline first."""
    now = now or datetime.utcnow()
    reap_expired_holds(now=now)
    with atomic("purge_cart"):
        CartEntry.query.filter(
            CartEntry.user_id == user_id,
            CartEntry.expires_at <= now,
        ).delete(synchronize_session="fetch")

    entries = (
        CartEntry.query
        .join(Booking, CartEntry.booking_id == Booking.id)
        .filter(
            CartEntry.user_id == user_id,
            Booking.status == BookingStatus.PENDING.value,
        )
        .order_by(CartEntry.expires_at.asc(), CartEntry.id.asc())
        .all()
    )

    items = []
    for entry in entries:
        item = serialize_booking(db.session.get(Booking, entry.booking_id))
        item.update({
            "cart_id": entry.id,
            "expires_at": entry.expires_at.isoformat(),
            "seconds_until_expiry": max(0, int((entry.expires_at - now).total_seconds())),
        })
        items.append(item)
    return {"items": items, "total": len(items)}


def list_shop_bookings(shop_id: int, status=None, limit=10, offset=0) -> dict:
    limit = min(max(1, int(limit or 10)), 100)
    offset = max(0, int(offset or 0))

    base = Booking.query.join(Field, Booking.field_id == Field.id).filter(Field.shop_id == shop_id)
    q = base
    if status:
        parsed = BookingStatus.parse(status)
        if parsed is None:
            raise BadRequestError("Invalid status filter")
        q = q.filter(Booking.status == parsed.value)

    total = q.count()
    rows = q.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset).all()

    booking_summary = {s.value: 0 for s in BookingStatus}
    payment_summary = {s.value: 0 for s in BookingPaymentStatus}
    for value, count in base.with_entities(Booking.status, func.count(Booking.id)).group_by(Booking.status):
        booking_summary[value] = count
    for value, count in base.with_entities(Booking.payment_status, func.count(Booking.id)).group_by(Booking.payment_status):
        payment_summary[value] = count

    return {
        "data": [serialize_booking(b) for b in rows],
        "pagination": {"limit": limit, "offset": offset, "total": total},
        "summary": {"booking_status": booking_summary, "payment_status": payment_summary},
    }


def get_availability(field_id: int, play_date, quantity_id=None) -> dict:
    day = parse_play_date(play_date)
    if day is None:
        raise BadRequestError("Invalid date. Use YYYY-MM-DD")

    field = db.session.get(Field, field_id)
    if not field:
        raise NotFoundError("Field not found")

    reap_expired_holds(field_id)

    q = FieldSlot.query.filter_by(field_id=field_id, play_date=day)
    if quantity_id is not None:
        q = q.filter((FieldSlot.quantity_id == quantity_id) | FieldSlot.quantity_id.is_(None))
    rows = q.order_by(FieldSlot.start_time.asc(), FieldSlot.id.asc()).all()

    now = datetime.utcnow()
    return {
        "field_id": field.id,
        "field_status": field.status,
        "play_date": day.isoformat(),
        "slots": [
            {
                "slot_id": r.id,
                "quantity_id": r.quantity_id,
                "start_time": r.start_time.strftime("%H:%M"),
                "end_time": r.end_time.strftime("%H:%M"),
                "status": r.status,
                "hold_expires_at": r.hold_expires_at.isoformat() if r.hold_expires_at else None,
                "is_available": not r.is_taken(now),
            }
            for r in rows
        ],
    }


# ---------- LIFECYCLE ----------
def _first_slot_start(booking: Booking):
    starts = [datetime.combine(s.play_date, s.start_time) for s in booking.slots]
    return min(starts) if starts else None


def _check_customer_cutoff(booking: Booking, now: datetime):
    if booking.status == BookingStatus.PENDING.value:
        return
    cutoff_hours = current_app.config.get("CUSTOMER_CANCEL_CUTOFF_HOURS", 2)
    first_start = _first_slot_start(booking)
    if first_start is not None and first_start - now < timedelta(hours=cutoff_hours):
        raise BadRequestError(f"Bookings can only be cancelled at least {cutoff_hours} hours before start")


def _refund_paid_booking(booking: Booking, field: Field, reason: str):
    payment = (
        Payment.query
        .filter_by(booking_id=booking.id, status=PaymentStatus.PAID.value)
        .with_for_update().populate_existing()
        .first()
    )
    if payment is not None:
        payment.status = PaymentStatus.REFUNDED.value
        log_payment_action(payment.id, "payment_refunded",
                           response_data={"amount": payment.amount, "reason": reason},
                           result_message=(reason or "Booking cancelled")[:255])
    booking.payment_status = BookingPaymentStatus.REFUNDED.value

    net = booking.net_to_shop or 0
    if net > 0 and wallet.has_settlement(booking.id):
        wallet.debit(
            field.shop_id,
            net,
            tx_type=WalletTransactionType.DEBIT_REFUND,
            booking_id=booking.id,
            note=f"Refund for cancelled booking {booking.reference}",
        )


def _cancel(booking: Booking, reason, now):
    field = db.session.get(Field, booking.field_id)
    was_confirmed = booking.status == BookingStatus.CONFIRMED.value

    booking.status = BookingStatus.CANCELLED.value
    booking.cancelled_at = now
    booking.cancel_reason = reason

    slot_ledger.release_booking(booking.id)
    CartEntry.query.filter_by(booking_id=booking.id).delete(synchronize_session="fetch")

    if booking.payment_status == BookingPaymentStatus.PAID.value:
        _refund_paid_booking(booking, field, reason)
    elif booking.payment_status == BookingPaymentStatus.PENDING.value:
        fail_pending_payments(booking.id, reason or "Booking cancelled")
        booking.payment_status = BookingPaymentStatus.FAILED.value

    if was_confirmed and (field.rent_count or 0) > 0:
        field.rent_count = Field.rent_count - 1


def _confirm_via_payment(booking_id: int, actor) -> dict:
    if not _is_admin(actor):
        raise ForbiddenError("Only an admin can verify a payment manually")
    booking = _load_booking(booking_id)
    if booking.status != BookingStatus.PENDING.value:
        raise BadRequestError(f"Cannot move booking from {booking.status} to confirmed")

    payment = latest_payment(booking.id)
    if payment is None or payment.status != PaymentStatus.PENDING.value:
        payment = create_payment(booking, booking.total_price)
    confirm_payment(payment.id, source="manual", actor_user_id=actor.id)
    return serialize_booking(_load_booking(booking_id), include_checkin=True)


def transition_booking(booking_id: int, target, actor, reason=None) -> dict:
    target = BookingStatus.parse(target)
    if target is None:
        raise BadRequestError("status must be one of pending, confirmed, completed, cancelled")

    if target == BookingStatus.CONFIRMED:
        return _confirm_via_payment(booking_id, actor)

    reason = (reason or "").strip() or None
    now = datetime.utcnow()

    with atomic("booking_transition"):
        booking = _load_booking(booking_id, lock=True)
        relation = _relation(actor, booking)
        if relation is None:
            raise NotFoundError("Booking not found")

        current = BookingStatus(booking.status)
        if not current.can_transition_to(target):
            raise BadRequestError(f"Cannot move booking from {current.value} to {target.value}")

        if relation == "customer":
            if target != BookingStatus.CANCELLED:
                raise ForbiddenError("Customers can only cancel their bookings")
            _check_customer_cutoff(booking, now)

        previous = booking.status
        if target == BookingStatus.CANCELLED:
            _cancel(booking, reason or f"Cancelled by {relation}", now)
        else:
            booking.status = target.value
            booking.completed_at = now
            CartEntry.query.filter_by(booking_id=booking.id).delete(synchronize_session="fetch")

        log_event(
            f"BOOKING_{target.value.upper()}",
            user_id=actor.id if actor else None,
            entity="booking",
            entity_id=booking.id,
            metadata={"from": previous, "to": target.value, "by": relation, "reason": reason},
        )

    return serialize_booking(_load_booking(booking_id), include_checkin=True)


def cancel_booking(booking_id: int, actor, reason=None) -> dict:
    return transition_booking(booking_id, BookingStatus.CANCELLED, actor, reason)


# ---------- CHECK-IN ----------
def get_checkin_code(booking_id: int, actor) -> dict:
    booking = _load_booking(booking_id)
    if _relation(actor, booking) is None:
        raise NotFoundError("Booking not found")
    if booking.status != BookingStatus.CONFIRMED.value:
        raise BadRequestError("Only confirmed bookings have a check-in code")
    return {"booking_code": booking.id, "checkin_code": booking.checkin_code}


def verify_checkin(booking_id: int, code, actor) -> dict:
    with atomic("booking_checkin"):
        booking = _load_booking(booking_id, lock=True)
        relation = _relation(actor, booking)
        if relation not in ("owner", "admin"):
            raise ForbiddenError("Only the shop can check customers in")
        if booking.status != BookingStatus.CONFIRMED.value:
            raise BadRequestError("Only confirmed bookings can be checked in")
        if str(code or "").strip().upper() != booking.checkin_code:
            raise BadRequestError("Check-in code is incorrect")
        if booking.checkin_at is not None:
            raise BadRequestError("Booking already checked in")

        booking.checkin_at = datetime.utcnow()
        checkin_at = booking.checkin_at
        log_event("BOOKING_CHECKIN", user_id=actor.id, entity="booking", entity_id=booking.id)

    return {"booking_code": booking_id, "checkin_at": checkin_at.isoformat()}
