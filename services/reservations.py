"""
Turning a customer's selected windows into a held, priced, pending booking.

Slot claims, the booking row, its per-slot rows and the cart entry commit
together or not at all. The payment row is created afterwards in its own
transaction; if that fails the hold still lapses on its own deadline.
"""
import logging
import re
import secrets
import string
from datetime import date, datetime, time, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import Booking, BookingSlot
from models.cart import CartEntry
from models.field import Field, FieldQuantity
from models.enums import (
    BookingPaymentStatus,
    BookingSlotStatus,
    BookingStatus,
    FieldStatus,
    PaymentMethod,
    QuantityStatus,
)
from services import slot_ledger
from services.hold_reaper import reap_expired_holds
from services.payments import build_qr_url, build_transfer_reference, create_payment
from services.pricing import calculate_fees, distribute_amount, round_money, to_decimal
from services.promotions import apply_promotion, get_by_code, normalize_code
from services.slot_ledger import SlotWindow
from utils.audit import log_event
from utils.errors import BadRequestError, NotFoundError
from utils.transactions import atomic

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")

CHECKIN_ALPHABET = string.ascii_uppercase + string.digits
CHECKIN_LENGTH = 8


# ---------- INPUT NORMALIZATION ----------
def parse_play_date(value):
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not DATE_RE.match(raw):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def _parse_time(value):
    m = TIME_RE.match(str(value or "").strip())
    if not m:
        return None
    return time(int(m.group(1)), int(m.group(2)))


def normalize_slots(slots):
    """
    Validate the requested windows, drop repeats and sort them by date
    then start time. The sorted order is also the lock order.
    """
    if not isinstance(slots, (list, tuple)) or not slots:
        raise BadRequestError("Select at least one time slot to book")

    unique = {}
    for index, raw in enumerate(slots, start=1):
        if not isinstance(raw, dict):
            raise BadRequestError(f"Invalid slot at position {index}")
        play_date = parse_play_date(raw.get("play_date"))
        if play_date is None:
            raise BadRequestError(f"Invalid play_date at position {index}. Use YYYY-MM-DD")
        start = _parse_time(raw.get("start_time"))
        end = _parse_time(raw.get("end_time"))
        if start is None or end is None:
            raise BadRequestError(f"Invalid time range at position {index}. Use HH:MM")
        if start >= end:
            raise BadRequestError(f"start_time must be before end_time (slot {index})")

        window = SlotWindow(play_date, start, end)
        unique.setdefault(window.key, window)

    return sorted(unique.values(), key=lambda w: (w.play_date, w.start_time, w.end_time))


def _new_checkin_code() -> str:
    while True:
        code = "".join(secrets.choice(CHECKIN_ALPHABET) for _ in range(CHECKIN_LENGTH))
        if not Booking.query.filter_by(checkin_code=code).first():
            return code


def _price_per_slot(field: Field):
    if field.default_price_per_hour is not None and field.default_price_per_hour > 0:
        return round_money(field.default_price_per_hour)
    return round_money(current_app.config.get("DEFAULT_PRICE_PER_SLOT", 100000))


def _persist_cart_entry(user_id: int, booking_id: int, expires_at: datetime):
    try:
        with db.session.begin_nested():
            db.session.add(CartEntry(user_id=user_id, booking_id=booking_id, expires_at=expires_at))
    except SQLAlchemyError:
        logger.warning("cart entry not saved for booking %s", booking_id, exc_info=True)


def _load_field(field_id: int, quantity_id):
    field = db.session.get(Field, field_id)
    if not field:
        raise NotFoundError("Field not found")
    if field.status != FieldStatus.ACTIVE.value:
        raise BadRequestError(f"Field is {field.status} and cannot be booked")

    if quantity_id is not None:
        quantity = db.session.get(FieldQuantity, quantity_id)
        if not quantity or quantity.field_id != field.id:
            raise NotFoundError("Court not found for this field")
        if quantity.status != QuantityStatus.AVAILABLE.value:
            raise BadRequestError(f"Court {quantity.quantity_number} is {quantity.status}")
    return field


def _coerce_id(value, label: str):
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise BadRequestError(f"Invalid {label}")
    if parsed <= 0:
        raise BadRequestError(f"Invalid {label}")
    return parsed


# ---------- RESERVE ----------
def reserve_slots(field_id, slots, customer=None, promotion_code=None, quantity_id=None,
                  created_by=None, is_customer: bool = False,
                  payment_method: str = PaymentMethod.BANK_TRANSFER.value) -> dict:
    field_id = _coerce_id(field_id, "field id")
    if field_id is None:
        raise BadRequestError("Invalid field id")
    quantity_id = _coerce_id(quantity_id, "quantity_id")

    method = PaymentMethod.parse(payment_method)
    if method is None:
        raise BadRequestError("Invalid payment method")

    reap_expired_holds(field_id)

    windows = normalize_slots(slots)
    field = _load_field(field_id, quantity_id)

    user_id = _coerce_id(created_by, "booking user")
    if user_id is None:
        raise BadRequestError("A signed-in user is required to create a booking")

    slot_count = len(windows)
    price_per_slot = _price_per_slot(field)
    base_total = round_money(price_per_slot * slot_count)

    promotion = None
    discount = to_decimal(0)
    final_total = base_total
    code = normalize_code(promotion_code)
    if code:
        promotion = get_by_code(code, shop_id=field.shop_id)
        discount, final_total = apply_promotion(promotion, field.shop_id, base_total, user_id)

    slot_prices = distribute_amount(final_total, slot_count)
    total, platform_fee, net_to_shop = calculate_fees(final_total)

    customer = customer or {}
    now = datetime.utcnow()
    hold_expires_at = now + timedelta(minutes=current_app.config.get("HOLD_MINUTES", 15))

    with atomic("reserve_slots"):
        slot_ledger.lock_field(field.id)
        claimed = [
            slot_ledger.claim_slot(field.id, w, hold_expires_at, quantity_id=quantity_id,
                                   created_by=user_id, now=now)
            for w in windows
        ]

        booking = Booking(
            field_id=field.id,
            quantity_id=quantity_id,
            customer_user_id=user_id,
            customer_name=(customer.get("name") or "").strip() or None,
            customer_email=(customer.get("email") or "").strip() or None,
            customer_phone=(customer.get("phone") or "").strip() or None,
            total_price=total,
            discount_amount=discount,
            platform_fee=platform_fee,
            net_to_shop=net_to_shop,
            promotion_id=promotion.id if promotion else None,
            promotion_code=promotion.code if promotion else None,
            checkin_code=_new_checkin_code(),
            status=BookingStatus.PENDING.value,
            payment_status=BookingPaymentStatus.PENDING.value,
        )
        db.session.add(booking)
        db.session.flush()

        slot_ledger.attach_booking(claimed, booking.id)
        for w, price in zip(windows, slot_prices):
            db.session.add(BookingSlot(
                booking_id=booking.id,
                field_id=field.id,
                quantity_id=quantity_id,
                play_date=w.play_date,
                start_time=w.start_time,
                end_time=w.end_time,
                price_per_slot=price,
                status=BookingSlotStatus.PENDING.value,
            ))

        if is_customer:
            _persist_cart_entry(user_id, booking.id, hold_expires_at)

        log_event(
            "BOOKING_CREATE",
            user_id=user_id,
            entity="booking",
            entity_id=booking.id,
            metadata={"field_id": field.id, "slots": slot_count, "total": total, "promotion": code or None},
        )

        booking_id = booking.id
        claimed_slots = [
            {
                "slot_id": row.id,
                "quantity_id": row.quantity_id,
                "price": float(price),
                **w.to_dict(),
            }
            for row, w, price in zip(claimed, windows, slot_prices)
        ]

    payment_id = None
    try:
        payment_id = create_payment(booking, total, method.value).id
    except Exception:
        logger.exception("payment row not created for booking %s; hold expires on its own", booking_id)

    reference = build_transfer_reference(booking_id)
    return {
        "booking_code": booking_id,
        "payment_id": payment_id,
        "reference": reference,
        "qr_code": build_qr_url(total, reference),
        "amount": float(total),
        "amount_before_discount": float(base_total),
        "discount_amount": float(discount),
        "platform_fee": float(platform_fee),
        "net_to_shop": float(net_to_shop),
        "promotion_code": promotion.code if promotion else None,
        "promotion_title": promotion.title if promotion else None,
        "hold_expires_at": hold_expires_at.isoformat(),
        "slots": claimed_slots,
    }
