"""
Lazy expiry of slot holds.

There is no scheduler: availability reads and reservation attempts call
reap_expired_holds() first, and `flask reap-holds` can sweep on demand.
New reservations already treat a lapsed hold as free, so a sweep that
fails or never runs costs freshness, not correctness.
"""
import logging
from datetime import datetime

from models.booking import Booking, BookingSlot
from models.cart import CartEntry
from models.slot import FieldSlot
from models.enums import (
    BookingPaymentStatus,
    BookingSlotStatus,
    BookingStatus,
    SlotStatus,
)
from services import slot_ledger
from services.payments import fail_pending_payments
from utils.audit import log_event
from utils.transactions import atomic

logger = logging.getLogger(__name__)

HOLD_EXPIRED_REASON = "Hold expired before payment"


def find_expired_holds(field_id=None, now=None):
    now = now or datetime.utcnow()
    q = FieldSlot.query.filter(
        FieldSlot.status == SlotStatus.HELD.value,
        FieldSlot.hold_expires_at.isnot(None),
        FieldSlot.hold_expires_at <= now,
    )
    if field_id is not None:
        q = q.filter(FieldSlot.field_id == field_id)
    return q.order_by(FieldSlot.id.asc()).with_for_update().populate_existing().all()


def _cancel_expired_bookings(booking_ids, now) -> int:
    bookings = (
        Booking.query
        .filter(Booking.id.in_(booking_ids), Booking.status == BookingStatus.PENDING.value)
        .order_by(Booking.id.asc())
        .with_for_update().populate_existing()
        .all()
    )
    for b in bookings:
        b.status = BookingStatus.CANCELLED.value
        b.payment_status = BookingPaymentStatus.FAILED.value
        b.cancelled_at = now
        b.cancel_reason = HOLD_EXPIRED_REASON
        fail_pending_payments(b.id, HOLD_EXPIRED_REASON)
        BookingSlot.query.filter_by(booking_id=b.id).update(
            {BookingSlot.status: BookingSlotStatus.CANCELLED.value},
            synchronize_session="fetch",
        )
        log_event("BOOKING_EXPIRE", entity="booking", entity_id=b.id)

    CartEntry.query.filter(CartEntry.booking_id.in_(booking_ids)).delete(synchronize_session="fetch")
    return len(bookings)


def reap_expired_holds(field_id=None, now=None) -> int:
    """
    Cancel pending bookings whose holds lapsed and free their slots.
    Returns the number of slots released. Never raises.
    """
    now = now or datetime.utcnow()
    try:
        with atomic("reap_expired_holds"):
            expired = find_expired_holds(field_id, now)
            if not expired:
                return 0

            booking_ids = sorted({s.booking_id for s in expired if s.booking_id})
            cancelled = _cancel_expired_bookings(booking_ids, now) if booking_ids else 0
            released = slot_ledger.release_slots([s.id for s in expired], expired_before=now)
    except Exception:
        logger.exception("hold reaper sweep failed (field=%s)", field_id)
        return 0

    logger.info("hold reaper released %s slot(s), cancelled %s booking(s) (field=%s)",
                released, cancelled, field_id)
    return released
