"""
Per-window slot rows: locking, claiming and releasing holds.

Every claim runs inside the caller's transaction after lock_field has taken
the field lock. Window rows are then locked with
SELECT ... FOR UPDATE before any status is read, so two reservations for the
same window serialize on the lock and only the first sees it free.
"""
import logging
from collections import namedtuple
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from models import db
from models.field import Field
from models.slot import FieldSlot
from models.booking import BookingSlot
from models.enums import SlotStatus, BookingSlotStatus
from utils.errors import ConflictError

logger = logging.getLogger(__name__)


class SlotWindow(namedtuple("SlotWindow", "play_date start_time end_time")):
    __slots__ = ()

    @property
    def key(self) -> str:
        return f"{self.play_date.isoformat()}|{self.start_time.isoformat()}|{self.end_time.isoformat()}"

    def label(self) -> str:
        return (
            f"{self.play_date.isoformat()} "
            f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"
        )

    def to_dict(self) -> dict:
        return {
            "play_date": self.play_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
        }


def _conflict(window: SlotWindow, quantity_id=None):
    details = window.to_dict()
    if quantity_id is not None:
        details["quantity_id"] = quantity_id
    return ConflictError(f"Slot {window.label()} is already held or booked", details=details)


def lock_field(field_id: int) -> None:
    """
    Serialize every claim on one field for the rest of the transaction.

    A window with no ledger row yet has nothing for FOR UPDATE to lock, and
    whole-field rows (quantity_id NULL) escape the unique window constraint.
    Writing the parent field row takes a row lock on server databases and the
    database write lock on SQLite, so a second claimer waits here until the
    first commits and then reads its rows.
    """
    Field.query.filter_by(id=field_id).update(
        {Field.claim_seq: Field.claim_seq + 1},
        synchronize_session=False,
    )


def lock_window(field_id: int, window: SlotWindow, quantity_id=None):
    """
    Lock every ledger row that competes for this window.

    With a court: that court's rows and the whole-field rows.
    Without a court: every row of the window, whichever court it names.
    """
    q = FieldSlot.query.filter_by(
        field_id=field_id,
        play_date=window.play_date,
        start_time=window.start_time,
        end_time=window.end_time,
    )
    if quantity_id is not None:
        q = q.filter(or_(FieldSlot.quantity_id == quantity_id, FieldSlot.quantity_id.is_(None)))
    return q.order_by(FieldSlot.id.asc()).with_for_update().populate_existing().all()


def _pick_reusable(rows, quantity_id):
    same = [r for r in rows if r.quantity_id == quantity_id]
    if same:
        return same[0]
    if quantity_id is not None:
        whole_field = [r for r in rows if r.quantity_id is None]
        if whole_field:
            return whole_field[0]
    return None


def claim_slot(field_id: int, window: SlotWindow, hold_expires_at: datetime,
               quantity_id=None, created_by=None, now=None) -> FieldSlot:
    """Hold one window for a new reservation or raise ConflictError. Call lock_field first."""
    now = now or datetime.utcnow()
    rows = lock_window(field_id, window, quantity_id)

    for row in rows:
        if row.is_taken(now):
            raise _conflict(window, row.quantity_id)

    row = _pick_reusable(rows, quantity_id)
    if row is not None:
        row.quantity_id = quantity_id
        row.status = SlotStatus.HELD.value
        row.hold_expires_at = hold_expires_at
        row.booking_id = None
        row.created_by = created_by
        return row

    row = FieldSlot(
        field_id=field_id,
        quantity_id=quantity_id,
        play_date=window.play_date,
        start_time=window.start_time,
        end_time=window.end_time,
        status=SlotStatus.HELD.value,
        hold_expires_at=hold_expires_at,
        created_by=created_by,
    )
    db.session.add(row)
    try:
        db.session.flush()
    except IntegrityError:
        # another transaction inserted the same window first
        raise _conflict(window, quantity_id)
    return row


def attach_booking(rows, booking_id: int):
    for row in rows:
        row.booking_id = booking_id


def release_slots(slot_ids, expired_before=None) -> int:
    """
    Put rows back to available and forget their court, booking and deadline.
    With expired_before only holds that lapsed by then are touched.
    """
    slot_ids = list(slot_ids or [])
    if not slot_ids:
        return 0
    q = FieldSlot.query.filter(FieldSlot.id.in_(slot_ids))
    if expired_before is not None:
        q = q.filter(
            FieldSlot.status == SlotStatus.HELD.value,
            FieldSlot.hold_expires_at <= expired_before,
        )
    return q.update(
        {
            FieldSlot.status: SlotStatus.AVAILABLE.value,
            FieldSlot.quantity_id: None,
            FieldSlot.booking_id: None,
            FieldSlot.hold_expires_at: None,
        },
        synchronize_session="fetch",
    )


def ledger_rows_for_booking(booking_id: int, lock: bool = False):
    q = FieldSlot.query.filter_by(booking_id=booking_id).order_by(FieldSlot.id.asc())
    if lock:
        q = q.with_for_update().populate_existing()
    return q.all()


def mark_booked(booking_id: int) -> int:
    rows = ledger_rows_for_booking(booking_id, lock=True)
    for row in rows:
        row.status = SlotStatus.BOOKED.value
        row.hold_expires_at = None
    BookingSlot.query.filter_by(booking_id=booking_id).update(
        {BookingSlot.status: BookingSlotStatus.BOOKED.value},
        synchronize_session="fetch",
    )
    return len(rows)


def release_booking(booking_id: int) -> int:
    rows = ledger_rows_for_booking(booking_id, lock=True)
    released = release_slots([r.id for r in rows])
    BookingSlot.query.filter_by(booking_id=booking_id).update(
        {BookingSlot.status: BookingSlotStatus.CANCELLED.value},
        synchronize_session="fetch",
    )
    logger.debug("released %s slot(s) of booking %s", released, booking_id)
    return released
