from datetime import datetime
from models.db import db
from models.enums import SlotStatus

class FieldSlot(db.Model):
    __tablename__ = "field_slots"

    id = db.Column(db.Integer, primary_key=True)

    field_id = db.Column(db.Integer, db.ForeignKey("fields.id"), nullable=False, index=True)
    # NULL = whole field, not a specific court
    quantity_id = db.Column(db.Integer, db.ForeignKey("field_quantities.id"), nullable=True, index=True)

    play_date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=SlotStatus.AVAILABLE.value)
    hold_expires_at = db.Column(db.DateTime, nullable=True, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        # a court window exists once; racing inserts fail here
        db.UniqueConstraint(
            "field_id", "quantity_id", "play_date", "start_time", "end_time",
            name="uq_field_slot_window",
        ),
    )

    def hold_expired(self, now=None) -> bool:
        now = now or datetime.utcnow()
        return self.hold_expires_at is not None and self.hold_expires_at <= now

    def is_taken(self, now=None) -> bool:
        if self.status == SlotStatus.BOOKED.value:
            return True
        if self.status == SlotStatus.HELD.value:
            # a hold without a deadline never lapses on its own
            return self.hold_expires_at is None or not self.hold_expired(now)
        return False
