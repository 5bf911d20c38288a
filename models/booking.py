from datetime import datetime
from models.db import db
from models.enums import BookingStatus, BookingPaymentStatus, BookingSlotStatus

class Booking(db.Model):
    __tablename__ = "bookings"

    # the id doubles as the public booking code (transfer reference BK<id>)
    id = db.Column(db.Integer, primary_key=True)

    field_id = db.Column(db.Integer, db.ForeignKey("fields.id"), nullable=False, index=True)
    quantity_id = db.Column(db.Integer, db.ForeignKey("field_quantities.id"), nullable=True)
    customer_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(120), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(30), nullable=True)

    total_price = db.Column(db.Numeric(14, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    platform_fee = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    net_to_shop = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=True, index=True)
    promotion_code = db.Column(db.String(40), nullable=True)

    checkin_code = db.Column(db.String(16), unique=True, nullable=False)
    checkin_at = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING.value)
    payment_status = db.Column(db.String(20), nullable=False, default=BookingPaymentStatus.PENDING.value)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    field = db.relationship("Field")
    slots = db.relationship(
        "BookingSlot",
        back_populates="booking",
        order_by="BookingSlot.id",  # inserted in (date, start) order
        lazy=True,
    )

    @property
    def reference(self) -> str:
        return f"BK{self.id}"


class BookingSlot(db.Model):
    """Per-window copy of a booking's slots with the price allotted to each."""
    __tablename__ = "booking_slots"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    field_id = db.Column(db.Integer, db.ForeignKey("fields.id"), nullable=False)
    quantity_id = db.Column(db.Integer, db.ForeignKey("field_quantities.id"), nullable=True)

    play_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    price_per_slot = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=BookingSlotStatus.PENDING.value)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    booking = db.relationship("Booking", back_populates="slots")
