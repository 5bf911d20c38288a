from datetime import datetime
from models.db import db

class CartEntry(db.Model):
    """A logged-in customer's pending booking, shown until its hold lapses."""
    __tablename__ = "cart_entries"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("user_id", "booking_id", name="uq_cart_user_booking"),
    )
