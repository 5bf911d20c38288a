from datetime import datetime
from models.db import db
from models.enums import PaymentStatus, PaymentMethod

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    method = db.Column(db.String(20), nullable=False, default=PaymentMethod.BANK_TRANSFER.value)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="VND")

    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    # id assigned by the bank/gateway on the transfer that settled this payment
    external_transaction_id = db.Column(db.String(120), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    booking = db.relationship("Booking")


class PaymentLog(db.Model):
    """Append-only trail of what happened to a payment."""
    __tablename__ = "payment_logs"

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)

    action = db.Column(db.String(40), nullable=False)  # sepay_webhook, payment_success, payment_error, ...
    external_id = db.Column(db.String(120), nullable=True)
    request_json = db.Column(db.Text, nullable=True)
    response_json = db.Column(db.Text, nullable=True)
    result_code = db.Column(db.Integer, nullable=True)
    result_message = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        # one delivery per vendor transaction id and action
        db.UniqueConstraint("action", "external_id", name="uq_payment_log_action_external"),
    )
