from datetime import datetime
from models.db import db
from models.enums import PayoutStatus

class PayoutRequest(db.Model):
    __tablename__ = "payout_requests"

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("shop_bank_accounts.id"), nullable=False)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PayoutStatus.REQUESTED.value, index=True)
    note = db.Column(db.String(255), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)
    admin_note = db.Column(db.String(255), nullable=True)
    transaction_code = db.Column(db.String(40), nullable=True)

    requested_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    shop = db.relationship("Shop")
    bank_account = db.relationship("ShopBankAccount")
