from datetime import datetime
from decimal import Decimal
from models.db import db
from models.enums import WalletTransactionType, WalletTransactionStatus

class ShopWallet(db.Model):
    __tablename__ = "shop_wallets"

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, unique=True, index=True)
    balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class WalletTransaction(db.Model):
    __tablename__ = "wallet_transactions"

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    type = db.Column(db.String(30), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)  # always positive; sign comes from type
    status = db.Column(db.String(20), nullable=False, default=WalletTransactionStatus.COMPLETED.value)
    note = db.Column(db.String(255), nullable=True)

    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    payout_id = db.Column(db.Integer, db.ForeignKey("payout_requests.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def delta(self) -> Decimal:
        return Decimal(self.amount) * WalletTransactionType(self.type).sign
