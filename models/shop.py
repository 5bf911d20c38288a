from datetime import datetime
from models.db import db

class Shop(db.Model):
    __tablename__ = "shops"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    owner = db.relationship("User")
    fields = db.relationship("Field", back_populates="shop", lazy=True)
    bank_accounts = db.relationship("ShopBankAccount", back_populates="shop", lazy=True)


class ShopBankAccount(db.Model):
    __tablename__ = "shop_bank_accounts"

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    bank_name = db.Column(db.String(120), nullable=False)
    account_number = db.Column(db.String(40), nullable=False)
    account_holder = db.Column(db.String(120), nullable=False)
    is_default = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    shop = db.relationship("Shop", back_populates="bank_accounts")
