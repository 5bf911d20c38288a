from datetime import datetime
from models.db import db
from models.enums import DiscountType, PromotionStatus

class Promotion(db.Model):
    __tablename__ = "promotions"

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    code = db.Column(db.String(40), nullable=False, index=True)  # always uppercased
    title = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(10), nullable=False, default=DiscountType.PERCENT.value)
    discount_value = db.Column(db.Numeric(14, 2), nullable=False)
    max_discount_amount = db.Column(db.Numeric(14, 2), nullable=True)
    min_order_amount = db.Column(db.Numeric(14, 2), nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_per_customer = db.Column(db.Integer, nullable=True)

    start_at = db.Column(db.DateTime, nullable=False)
    end_at = db.Column(db.DateTime, nullable=False)
    # stored status; scheduled/active/expired are derived at read time
    status = db.Column(db.String(20), nullable=False, default=PromotionStatus.DRAFT.value)

    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("shop_id", "code", name="uq_promotion_shop_code"),
    )
