from datetime import datetime
from models.db import db
from models.enums import FieldStatus, QuantityStatus

class Field(db.Model):
    __tablename__ = "fields"

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    sport_type = db.Column(db.String(40), nullable=True)
    default_price_per_hour = db.Column(db.Numeric(14, 2), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=FieldStatus.ACTIVE.value)
    # confirmed-booking popularity counter
    rent_count = db.Column(db.Integer, nullable=False, default=0)
    # bumped by every slot claim; the UPDATE is what serializes claims on this field
    claim_seq = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    shop = db.relationship("Shop", back_populates="fields")
    quantities = db.relationship("FieldQuantity", back_populates="field", lazy=True)


class FieldQuantity(db.Model):
    """One physical court of a field."""
    __tablename__ = "field_quantities"

    id = db.Column(db.Integer, primary_key=True)
    field_id = db.Column(db.Integer, db.ForeignKey("fields.id"), nullable=False, index=True)
    quantity_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=QuantityStatus.AVAILABLE.value)

    field = db.relationship("Field", back_populates="quantities")

    __table_args__ = (
        db.UniqueConstraint("field_id", "quantity_number", name="uq_field_quantity_number"),
    )
