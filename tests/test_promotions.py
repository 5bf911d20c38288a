from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from models import db
from models.booking import Booking
from models.promotion import Promotion
from models.enums import BookingStatus, BookingPaymentStatus, PromotionStatus
from services import promotions
from utils.errors import (
    BadRequestError,
    ConflictError,
    GoneError,
    NotFoundError,
    PromotionLimitError,
)


def _promotion(shop, code="SUMMER10", **kwargs):
    now = datetime.utcnow()
    values = dict(
        shop_id=shop.id,
        code=code,
        title="Summer deal",
        discount_type="percent",
        discount_value=Decimal("10"),
        start_at=now - timedelta(days=1),
        end_at=now + timedelta(days=1),
        status=PromotionStatus.ACTIVE.value,
        usage_per_customer=1,
    )
    values.update(kwargs)
    p = Promotion(**values)
    db.session.add(p)
    db.session.commit()
    return p


def _booking_using(promotion, field, user, status=BookingStatus.PENDING.value,
                   payment_status=BookingPaymentStatus.PENDING.value, code="CHK00001"):
    b = Booking(
        field_id=field.id,
        customer_user_id=user.id,
        total_price=Decimal("90000"),
        promotion_id=promotion.id,
        promotion_code=promotion.code,
        checkin_code=code,
        status=status,
        payment_status=payment_status,
    )
    db.session.add(b)
    db.session.commit()
    return b


# ---------- lookup ----------
def test_get_by_code_normalizes(shop):
    p = _promotion(shop)
    assert promotions.get_by_code("  summer10 ").id == p.id


def test_get_by_code_errors(shop):
    with pytest.raises(BadRequestError):
        promotions.get_by_code("   ")
    with pytest.raises(NotFoundError):
        promotions.get_by_code("NOPE")

    _promotion(shop, code="OLD", is_deleted=True)
    with pytest.raises(GoneError):
        promotions.get_by_code("old")


# ---------- evaluation ----------
def test_percent_discount_with_cap(app, shop):
    p = _promotion(shop, discount_value=Decimal("20"), max_discount_amount=Decimal("30000"))
    discount, final = promotions.apply_promotion(p, shop.id, Decimal("300000"))
    assert discount == Decimal("30000.00")
    assert final == Decimal("270000.00")


def test_fixed_discount_never_exceeds_total(app, shop):
    p = _promotion(shop, discount_type="fixed", discount_value=Decimal("500000"))
    discount, final = promotions.apply_promotion(p, shop.id, Decimal("200000"))
    assert discount == Decimal("200000.00")
    assert final == Decimal("0.00")


def test_other_shop_rejected(app, shop, owner):
    from models.shop import Shop
    other = Shop(name="Elsewhere", owner_user_id=owner.id)
    db.session.add(other)
    db.session.commit()

    p = _promotion(shop)
    with pytest.raises(BadRequestError, match="does not apply"):
        promotions.apply_promotion(p, other.id, Decimal("100000"))


@pytest.mark.parametrize("kwargs, message", [
    ({"status": PromotionStatus.DISABLED.value}, "paused"),
    ({"start_at": datetime.utcnow() + timedelta(days=1),
      "end_at": datetime.utcnow() + timedelta(days=2)}, "not started"),
    ({"start_at": datetime.utcnow() - timedelta(days=3),
      "end_at": datetime.utcnow() - timedelta(days=1)}, "expired"),
    ({"status": PromotionStatus.DRAFT.value}, "not active"),
    ({"min_order_amount": Decimal("500000")}, "minimum"),
])
def test_rejections(app, shop, kwargs, message):
    p = _promotion(shop, **kwargs)
    with pytest.raises(BadRequestError, match=message):
        promotions.apply_promotion(p, shop.id, Decimal("200000"))


def test_total_usage_limit(app, shop, field, customer, other_customer):
    p = _promotion(shop, usage_limit=1, usage_per_customer=5)
    _booking_using(p, field, other_customer)

    with pytest.raises(PromotionLimitError):
        promotions.apply_promotion(p, shop.id, Decimal("100000"), user_id=customer.id)


def test_per_customer_limit(app, shop, field, customer, other_customer):
    p = _promotion(shop, usage_per_customer=1)
    _booking_using(p, field, customer)

    with pytest.raises(PromotionLimitError) as exc:
        promotions.apply_promotion(p, shop.id, Decimal("100000"), user_id=customer.id)
    assert exc.value.code == "PROMOTION_LIMIT_REACHED"

    discount, _ = promotions.apply_promotion(p, shop.id, Decimal("100000"), user_id=other_customer.id)
    assert discount == Decimal("10000.00")


def test_cancelled_bookings_do_not_count(app, shop, field, customer):
    p = _promotion(shop, usage_limit=1)
    _booking_using(p, field, customer, status=BookingStatus.CANCELLED.value)
    discount, _ = promotions.apply_promotion(p, shop.id, Decimal("100000"), user_id=customer.id)
    assert discount == Decimal("10000.00")


# ---------- owner CRUD ----------
def _payload(**overrides):
    now = datetime.utcnow()
    data = {
        "code": "weekend",
        "title": "Weekend",
        "discount_type": "fixed",
        "discount_value": 20000,
        "start_at": (now - timedelta(hours=1)).isoformat(),
        "end_at": (now + timedelta(days=2)).isoformat(),
    }
    data.update(overrides)
    return data


def test_create_promotion_defaults(app, shop):
    p = promotions.create_promotion(shop.id, _payload())
    assert p.code == "WEEKEND"
    assert p.status == PromotionStatus.ACTIVE.value
    assert p.usage_per_customer == 1


def test_create_promotion_duplicate_code(app, shop):
    promotions.create_promotion(shop.id, _payload())
    with pytest.raises(ConflictError):
        promotions.create_promotion(shop.id, _payload())


def test_create_promotion_validation(app, shop):
    with pytest.raises(BadRequestError):
        promotions.create_promotion(shop.id, _payload(discount_type="percent", discount_value=150))
    now = datetime.utcnow()
    with pytest.raises(BadRequestError):
        promotions.create_promotion(shop.id, _payload(start_at=(now + timedelta(days=1)).isoformat(),
                                                      end_at=now.isoformat()))
    with pytest.raises(BadRequestError):
        promotions.create_promotion(shop.id, _payload(start_at=now.isoformat(), end_at=now.isoformat()))


def test_set_status_and_derived_status(app, shop):
    p = _promotion(shop)
    promotions.set_promotion_status(shop.id, p.id, "disabled")
    assert promotions.current_status(db.session.get(Promotion, p.id)) == PromotionStatus.DISABLED

    promotions.set_promotion_status(shop.id, p.id, "active")
    assert promotions.current_status(db.session.get(Promotion, p.id)) == PromotionStatus.ACTIVE


def test_delete_requires_expired(app, shop):
    p = _promotion(shop)
    with pytest.raises(BadRequestError, match="expired"):
        promotions.delete_promotion(shop.id, p.id)


def test_delete_blocked_by_unpaid_booking(app, shop, field, customer):
    now = datetime.utcnow()
    p = _promotion(shop, start_at=now - timedelta(days=5), end_at=now - timedelta(days=1))
    _booking_using(p, field, customer)
    with pytest.raises(BadRequestError, match="unpaid"):
        promotions.delete_promotion(shop.id, p.id)


def test_delete_soft_deletes(app, shop):
    now = datetime.utcnow()
    p = _promotion(shop, start_at=now - timedelta(days=5), end_at=now - timedelta(days=1))
    promotions.delete_promotion(shop.id, p.id)

    row = db.session.get(Promotion, p.id)
    assert row.is_deleted is True
    assert row.deleted_at is not None
    assert promotions.list_promotions(shop.id) == []
