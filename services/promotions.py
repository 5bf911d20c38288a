"""
Shop promotion codes: lookup, validation against an order and discount math.

Stored status is only ever active, draft or disabled. scheduled, active and
expired are derived from the start/end window when the stored value is not a
sticky override.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.promotion import Promotion
from models.enums import (
    ACTIVE_BOOKING_STATUSES,
    BookingStatus,
    BookingPaymentStatus,
    DiscountType,
    PromotionStatus,
    STICKY_PROMOTION_STATUSES,
    SETTABLE_PROMOTION_STATUSES,
)
from services.pricing import round_money, to_decimal
from utils.audit import log_event
from utils.errors import (
    BadRequestError,
    ConflictError,
    GoneError,
    NotFoundError,
    PromotionLimitError,
)
from utils.transactions import atomic

logger = logging.getLogger(__name__)


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def current_status(promotion: Promotion, now=None) -> PromotionStatus:
    stored = PromotionStatus.parse(promotion.status) or PromotionStatus.DRAFT
    if stored in STICKY_PROMOTION_STATUSES:
        return stored
    now = now or datetime.utcnow()
    if now < promotion.start_at:
        return PromotionStatus.SCHEDULED
    if now > promotion.end_at:
        return PromotionStatus.EXPIRED
    return PromotionStatus.ACTIVE


def usage_counts(promotion_id: int, user_id=None):
    """(total usage, usage by user_id) over bookings that still hold the code."""
    base = db.session.query(func.count(Booking.id)).filter(
        Booking.promotion_id == promotion_id,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    total = base.scalar() or 0
    customer = 0
    if user_id is not None:
        customer = base.filter(Booking.customer_user_id == user_id).scalar() or 0
    return total, customer


def serialize_promotion(p: Promotion, now=None) -> dict:
    total, _ = usage_counts(p.id)
    return {
        "id": p.id,
        "shop_id": p.shop_id,
        "code": p.code,
        "title": p.title,
        "description": p.description,
        "discount_type": p.discount_type,
        "discount_value": float(p.discount_value),
        "max_discount_amount": float(p.max_discount_amount) if p.max_discount_amount is not None else None,
        "min_order_amount": float(p.min_order_amount) if p.min_order_amount is not None else None,
        "usage_limit": p.usage_limit,
        "usage_per_customer": p.usage_per_customer,
        "start_at": p.start_at.isoformat(),
        "end_at": p.end_at.isoformat(),
        "status": p.status,
        "current_status": current_status(p, now).value,
        "usage_count": total,
    }


# ---------- LOOKUP + EVALUATION ----------
def get_by_code(code, shop_id=None) -> Promotion:
    normalized = normalize_code(code)
    if not normalized:
        raise BadRequestError("Promotion code is required")

    rows = Promotion.query.filter_by(code=normalized).order_by(Promotion.id.asc()).all()
    if not rows:
        raise NotFoundError("Promotion code does not exist")

    promotion = rows[0]
    if shop_id is not None:
        own = [p for p in rows if p.shop_id == shop_id]
        if own:
            promotion = own[0]

    if promotion.is_deleted:
        raise GoneError("This promotion is no longer available")
    return promotion


def compute_discount(promotion: Promotion, base_total) -> Decimal:
    base_total = round_money(base_total)
    value = to_decimal(promotion.discount_value)

    if promotion.discount_type == DiscountType.PERCENT.value:
        discount = base_total * value / 100
        if promotion.max_discount_amount is not None and promotion.max_discount_amount >= 0:
            discount = min(discount, to_decimal(promotion.max_discount_amount))
    else:
        discount = value

    discount = max(Decimal("0"), min(discount, base_total))
    return round_money(discount)


def apply_promotion(promotion: Promotion, shop_id: int, base_total, user_id=None, now=None):
    """
    Validate promotion for an order of base_total at shop_id.
    Returns (discount_amount, final_total).
    """
    now = now or datetime.utcnow()
    base_total = round_money(base_total)

    if promotion.shop_id != shop_id:
        raise BadRequestError("Promotion code does not apply to this field")

    status = current_status(promotion, now)
    if promotion.status == PromotionStatus.DISABLED.value:
        raise BadRequestError("This promotion has been paused")
    if now < promotion.start_at:
        raise BadRequestError("This promotion has not started yet")
    if now > promotion.end_at or status == PromotionStatus.EXPIRED:
        raise BadRequestError("This promotion has expired")
    if promotion.status == PromotionStatus.DRAFT.value:
        raise BadRequestError("This promotion is not active yet")
    if promotion.min_order_amount is not None and to_decimal(promotion.min_order_amount) > base_total:
        raise BadRequestError(
            "Order total is below the promotion minimum",
            details={"min_order_amount": float(promotion.min_order_amount)},
        )

    limit = promotion.usage_limit
    if user_id is not None and promotion.usage_per_customer:
        total, mine = usage_counts(promotion.id, user_id)
        if limit is not None and limit >= 0 and total >= limit:
            raise PromotionLimitError("Promotion usage limit reached")
        if promotion.usage_per_customer > 0 and mine >= promotion.usage_per_customer:
            raise PromotionLimitError("You have used this promotion the maximum number of times")
    elif limit is not None and limit >= 0:
        total, _ = usage_counts(promotion.id)
        if total >= limit:
            raise PromotionLimitError("Promotion usage limit reached")

    discount = compute_discount(promotion, base_total)
    final_total = round_money(max(base_total - discount, Decimal("0")))
    return discount, final_total


# ---------- SHOP OWNER CRUD ----------
def _parse_datetime(value, label: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value or "").strip())
    except ValueError:
        raise BadRequestError(f"Invalid {label}. Use ISO format e.g. 2026-01-20T08:00:00")


def _parse_amount(value, label: str, required: bool = False):
    if value is None or value == "":
        if required:
            raise BadRequestError(f"{label} is required")
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise BadRequestError(f"{label} must be a number")
    if amount < 0:
        raise BadRequestError(f"{label} must not be negative")
    return round_money(amount)


def _parse_count(value, label: str, default=None):
    if value is None or value == "":
        return default
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise BadRequestError(f"{label} must be an integer")
    if count < 0:
        raise BadRequestError(f"{label} must not be negative")
    return count


def _get_shop_promotion(shop_id: int, promotion_id: int, lock: bool = False) -> Promotion:
    q = Promotion.query.filter_by(id=promotion_id, shop_id=shop_id, is_deleted=False)
    if lock:
        q = q.with_for_update().populate_existing()
    p = q.first()
    if not p:
        raise NotFoundError("Promotion not found")
    return p


def list_promotions(shop_id: int):
    rows = (
        Promotion.query
        .filter_by(shop_id=shop_id, is_deleted=False)
        .order_by(Promotion.created_at.desc(), Promotion.id.desc())
        .all()
    )
    now = datetime.utcnow()
    return [serialize_promotion(p, now) for p in rows]


def create_promotion(shop_id: int, data: dict, actor_user_id=None) -> Promotion:
    code = normalize_code(data.get("code") or data.get("promotion_code"))
    title = (data.get("title") or "").strip()
    if not code:
        raise BadRequestError("code is required")
    if not title:
        raise BadRequestError("title is required")

    discount_type = DiscountType.parse(data.get("discount_type") or DiscountType.PERCENT.value)
    if discount_type is None:
        raise BadRequestError("discount_type must be percent or fixed")
    discount_value = _parse_amount(data.get("discount_value"), "discount_value", required=True)
    if discount_value <= 0:
        raise BadRequestError("discount_value must be positive")
    if discount_type == DiscountType.PERCENT and discount_value > 100:
        raise BadRequestError("A percent discount cannot exceed 100")

    start_at = _parse_datetime(data.get("start_at"), "start_at")
    end_at = _parse_datetime(data.get("end_at"), "end_at")
    if start_at >= end_at:
        raise BadRequestError("start_at must be before end_at")

    requested = data.get("status")
    if requested is not None:
        status = PromotionStatus.parse(requested)
        if status not in SETTABLE_PROMOTION_STATUSES:
            raise BadRequestError("status must be one of active, draft, disabled")
    else:
        status = PromotionStatus.ACTIVE

    promotion = Promotion(
        shop_id=shop_id,
        code=code,
        title=title,
        description=(data.get("description") or "").strip() or None,
        discount_type=discount_type.value,
        discount_value=discount_value,
        max_discount_amount=_parse_amount(data.get("max_discount_amount"), "max_discount_amount"),
        min_order_amount=_parse_amount(data.get("min_order_amount"), "min_order_amount"),
        usage_limit=_parse_count(data.get("usage_limit"), "usage_limit"),
        usage_per_customer=_parse_count(data.get("usage_per_customer"), "usage_per_customer", default=1),
        start_at=start_at,
        end_at=end_at,
        status=status.value,
    )

    if Promotion.query.filter_by(shop_id=shop_id, code=code).first():
        raise ConflictError(f"Promotion code {code} already exists for this shop")

    try:
        with atomic("promotion_create"):
            db.session.add(promotion)
            db.session.flush()
            log_event("PROMOTION_CREATE", user_id=actor_user_id, entity="promotion",
                      entity_id=promotion.id, metadata={"shop_id": shop_id, "code": code})
    except IntegrityError:
        raise ConflictError(f"Promotion code {code} already exists for this shop")
    return promotion


def set_promotion_status(shop_id: int, promotion_id: int, status, actor_user_id=None) -> Promotion:
    target = PromotionStatus.parse(status)
    if target not in SETTABLE_PROMOTION_STATUSES:
        raise BadRequestError("status must be one of active, draft, disabled")

    with atomic("promotion_status"):
        p = _get_shop_promotion(shop_id, promotion_id, lock=True)
        now = datetime.utcnow()
        if target == PromotionStatus.ACTIVE:
            if now < p.start_at:
                raise BadRequestError("This promotion has not started yet")
            if now > p.end_at:
                raise BadRequestError("This promotion has expired")
        if target == PromotionStatus.DRAFT and current_status(p, now) != PromotionStatus.DRAFT:
            raise BadRequestError("A promotion that already ran cannot go back to draft")

        previous = p.status
        p.status = target.value
        log_event("PROMOTION_STATUS", user_id=actor_user_id, entity="promotion", entity_id=p.id,
                  metadata={"from": previous, "to": target.value})
    return p


def delete_promotion(shop_id: int, promotion_id: int, actor_user_id=None) -> Promotion:
    with atomic("promotion_delete"):
        p = _get_shop_promotion(shop_id, promotion_id, lock=True)
        now = datetime.utcnow()
        if now <= p.end_at:
            raise BadRequestError("Only expired promotions can be deleted")

        pending = (
            db.session.query(func.count(Booking.id))
            .filter(
                Booking.promotion_id == p.id,
                Booking.status == BookingStatus.PENDING.value,
                Booking.payment_status == BookingPaymentStatus.PENDING.value,
            )
            .scalar()
        ) or 0
        if pending:
            raise BadRequestError("Promotion is still used by unpaid bookings")

        p.is_deleted = True
        p.deleted_at = now
        log_event("PROMOTION_DELETE", user_id=actor_user_id, entity="promotion", entity_id=p.id)
    return p
