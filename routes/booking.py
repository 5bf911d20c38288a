from flask import Blueprint, request, jsonify, g

from security.rbac import get_owned_shop, has_role
from services import bookings as booking_service
from services.reservations import reserve_slots
from utils.auth_context import login_required

booking_bp = Blueprint("booking", __name__)


def _page_args(default_limit=10):
    return {
        "status": request.args.get("status"),
        "limit": request.args.get("limit", default_limit, type=int),
        "offset": request.args.get("offset", 0, type=int),
    }


# ---------- PUBLIC: availability ----------
@booking_bp.get("/fields/<int:field_id>/availability")
def field_availability(field_id):
    result = booking_service.get_availability(
        field_id,
        request.args.get("date"),
        quantity_id=request.args.get("quantity_id", type=int),
    )
    return jsonify(result), 200


# ---------- CUSTOMERS: reserve (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/fields/<int:field_id>/bookings")
@login_required
def create_booking(field_id):
    data = request.get_json(silent=True) or {}
    customer = data.get("customer") or {}
    customer = {
        "name": customer.get("name") or g.user.full_name,
        "email": customer.get("email") or g.user.email,
        "phone": customer.get("phone") or g.user.phone_number,
    }

    result = reserve_slots(
        field_id,
        data.get("slots"),
        customer=customer,
        promotion_code=data.get("promotion_code"),
        quantity_id=data.get("quantity_id"),
        created_by=g.user.id,
        is_customer=has_role("CUSTOMER"),
        payment_method=data.get("payment_method") or "bank_transfer",
    )
    return jsonify(result), 201


@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    return jsonify(booking_service.list_customer_bookings(g.user.id, **_page_args())), 200


@booking_bp.get("/cart")
@login_required
def my_cart():
    return jsonify(booking_service.list_cart(g.user.id)), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def booking_detail(booking_id):
    return jsonify(booking_service.get_booking(booking_id, g.user)), 200


# ---------- LIFECYCLE ----------
@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id):
    data = request.get_json(silent=True) or {}
    result = booking_service.cancel_booking(booking_id, g.user, reason=data.get("reason"))
    return jsonify(result), 200


@booking_bp.post("/bookings/<int:booking_id>/status")
@login_required
def update_booking_status(booking_id):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return jsonify(error="status is required", code="BAD_REQUEST"), 400
    result = booking_service.transition_booking(
        booking_id, data.get("status"), g.user, reason=data.get("reason")
    )
    return jsonify(result), 200


# ---------- CHECK-IN ----------
@booking_bp.get("/bookings/<int:booking_id>/checkin-code")
@login_required
def booking_checkin_code(booking_id):
    return jsonify(booking_service.get_checkin_code(booking_id, g.user)), 200


@booking_bp.post("/bookings/<int:booking_id>/checkin")
@login_required
def booking_checkin(booking_id):
    data = request.get_json(silent=True) or {}
    result = booking_service.verify_checkin(booking_id, data.get("checkin_code"), g.user)
    return jsonify(result), 200


# ---------- SHOP OWNERS: bookings of their fields ----------
@booking_bp.get("/shops/<int:shop_id>/bookings")
@login_required
def shop_bookings(shop_id):
    shop = get_owned_shop(shop_id)
    return jsonify(booking_service.list_shop_bookings(shop.id, **_page_args())), 200
