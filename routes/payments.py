from flask import Blueprint, request, jsonify, g

from security.rbac import require_roles
from services.bookings import get_booking
from services.payments import confirm_payment, get_payment_status
from utils.auth_context import login_required

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.get("/bookings/<int:booking_id>")
@login_required
def booking_payment_status(booking_id):
    # raises NotFound unless the caller may see the booking
    get_booking(booking_id, g.user)
    return jsonify(get_payment_status(booking_id)), 200


@payments_bp.post("/<int:payment_id>/confirm")
@require_roles("ADMIN")
def confirm(payment_id):
    data = request.get_json(silent=True) or {}
    result = confirm_payment(
        payment_id,
        external_id=data.get("external_id"),
        source="manual",
        actor_user_id=g.user.id,
    )
    return jsonify(result), 200
