from flask import Blueprint, request, jsonify, g

from security.rbac import get_owned_shop, require_roles
from services import wallet
from services.payouts import approve_payout, list_payouts, reject_payout, request_payout
from utils.auth_context import login_required

payouts_bp = Blueprint("payouts", __name__)


# ---------- SHOP OWNERS: wallet ----------
@payouts_bp.get("/shops/<int:shop_id>/wallet")
@login_required
def shop_wallet(shop_id):
    shop = get_owned_shop(shop_id)
    return jsonify(wallet.wallet_stats(shop.id)), 200


@payouts_bp.get("/shops/<int:shop_id>/wallet/transactions")
@login_required
def shop_wallet_transactions(shop_id):
    shop = get_owned_shop(shop_id)
    rows = wallet.list_transactions(
        shop.id,
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify(data=rows), 200


# ---------- SHOP OWNERS: payouts ----------
@payouts_bp.get("/shops/<int:shop_id>/payouts")
@login_required
def shop_payouts(shop_id):
    shop = get_owned_shop(shop_id)
    result = list_payouts(
        shop_id=shop.id,
        status=request.args.get("status"),
        limit=request.args.get("limit", 20, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify(result), 200


@payouts_bp.post("/shops/<int:shop_id>/payouts")
@login_required
def create_payout(shop_id):
    shop = get_owned_shop(shop_id)
    data = request.get_json(silent=True) or {}
    if data.get("amount") in (None, ""):
        return jsonify(error="amount is required", code="BAD_REQUEST"), 400

    payout = request_payout(
        shop.id,
        data.get("amount"),
        bank_account_id=data.get("bank_account_id"),
        note=data.get("note"),
        actor_user_id=g.user.id,
        actor_password=data.get("password"),
    )
    return jsonify(payout), 201


# ---------- ADMIN: payout review ----------
@payouts_bp.get("/admin/payouts")
@require_roles("ADMIN")
def admin_payouts():
    result = list_payouts(
        shop_id=request.args.get("shop_id", type=int),
        status=request.args.get("status"),
        limit=request.args.get("limit", 20, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify(result), 200


@payouts_bp.post("/admin/payouts/<int:payout_id>/approve")
@require_roles("ADMIN")
def admin_approve_payout(payout_id):
    data = request.get_json(silent=True) or {}
    return jsonify(approve_payout(payout_id, note=data.get("note"), actor_user_id=g.user.id)), 200


@payouts_bp.post("/admin/payouts/<int:payout_id>/reject")
@require_roles("ADMIN")
def admin_reject_payout(payout_id):
    data = request.get_json(silent=True) or {}
    return jsonify(reject_payout(payout_id, reason=data.get("reason"), actor_user_id=g.user.id)), 200
