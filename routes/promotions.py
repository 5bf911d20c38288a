from flask import Blueprint, request, jsonify, g

from security.rbac import get_owned_shop
from services import promotions as promotion_service
from utils.auth_context import login_required

promotions_bp = Blueprint("promotions", __name__, url_prefix="/shops/<int:shop_id>/promotions")


@promotions_bp.get("")
@login_required
def list_promotions(shop_id):
    shop = get_owned_shop(shop_id)
    return jsonify(data=promotion_service.list_promotions(shop.id)), 200


@promotions_bp.post("")
@login_required
def create_promotion(shop_id):
    shop = get_owned_shop(shop_id)
    data = request.get_json(silent=True) or {}
    promotion = promotion_service.create_promotion(shop.id, data, actor_user_id=g.user.id)
    return jsonify(promotion_service.serialize_promotion(promotion)), 201


@promotions_bp.post("/<int:promotion_id>/status")
@login_required
def set_promotion_status(shop_id, promotion_id):
    shop = get_owned_shop(shop_id)
    data = request.get_json(silent=True) or {}
    promotion = promotion_service.set_promotion_status(
        shop.id, promotion_id, data.get("status"), actor_user_id=g.user.id
    )
    return jsonify(promotion_service.serialize_promotion(promotion)), 200


@promotions_bp.delete("/<int:promotion_id>")
@login_required
def delete_promotion(shop_id, promotion_id):
    shop = get_owned_shop(shop_id)
    promotion_service.delete_promotion(shop.id, promotion_id, actor_user_id=g.user.id)
    return jsonify(message="Promotion deleted", id=promotion_id), 200
