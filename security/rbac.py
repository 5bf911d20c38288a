from functools import wraps
from flask import g, jsonify

from models import db
from models.shop import Shop
from utils.errors import ForbiddenError, NotFoundError

def has_role(role_name: str) -> bool:
    user = getattr(g, "user", None)
    if not user:
        return False
    return any(r.name == role_name for r in user.roles)

def require_roles(*role_names: str):
    """
    Usage: @require_roles("SHOP_OWNER")

    ADMIN passes every role check.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required", code="UNAUTHORIZED"), 401

            user_roles = {r.name for r in user.roles}
            if "ADMIN" not in user_roles and not user_roles.intersection(set(role_names)):
                return jsonify(error="Forbidden", code="FORBIDDEN"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator

def ensure_shop_owner(user, shop):
    """Raise ForbiddenError unless user owns shop (admins always pass)."""
    if user is None:
        raise ForbiddenError("Forbidden")
    if user.has_role("ADMIN"):
        return
    if shop is None or shop.owner_user_id != user.id:
        raise ForbiddenError("You do not own this shop")

def get_owned_shop(shop_id: int):
    """Load a shop the current user may manage, or raise."""
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise NotFoundError("Shop not found")
    ensure_shop_owner(getattr(g, "user", None), shop)
    return shop
