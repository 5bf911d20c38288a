from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User, Role
from security.password import hash_password, verify_password
from security.session import create_session, revoke_session, token_from_request
from utils.audit import log_event
from utils.auth_context import login_required


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

SELF_SERVICE_ROLES = {"CUSTOMER", "SHOP_OWNER"}


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    role_name = (data.get("role") or "CUSTOMER").strip().upper()

    if not _is_valid_email(email):
        return jsonify(error="Invalid email", code="BAD_REQUEST"), 400
    if len(password) < 8:
        return jsonify(error="Password must be at least 8 characters", code="BAD_REQUEST"), 400
    if role_name not in SELF_SERVICE_ROLES:
        return jsonify(error="role must be CUSTOMER or SHOP_OWNER", code="BAD_REQUEST"), 400

    if User.query.filter_by(email=email).first():
        return jsonify(error="Email already registered", code="CONFLICT"), 409

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=(data.get("full_name") or "").strip() or None,
        phone_number=(data.get("phone_number") or "").strip() or None,
    )
    db.session.add(user)
    db.session.flush()

    role = Role.query.filter_by(name=role_name).first()
    if role:
        user.roles.append(role)

    log_event("REGISTER_SUCCESS", user_id=user.id, metadata={"role": role_name})
    db.session.commit()

    return jsonify(message="Registered successfully", id=user.id), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        db.session.commit()
        return jsonify(error="Invalid credentials", code="UNAUTHORIZED"), 401

    raw_token = create_session(user.id)
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "fieldrent_session")
    max_age = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    resp = jsonify(message="Login OK", token=raw_token, expires_in=max_age)
    resp.set_cookie(
        cookie_name,
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=max_age,
        path="/",
    )

    log_event("LOGIN_SUCCESS", user_id=user.id)
    db.session.commit()
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        roles=[r.name for r in g.user.roles],
        full_name=g.user.full_name,
        phone_number=g.user.phone_number,
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "fieldrent_session")

    revoke_session(token_from_request())
    log_event("LOGOUT", user_id=g.user.id)
    db.session.commit()

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    return resp, 200
