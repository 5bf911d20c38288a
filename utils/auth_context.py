from functools import wraps
from flask import g, jsonify
from models import db
from security.session import get_session_from_request
from models.user import User

def load_current_user():
    sess = get_session_from_request()
    if not sess:
        g.user = None
        g.session = None
        return
    user = db.session.get(User, sess.user_id)
    g.session = sess
    g.user = user if user is not None and user.is_active else None

def current_user():
    return getattr(g, "user", None)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required", code="UNAUTHORIZED"), 401
        return fn(*args, **kwargs)
    return wrapper
