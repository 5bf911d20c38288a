from .health import health_bp
from .auth import auth_bp
from .booking import booking_bp
from .payments import payments_bp
from .payment_webhook import webhook_bp
from .payouts import payouts_bp
from .promotions import promotions_bp
