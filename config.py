import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored beside the code as fieldrent.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "fieldrent.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tables are normally created by `flask db upgrade`
    CREATE_TABLES_ON_STARTUP = os.getenv("CREATE_TABLES_ON_STARTUP", "false").lower() == "true"

    # Opaque session token: "Authorization: Bearer <token>" or this cookie
    AUTH_COOKIE_NAME = "fieldrent_session"
    AUTH_HEADER_PREFIX = "Bearer"

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 30 minutes
    IDLE_TIMEOUT_SECONDS = 30 * 60

    # Reservation holds
    HOLD_MINUTES = int(os.getenv("HOLD_MINUTES", "15"))

    # Marketplace cut of every paid booking
    PLATFORM_FEE_PERCENT = int(os.getenv("PLATFORM_FEE_PERCENT", "5"))

    # Used when a field has no hourly price configured
    DEFAULT_PRICE_PER_SLOT = int(os.getenv("DEFAULT_PRICE_PER_SLOT", "100000"))

    # Cancellation policy for confirmed bookings
    CUSTOMER_CANCEL_CUTOFF_HOURS = 2

    # Bank-transfer QR (SePay)
    SEPAY_ACC = os.getenv("SEPAY_ACC", "96247THUERE")
    SEPAY_BANK = os.getenv("SEPAY_BANK", "BIDV")
    SEPAY_QR_BASE_URL = os.getenv("SEPAY_QR_BASE_URL", "https://qr.sepay.vn/img")

    # Who hears about new payout requests
    PAYOUT_OPERATOR_EMAIL = os.getenv("PAYOUT_OPERATOR_EMAIL")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # Basic app settings
    DEBUG = False
