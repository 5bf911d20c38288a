from datetime import date, timedelta
from decimal import Decimal

import pytest

from app import create_app
from config import Config
from models import db
from models.field import Field, FieldQuantity
from models.shop import Shop, ShopBankAccount
from models.user import Role, User
from security.password import hash_password
from security.session import create_session


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    CREATE_TABLES_ON_STARTUP = True
    HOLD_MINUTES = 15
    PLATFORM_FEE_PERCENT = 5
    DEFAULT_PRICE_PER_SLOT = 100000
    SMTP_HOST = None
    PAYOUT_OPERATOR_EMAIL = "ops@example.com"


PASSWORD = "correct-horse-battery"


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(email, *role_names, full_name=None):
    user = User(email=email, password_hash=hash_password(PASSWORD), full_name=full_name)
    for name in role_names:
        user.roles.append(Role.query.filter_by(name=name).one())
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def customer(app):
    return _make_user("player@example.com", "CUSTOMER", full_name="Minh Player")


@pytest.fixture
def other_customer(app):
    return _make_user("rival@example.com", "CUSTOMER", full_name="Lan Rival")


@pytest.fixture
def owner(app):
    return _make_user("owner@example.com", "SHOP_OWNER", full_name="Hoa Owner")


@pytest.fixture
def admin(app):
    return _make_user("admin@example.com", "ADMIN")


def auth_header(user):
    return {"Authorization": f"Bearer {create_session(user.id)}"}


@pytest.fixture
def shop(owner):
    shop = Shop(name="Sunrise Sports", owner_user_id=owner.id)
    db.session.add(shop)
    db.session.commit()
    return shop


@pytest.fixture
def bank_account(shop):
    account = ShopBankAccount(
        shop_id=shop.id,
        bank_name="BIDV",
        account_number="0123456789",
        account_holder="HOA OWNER",
        is_default=True,
    )
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture
def field(shop):
    field = Field(shop_id=shop.id, name="Pitch A", sport_type="football",
                  default_price_per_hour=Decimal("100000"))
    db.session.add(field)
    db.session.commit()
    return field


@pytest.fixture
def quantities(field):
    rows = [FieldQuantity(field_id=field.id, quantity_number=n) for n in (1, 2)]
    db.session.add_all(rows)
    db.session.commit()
    return rows


@pytest.fixture
def play_date():
    return date.today() + timedelta(days=3)


def window(play_date, start, end):
    return {"play_date": play_date.isoformat(), "start_time": start, "end_time": end}
