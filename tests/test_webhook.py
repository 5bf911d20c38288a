from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from conftest import window
from models import db
from models.booking import Booking
from models.field import Field
from models.payment import Payment, PaymentLog
from models.promotion import Promotion
from models.wallet import WalletTransaction
from models.enums import BookingStatus, PaymentStatus
from services import wallet
from services.reservations import reserve_slots
from services.webhook import (
    extract_booking_candidates,
    handle_bank_webhook,
    is_incoming_transfer,
    normalize_transfer_amount,
)


@pytest.fixture
def discounted_booking(field, shop, customer, play_date):
    """A two-slot booking 1042 discounted to 185000."""
    now = datetime.utcnow()
    db.session.add(Promotion(
        shop_id=shop.id, code="CAP15", title="Capped", discount_type="percent",
        discount_value=Decimal("10"), max_discount_amount=Decimal("15000"),
        start_at=now - timedelta(days=1), end_at=now + timedelta(days=1),
        status="active", usage_per_customer=1,
    ))
    # push the id sequence so the next booking is 1042
    db.session.add(Booking(
        id=1041, field_id=field.id, total_price=Decimal("0"), checkin_code="SEED0001",
        status=BookingStatus.CANCELLED.value, payment_status="failed",
    ))
    db.session.commit()

    result = reserve_slots(
        field.id,
        [window(play_date, "18:00", "19:00"), window(play_date, "19:00", "20:00")],
        promotion_code="CAP15",
        created_by=customer.id,
        is_customer=True,
    )
    assert result["booking_code"] == 1042
    return result


def _payload(**overrides):
    data = {
        "id": 90001,
        "transferType": "in",
        "content": "thanh toan BK1042",
        "transferAmount": 185000,
    }
    data.update(overrides)
    return data


# ---------- parsing ----------
@pytest.mark.parametrize("value, expected", [
    ("in", True), ("IN", True), ("credit", True), ("transfer_in", True),
    ("out", False), (None, False), ("", False),
])
def test_is_incoming_transfer(value, expected):
    assert is_incoming_transfer(value) is expected


def test_normalize_transfer_amount():
    assert normalize_transfer_amount(185000) == Decimal("185000.00")
    assert normalize_transfer_amount("185,000") == Decimal("185000.00")
    assert normalize_transfer_amount("abc") is None
    assert normalize_transfer_amount(-5) is None
    assert normalize_transfer_amount(True) is None


def test_extract_booking_candidates():
    assert extract_booking_candidates("thanh toan BK1042") == [1042]
    assert extract_booking_candidates("bk_77 ref 12", "code 5") == [77, 5]
    assert extract_booking_candidates("ref 12 then BK34") == [34]
    assert extract_booking_candidates("ref 12 then 34") == [12]
    assert extract_booking_candidates(None, "") == []
    assert len(extract_booking_candidates(*[f"BK{i}" for i in range(1, 10)])) == 5


# ---------- matching ----------
def test_transfer_confirms_matching_booking(discounted_booking, field, shop):
    result = handle_bank_webhook(_payload())
    assert result == {"success": True, "matched": True}

    payment = db.session.get(Payment, discounted_booking["payment_id"])
    assert payment.status == PaymentStatus.PAID.value
    assert payment.external_transaction_id == "90001"

    booking = db.session.get(Booking, 1042)
    assert booking.status == BookingStatus.CONFIRMED.value

    # 185000 - round(5% of 185000) = 185000 - 9250
    assert wallet.get_balance(shop.id) == Decimal("175750.00")
    assert db.session.get(Field, field.id).rent_count == 1


def test_duplicate_delivery_is_ignored(discounted_booking, shop):
    handle_bank_webhook(_payload())
    again = handle_bank_webhook(_payload())

    assert again == {"success": True, "duplicate": True}
    assert PaymentLog.query.filter_by(action="sepay_webhook", external_id="90001").count() == 1
    assert WalletTransaction.query.filter_by(shop_id=shop.id).count() == 1


def test_second_transfer_for_paid_booking_does_not_recredit(discounted_booking, shop):
    handle_bank_webhook(_payload())
    result = handle_bank_webhook(_payload(id=90002))

    assert result == {"success": True, "matched": True}
    assert wallet.get_balance(shop.id) == Decimal("175750.00")


def test_amount_fallback_matches_pending_payment(discounted_booking):
    result = handle_bank_webhook(_payload(content="chuyen khoan", code=None))
    assert result["matched"] is True
    assert db.session.get(Payment, discounted_booking["payment_id"]).status == PaymentStatus.PAID.value


def test_outgoing_transfer_records_but_does_not_confirm(discounted_booking):
    result = handle_bank_webhook(_payload(transferType="out"))
    assert result == {"success": True, "matched": True}
    assert db.session.get(Payment, discounted_booking["payment_id"]).status == PaymentStatus.PENDING.value


def test_no_match(app):
    result = handle_bank_webhook(_payload(content="hello", transferAmount=1))
    assert result == {"success": True, "matched": False}


def test_garbage_payload(app):
    assert handle_bank_webhook(None)["success"] is True
    assert handle_bank_webhook("not a dict")["success"] is True


def test_confirm_failure_is_reported_not_raised(discounted_booking):
    booking = db.session.get(Booking, 1042)
    booking.status = BookingStatus.CANCELLED.value
    db.session.commit()

    result = handle_bank_webhook(_payload())
    assert result["success"] is True
    assert result["matched"] is True
    assert "cancelled" in result["error"]


def test_booking_token_shadows_other_digits(discounted_booking):
    # the text names BK999; the 1042 in front of it is not a booking reference
    result = handle_bank_webhook(_payload(content="ref 1042 BK999", transferAmount=5000))

    assert result == {"success": True, "matched": False}
    assert db.session.get(Payment, discounted_booking["payment_id"]).status == PaymentStatus.PENDING.value
    assert PaymentLog.query.filter_by(action="sepay_webhook").count() == 0


def test_underpayment_is_noted_on_the_delivery(discounted_booking):
    result = handle_bank_webhook(_payload(transferAmount=100000))
    assert result == {"success": True, "matched": True}

    log = PaymentLog.query.filter_by(action="sepay_webhook", external_id="90001").one()
    assert log.result_message == "UNDERPAID 100000.00 < 185000.00"
    assert db.session.get(Payment, discounted_booking["payment_id"]).status == PaymentStatus.PAID.value


def test_full_payment_delivery_is_ok(discounted_booking):
    handle_bank_webhook(_payload())
    log = PaymentLog.query.filter_by(action="sepay_webhook", external_id="90001").one()
    assert log.result_message == "OK"
