"""
Matching SePay bank-transfer notifications to pending payments.

The caller always answers 200: a non-2xx makes the gateway retry the same
delivery. Every outcome (duplicate, no match, confirm error) is reported in
the body instead, and a matched delivery is recorded with its external id so
a retry is recognized as a duplicate.
"""
import logging
import re
from decimal import Decimal, InvalidOperation

from models import db
from models.booking import Booking
from models.payment import Payment
from models.enums import PaymentStatus
from services.payments import (
    confirm_payment,
    is_duplicate_delivery,
    latest_payment,
    record_delivery,
)
from services.pricing import round_money

logger = logging.getLogger(__name__)

WEBHOOK_ACTION = "sepay_webhook"
INCOMING_TYPES = {"in", "incoming", "credit"}
CANDIDATE_FIELDS = ("content", "code", "description", "des", "referenceCode")
MAX_CANDIDATES = 5

BOOKING_TOKEN_RE = re.compile(r"BK[-_]?(\d+)", re.IGNORECASE)
DIGITS_RE = re.compile(r"(\d{1,9})")


def is_incoming_transfer(value) -> bool:
    if not value:
        return False
    normalized = str(value).strip().lower()
    return normalized in INCOMING_TYPES or "transfer_in" in normalized or "nap" in normalized


def normalize_transfer_amount(amount):
    """Positive Decimal from a number or a formatted string, else None."""
    if amount is None or isinstance(amount, bool):
        return None
    if isinstance(amount, (int, float, Decimal)):
        value = Decimal(str(amount))
    else:
        cleaned = re.sub(r"[^\d.-]", "", str(amount))
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            return None
    if not value.is_finite() or value <= 0:
        return None
    return round_money(value)


def extract_booking_candidates(*texts) -> list:
    """
    Booking ids mentioned in free text, in field order, at most one per text.
    A BK<digits> token wins; the first run of 1-9 digits counts only when
    the text has no such token.
    """
    found = []
    for text in texts:
        if not text:
            continue
        text = str(text)
        m = BOOKING_TOKEN_RE.search(text) or DIGITS_RE.search(text)
        if not m:
            continue
        code = int(m.group(1))
        if code > 0 and code not in found:
            found.append(code)
        if len(found) >= MAX_CANDIDATES:
            break
    return found


def _match_by_booking(candidates):
    for code in candidates:
        if Booking.query.filter_by(id=code).first() is None:
            continue
        payment = latest_payment(code)
        if payment is not None:
            return payment
    return None


def _match_by_amount(amount):
    return (
        Payment.query
        .filter(Payment.status == PaymentStatus.PENDING.value, Payment.amount == amount)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .first()
    )


def handle_bank_webhook(payload) -> dict:
    payload = payload if isinstance(payload, dict) else {}
    external_id = str(payload.get("id") or "").strip() or None
    incoming = is_incoming_transfer(payload.get("transferType"))
    amount = normalize_transfer_amount(payload.get("transferAmount"))

    try:
        if is_duplicate_delivery(WEBHOOK_ACTION, external_id):
            logger.info("sepay webhook %s already processed", external_id)
            return {"success": True, "duplicate": True}

        candidates = extract_booking_candidates(*(payload.get(k) for k in CANDIDATE_FIELDS))
        payment = _match_by_booking(candidates)
        if payment is None and incoming and amount:
            payment = _match_by_amount(amount)

        if payment is None:
            logger.info("sepay webhook %s matched nothing (candidates=%s amount=%s)",
                        external_id, candidates, amount)
            return {"success": True, "matched": False}

        payment_id = payment.id
        already_paid = payment.status == PaymentStatus.PAID.value
        message = "OK"
        if incoming and amount is not None and amount < payment.amount:
            # a booking-code match still settles; leave a trail for manual follow-up
            message = f"UNDERPAID {amount} < {round_money(payment.amount)}"
            logger.warning("sepay webhook %s underpays payment %s: %s", external_id, payment_id, message)
        if not record_delivery(payment_id, WEBHOOK_ACTION, payload, external_id, message):
            return {"success": True, "duplicate": True}

        if not incoming or already_paid:
            return {"success": True, "matched": True}

        try:
            confirm_payment(payment_id, external_id=external_id, source="sepay_webhook")
        except Exception as exc:
            logger.warning("sepay webhook %s matched payment %s but confirm failed: %s",
                           external_id, payment_id, exc)
            return {"success": True, "matched": True, "error": str(getattr(exc, "message", exc))}
        return {"success": True, "matched": True}

    except Exception as exc:
        db.session.rollback()
        logger.exception("sepay webhook %s failed", external_id)
        return {"success": True, "error": str(exc)}
