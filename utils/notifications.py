"""
Fire-and-forget mail for booking and payout events.

Every helper returns (ok, error) and logs instead of raising; a mail outage
must never undo a confirmed payment or a processed payout.
"""
import logging

from flask import current_app

from utils.emailer import send_email

logger = logging.getLogger(__name__)


def _format_vnd(amount) -> str:
    return f"{int(round(float(amount or 0))):,}".replace(",", ".") + "đ"


def _deliver(kind: str, to_email: str, subject: str, body: str):
    try:
        ok, err = send_email(to_email, subject, body)
    except Exception as exc:
        logger.exception("%s mail crashed", kind)
        return False, str(exc)
    if not ok:
        logger.warning("%s mail not sent to %s: %s", kind, to_email, err)
    return ok, err


def send_booking_confirmation(booking, field_name: str):
    slots = booking.slots or []
    lines = [
        f"{s.play_date.isoformat()} {s.start_time.strftime('%H:%M')} - {s.end_time.strftime('%H:%M')}"
        for s in slots
    ]
    body = "\n".join([
        f"Hello {booking.customer_name or ''}".rstrip(),
        "",
        f"Your booking {booking.reference} at {field_name} is confirmed.",
        f"Check-in code: {booking.checkin_code}",
        "",
        "Time slots:",
        *lines,
        "",
        f"Total paid: {_format_vnd(booking.total_price)}",
    ])
    return _deliver(
        "booking_confirmation",
        booking.customer_email,
        f"[Booking confirmed] {booking.reference} - {field_name}",
        body,
    )


def send_payout_request_alert(payout, shop, bank_account):
    operator = current_app.config.get("PAYOUT_OPERATOR_EMAIL")
    body = "\n".join([
        "New payout request",
        f"Shop: {shop.name}",
        f"Request: PAYOUT-{payout.id}",
        f"Amount: {_format_vnd(payout.amount)}",
        f"Bank: {bank_account.bank_name}",
        f"Account number: {bank_account.account_number}",
        f"Account holder: {bank_account.account_holder}",
        f"Note: {payout.note or 'N/A'}",
    ])
    return _deliver(
        "payout_request",
        operator,
        f"[Payout request] {shop.name} - {_format_vnd(payout.amount)}",
        body,
    )


def send_payout_decision(payout, shop, status: str, note: str = None, reason: str = None):
    owner = shop.owner
    lines = [
        f"Hello {getattr(owner, 'full_name', None) or shop.name}",
        "",
        f"Your payout request PAYOUT-{payout.id} of {_format_vnd(payout.amount)} was {status}.",
    ]
    if reason:
        lines.append(f"Reason: {reason}")
    if note:
        lines.append(f"Note: {note}")
    if status == "rejected":
        lines.append("The amount has been returned to your wallet.")
    return _deliver(
        "payout_decision",
        getattr(owner, "email", None),
        f"[Payout {status}] PAYOUT-{payout.id}",
        "\n".join(lines),
    )
