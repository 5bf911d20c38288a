from datetime import datetime, timedelta

from conftest import PASSWORD, auth_header, window
from models import db
from models.booking import Booking
from models.enums import BookingStatus


def _book(client, field, user, play_date, start="18:00", end="19:00"):
    return client.post(
        f"/fields/{field.id}/bookings",
        json={"slots": [window(play_date, start, end)]},
        headers=auth_header(user),
    )


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


# ---------- auth ----------
def test_register_login_me_logout(client):
    resp = client.post("/auth/register", json={"email": "New@Example.com", "password": PASSWORD})
    assert resp.status_code == 201

    resp = client.post("/auth/login", json={"email": "new@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.get_json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    me = client.get("/auth/me", headers=headers).get_json()
    assert me["email"] == "new@example.com"
    assert me["roles"] == ["CUSTOMER"]

    assert client.post("/auth/logout", headers=headers).status_code == 200
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_register_duplicate_and_bad_input(client, customer):
    resp = client.post("/auth/register", json={"email": customer.email, "password": PASSWORD})
    assert resp.status_code == 409
    assert client.post("/auth/register", json={"email": "x", "password": PASSWORD}).status_code == 400
    resp = client.post("/auth/register", json={"email": "a@b.c", "password": PASSWORD, "role": "ADMIN"})
    assert resp.status_code == 400


def test_login_wrong_password(client, customer):
    resp = client.post("/auth/login", json={"email": customer.email, "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "UNAUTHORIZED"


# ---------- reservations ----------
def test_reserve_requires_login(client, field, play_date):
    resp = client.post(f"/fields/{field.id}/bookings", json={"slots": [window(play_date, "18:00", "19:00")]})
    assert resp.status_code == 401


def test_reserve_and_conflict_body(client, field, customer, other_customer, play_date):
    first = _book(client, field, customer, play_date)
    assert first.status_code == 201
    body = first.get_json()
    assert body["amount"] == 100000
    assert body["reference"] == f"BK{body['booking_code']}"

    second = _book(client, field, other_customer, play_date)
    assert second.status_code == 409
    err = second.get_json()
    assert err["code"] == "CONFLICT"
    assert "18:00-19:00" in err["error"]
    assert err["details"]["start_time"] == "18:00"


def test_reserve_validation_error(client, field, customer):
    resp = client.post(f"/fields/{field.id}/bookings", json={"slots": []}, headers=auth_header(customer))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "BAD_REQUEST"


def test_availability_is_public(client, field, customer, play_date):
    _book(client, field, customer, play_date)
    resp = client.get(f"/fields/{field.id}/availability?date={play_date.isoformat()}")
    assert resp.status_code == 200
    assert resp.get_json()["slots"][0]["is_available"] is False


def test_booking_views_and_cancel(client, field, customer, other_customer, play_date):
    code = _book(client, field, customer, play_date).get_json()["booking_code"]

    mine = client.get("/bookings/me", headers=auth_header(customer)).get_json()
    assert [b["booking_code"] for b in mine["data"]] == [code]

    assert client.get(f"/bookings/{code}", headers=auth_header(other_customer)).status_code == 404
    assert client.get(f"/bookings/{code}", headers=auth_header(customer)).status_code == 200

    resp = client.post(f"/bookings/{code}/cancel", json={"reason": "rain"}, headers=auth_header(customer))
    assert resp.status_code == 200
    assert resp.get_json()["status"] == BookingStatus.CANCELLED.value


def test_status_endpoint_requires_status(client, field, customer, admin, play_date):
    code = _book(client, field, customer, play_date).get_json()["booking_code"]
    resp = client.post(f"/bookings/{code}/status", json={}, headers=auth_header(admin))
    assert resp.status_code == 400

    resp = client.post(f"/bookings/{code}/status", json={"status": "confirmed"}, headers=auth_header(admin))
    assert resp.status_code == 200
    assert resp.get_json()["status"] == BookingStatus.CONFIRMED.value


# ---------- payments + webhook ----------
def test_payment_status_and_admin_confirm(client, field, customer, admin, play_date):
    created = _book(client, field, customer, play_date).get_json()
    code, payment_id = created["booking_code"], created["payment_id"]

    resp = client.get(f"/payments/bookings/{code}", headers=auth_header(customer))
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "pending"

    assert client.post(f"/payments/{payment_id}/confirm", headers=auth_header(customer)).status_code == 403

    resp = client.post(f"/payments/{payment_id}/confirm", json={}, headers=auth_header(admin))
    assert resp.status_code == 200
    assert resp.get_json()["already_paid"] is False


def test_webhook_always_200(client, field, customer, play_date):
    created = _book(client, field, customer, play_date).get_json()

    resp = client.post("/webhooks/sepay", json={
        "id": 555,
        "transferType": "in",
        "content": f"payment {created['reference']}",
        "transferAmount": created["amount"],
    })
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "matched": True}
    assert db.session.get(Booking, created["booking_code"]).status == BookingStatus.CONFIRMED.value

    assert client.get("/webhooks/sepay").status_code == 200
    assert client.post("/webhooks/sepay", data="garbage", content_type="text/plain").status_code == 200
    resp = client.post("/webhooks/sepay", data={"id": "556", "transferType": "in", "content": "nothing"})
    assert resp.get_json() == {"success": True, "matched": False}


# ---------- shop owner surfaces ----------
def test_shop_routes_require_ownership(client, shop, customer, owner, admin, bank_account):
    assert client.get(f"/shops/{shop.id}/wallet", headers=auth_header(customer)).status_code == 403
    assert client.get(f"/shops/{shop.id}/wallet", headers=auth_header(owner)).status_code == 200
    assert client.get(f"/shops/{shop.id}/wallet", headers=auth_header(admin)).status_code == 200
    assert client.get("/shops/999/wallet", headers=auth_header(owner)).status_code == 404
    assert client.get(f"/shops/{shop.id}/bookings", headers=auth_header(customer)).status_code == 403


def test_payout_flow_over_http(client, field, shop, customer, owner, admin, bank_account, play_date):
    created = _book(client, field, customer, play_date).get_json()
    client.post(f"/payments/{created['payment_id']}/confirm", headers=auth_header(admin))

    wallet = client.get(f"/shops/{shop.id}/wallet", headers=auth_header(owner)).get_json()
    assert wallet["balance"] == 95000

    too_much = client.post(f"/shops/{shop.id}/payouts", json={"amount": 95001}, headers=auth_header(owner))
    assert too_much.status_code == 400
    assert too_much.get_json()["code"] == "INSUFFICIENT_BALANCE"

    resp = client.post(f"/shops/{shop.id}/payouts", json={"amount": 50000, "password": PASSWORD},
                       headers=auth_header(owner))
    assert resp.status_code == 201
    payout_id = resp.get_json()["id"]

    assert client.post(f"/admin/payouts/{payout_id}/reject", headers=auth_header(owner)).status_code == 403
    resp = client.post(f"/admin/payouts/{payout_id}/reject", json={"reason": "typo"}, headers=auth_header(admin))
    assert resp.get_json()["status"] == "rejected"

    txs = client.get(f"/shops/{shop.id}/wallet/transactions", headers=auth_header(owner)).get_json()["data"]
    assert [t["type"] for t in txs] == ["refund_payout", "debit_payout", "credit_settlement"]

    listed = client.get("/admin/payouts?status=rejected", headers=auth_header(admin)).get_json()
    assert listed["pagination"]["total"] == 1


def test_promotion_routes(client, shop, owner):
    now = datetime.utcnow()
    resp = client.post(f"/shops/{shop.id}/promotions", headers=auth_header(owner), json={
        "code": "early",
        "title": "Early bird",
        "discount_type": "percent",
        "discount_value": 10,
        "start_at": (now - timedelta(hours=1)).isoformat(),
        "end_at": (now + timedelta(days=1)).isoformat(),
    })
    assert resp.status_code == 201
    promo = resp.get_json()
    assert promo["code"] == "EARLY"
    assert promo["current_status"] == "active"

    resp = client.post(f"/shops/{shop.id}/promotions/{promo['id']}/status",
                       json={"status": "disabled"}, headers=auth_header(owner))
    assert resp.get_json()["current_status"] == "disabled"

    listed = client.get(f"/shops/{shop.id}/promotions", headers=auth_header(owner)).get_json()
    assert [p["code"] for p in listed["data"]] == ["EARLY"]

    resp = client.delete(f"/shops/{shop.id}/promotions/{promo['id']}", headers=auth_header(owner))
    assert resp.status_code == 400


def test_cart_route(client, field, customer, play_date):
    assert client.get("/cart").status_code == 401
    code = _book(client, field, customer, play_date).get_json()["booking_code"]

    cart = client.get("/cart", headers=auth_header(customer)).get_json()
    assert cart["total"] == 1
    assert cart["items"][0]["booking_code"] == code
