import threading
import time

import pytest

from app import create_app
from conftest import TestingConfig, window
from models import db
from models.slot import FieldSlot
from models.enums import SlotStatus
from services import slot_ledger
from services.reservations import reserve_slots
from utils.errors import ConflictError


@pytest.fixture
def app(tmp_path):
    # threads need their own connections, which an in-memory database cannot give them
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "race.db")

    app = create_app(FileConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


def _race(app, monkeypatch, field_id, play_date, contenders):
    """
    Run one reservation per (user_id, quantity_id) contender at the same time.
    Both threads pass a barrier right before the field lock, and whoever reads
    the window first lingers before claiming it.
    """
    barrier = threading.Barrier(len(contenders), timeout=10)
    real_lock_field = slot_ledger.lock_field
    real_lock_window = slot_ledger.lock_window

    def lock_field(fid):
        barrier.wait()
        real_lock_field(fid)

    def slow_lock_window(*args, **kwargs):
        rows = real_lock_window(*args, **kwargs)
        time.sleep(0.3)
        return rows

    monkeypatch.setattr(slot_ledger, "lock_field", lock_field)
    monkeypatch.setattr(slot_ledger, "lock_window", slow_lock_window)

    results = []

    def worker(user_id, quantity_id):
        with app.app_context():
            try:
                out = reserve_slots(field_id, [window(play_date, "18:00", "19:00")],
                                    created_by=user_id, quantity_id=quantity_id)
                results.append(("ok", out["booking_code"]))
            except ConflictError:
                results.append(("conflict", None))
            except Exception as exc:
                results.append(("error", repr(exc)))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=c) for c in contenders]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return sorted(r[0] for r in results)


def _held_rows(field_id):
    return FieldSlot.query.filter_by(field_id=field_id, status=SlotStatus.HELD.value).all()


def test_two_whole_field_claims_on_a_fresh_window(app, monkeypatch, field, customer, other_customer, play_date):
    outcome = _race(app, monkeypatch, field.id, play_date, [(customer.id, None), (other_customer.id, None)])

    assert outcome == ["conflict", "ok"]
    assert len(_held_rows(field.id)) == 1


def test_whole_field_against_court_claim(app, monkeypatch, field, quantities, customer, other_customer,
                                         play_date):
    court = quantities[0].id
    outcome = _race(app, monkeypatch, field.id, play_date, [(customer.id, None), (other_customer.id, court)])

    assert outcome == ["conflict", "ok"]
    assert len(_held_rows(field.id)) == 1


def test_different_courts_both_succeed(app, monkeypatch, field, quantities, customer, other_customer, play_date):
    first, second = (q.id for q in quantities)
    outcome = _race(app, monkeypatch, field.id, play_date, [(customer.id, first), (other_customer.id, second)])

    assert outcome == ["ok", "ok"]
    assert sorted(r.quantity_id for r in _held_rows(field.id)) == [first, second]
