from datetime import datetime, time, timedelta

import pytest

from models import db
from models.slot import FieldSlot
from models.enums import SlotStatus
from services import slot_ledger
from services.slot_ledger import SlotWindow
from utils.errors import ConflictError


def _window(play_date, start=18, end=19):
    return SlotWindow(play_date, time(start, 0), time(end, 0))


def _claim(field, w, quantity_id=None, minutes=15, now=None):
    now = now or datetime.utcnow()
    row = slot_ledger.claim_slot(field.id, w, now + timedelta(minutes=minutes),
                                 quantity_id=quantity_id, now=now)
    db.session.commit()
    return row


def test_claim_inserts_held_row(field, play_date):
    row = _claim(field, _window(play_date))
    assert row.status == SlotStatus.HELD.value
    assert row.hold_expires_at is not None
    assert FieldSlot.query.count() == 1


def test_second_claim_of_held_window_conflicts(field, play_date):
    w = _window(play_date)
    _claim(field, w)
    with pytest.raises(ConflictError) as exc:
        _claim(field, w)
    assert w.label() in exc.value.message
    assert exc.value.details["start_time"] == "18:00"


def test_lapsed_hold_is_reused(field, play_date):
    w = _window(play_date)
    first = _claim(field, w, minutes=-1)
    second = _claim(field, w)
    assert second.id == first.id
    assert second.hold_expires_at > datetime.utcnow()
    assert FieldSlot.query.count() == 1


def test_booked_window_conflicts_even_without_deadline(field, play_date):
    w = _window(play_date)
    row = _claim(field, w)
    row.status = SlotStatus.BOOKED.value
    row.hold_expires_at = None
    db.session.commit()
    with pytest.raises(ConflictError):
        _claim(field, w)


def test_courts_are_independent(field, quantities, play_date):
    w = _window(play_date)
    a = _claim(field, w, quantity_id=quantities[0].id)
    b = _claim(field, w, quantity_id=quantities[1].id)
    assert a.id != b.id


def test_whole_field_claim_conflicts_with_any_court(field, quantities, play_date):
    w = _window(play_date)
    _claim(field, w, quantity_id=quantities[0].id)
    with pytest.raises(ConflictError):
        _claim(field, w)


def test_court_claim_conflicts_with_whole_field_hold(field, quantities, play_date):
    w = _window(play_date)
    _claim(field, w)
    with pytest.raises(ConflictError):
        _claim(field, w, quantity_id=quantities[1].id)


def test_free_whole_field_row_is_assigned_the_court(field, quantities, play_date):
    w = _window(play_date)
    row = _claim(field, w)
    slot_ledger.release_slots([row.id])
    db.session.commit()

    reused = _claim(field, w, quantity_id=quantities[0].id)
    assert reused.id == row.id
    assert reused.quantity_id == quantities[0].id


def test_release_resets_row(field, quantities, play_date):
    row = _claim(field, _window(play_date), quantity_id=quantities[0].id)
    released = slot_ledger.release_slots([row.id])
    db.session.commit()

    assert released == 1
    db.session.refresh(row)
    assert row.status == SlotStatus.AVAILABLE.value
    assert row.quantity_id is None
    assert row.booking_id is None
    assert row.hold_expires_at is None


def test_release_with_cutoff_skips_live_holds(field, play_date):
    live = _claim(field, _window(play_date, 8, 9))
    lapsed = _claim(field, _window(play_date, 9, 10), minutes=-5)

    released = slot_ledger.release_slots([live.id, lapsed.id], expired_before=datetime.utcnow())
    db.session.commit()

    assert released == 1
    assert db.session.get(FieldSlot, live.id).status == SlotStatus.HELD.value
    assert db.session.get(FieldSlot, lapsed.id).status == SlotStatus.AVAILABLE.value
