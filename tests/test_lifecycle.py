"""
Tests for the trip request lifecycle, the store and the notification feed.
Covers:
- create / accept / reject / cancel transitions and their notifications
- StateConflict on illegal and racing transitions
- Duplicate pending requests
- Partial side-effect failures and StoreUnavailable propagation
- Soft delete / replace of schedules
- Insert subscriptions and inbox de-duplication
"""
import asyncio
from datetime import timedelta

import pytest

from conftest import make_user, driver_fields, passenger_fields
from errors import (
    ValidationError,
    StateConflict,
    PermissionDenied,
    NotFound,
    StoreUnavailable,
    PartialSideEffectFailure,
)
from lifecycle import (
    SessionContext,
    create_request,
    accept_request,
    reject_request,
    cancel_request,
    pending_for_driver,
    active_for_passenger,
    matches_for,
)
from models import Role, RequestState, NotificationType, TripRequest, Notification
from notifications import NotificationInbox


@pytest.fixture
def pair(store):
    d = make_user("Carlos", Role.driver)
    p = make_user("Paula", Role.passenger)
    sched = store.create_schedule(Role.driver, driver_fields(d.id))
    return (
        SessionContext(d.id, Role.driver, d.full_name),
        SessionContext(p.id, Role.passenger, p.full_name),
        sched,
    )


# ────────────────────────── store ───────────────────────────────────────────

def test_create_schedule_validates(store):
    with pytest.raises(ValidationError):
        store.create_schedule(Role.driver, driver_fields(1, time="25:99"))
    with pytest.raises(ValidationError):
        store.create_schedule(Role.driver, driver_fields(1, day="funday"))
    with pytest.raises(ValidationError):
        store.create_schedule(Role.passenger, passenger_fields(1, origin="playa"))
    with pytest.raises(ValidationError):
        store.create_schedule(Role.driver, driver_fields(1, seats=0))
    with pytest.raises(ValidationError):
        store.create_schedule("pilot", driver_fields(1))


def test_create_schedule_normalises(store):
    s = store.create_schedule("conductor", driver_fields(1, day="Lunes", origin="Residencia", zone="  "))
    assert s.day == "lunes"
    assert s.origin == "residencia"
    assert s.zone is None
    p = store.create_schedule(Role.passenger, {k: v for k, v in passenger_fields(2).items() if k != "flexibility_minutes"})
    assert p.flexibility_minutes == 30


def test_zero_flexibility_schedule_matches_exact_time(store):
    p = make_user("Exacta", Role.passenger)
    on_time = make_user("Puntual", Role.driver)
    late = make_user("Tardio", Role.driver)
    own = store.create_schedule(Role.passenger, passenger_fields(p.id, time="08:00", flex=0))
    assert own.flexibility_minutes == 0
    hit = store.create_schedule(Role.driver, driver_fields(on_time.id, time="08:00"))
    store.create_schedule(Role.driver, driver_fields(late.id, time="08:01"))
    found = matches_for(store, SessionContext(p.id, Role.passenger))
    assert [m.candidate.id for m in found] == [hit.id]
    with pytest.raises(ValidationError):
        store.create_schedule(Role.passenger, passenger_fields(p.id, flex=-1))


def test_new_rows_get_timezone_aware_timestamps():
    r = TripRequest(passenger_id=1, driver_id=2, driver_schedule_id=3)
    assert r.created_at.tzinfo is not None
    assert r.updated_at.tzinfo is not None
    n = Notification(user_id=1, type="trip_accepted", title="t", body="b")
    assert n.created_at.utcoffset() == timedelta(0)


def test_soft_delete_hides_schedule(store):
    s = store.create_schedule(Role.driver, driver_fields(1))
    store.soft_delete_schedule(Role.driver, s.id)
    assert store.list_active_schedules(Role.driver) == []
    assert store.get_schedule(Role.driver, s.id).active is False


def test_replace_schedule_keeps_old_row(store):
    s = store.create_schedule(Role.passenger, passenger_fields(2, time="07:00"))
    new = store.replace_schedule(Role.passenger, s.id, passenger_fields(2, time="07:30"))
    assert new.id != s.id
    active = store.list_active_schedules(Role.passenger, owner_id=2)
    assert [x.approx_time for x in active] == ["07:30"]
    assert store.get_schedule(Role.passenger, s.id).active is False


def test_replace_schedule_of_other_owner(store):
    s = store.create_schedule(Role.passenger, passenger_fields(2))
    with pytest.raises(NotFound):
        store.replace_schedule(Role.passenger, s.id, passenger_fields(3))


def test_store_failure_is_store_unavailable(store, monkeypatch, tmp_path):
    import db as db_mod
    broken = db_mod.make_engine(f"sqlite:///{tmp_path}/missing/dir/x.db")
    monkeypatch.setattr(db_mod, "engine", broken)
    with pytest.raises(StoreUnavailable):
        store.list_active_schedules(Role.driver)


# ────────────────────────── transitions ─────────────────────────────────────

def test_create_request_pending_and_notifies_driver(store, pair):
    drv, pas, sched = pair
    res = create_request(store, pas, sched.id)
    assert res.state == RequestState.pending.value
    assert res.warnings == []
    assert res.request.driver_id == drv.user_id
    assert res.request.message == "Solicitud de viaje de Paula"
    notes = store.list_notifications(drv.user_id)
    assert len(notes) == 1
    assert notes[0].type == NotificationType.trip_requested.value
    assert notes[0].payload == {"request_id": res.request.id}
    assert "Paula" in notes[0].body


def test_duplicate_pending_request_rejected(store, pair):
    _, pas, sched = pair
    create_request(store, pas, sched.id)
    with pytest.raises(StateConflict):
        create_request(store, pas, sched.id)
    assert len(active_for_passenger(store, pas.user_id)) == 1


def test_new_request_allowed_after_cancel(store, pair):
    _, pas, sched = pair
    first = create_request(store, pas, sched.id)
    cancel_request(store, pas, first.request.id)
    second = create_request(store, pas, sched.id)
    assert second.state == "pending"


def test_create_request_requires_passenger(store, pair):
    drv, _, sched = pair
    with pytest.raises(PermissionDenied):
        create_request(store, drv, sched.id)


def test_create_request_on_inactive_schedule(store, pair):
    _, pas, sched = pair
    store.soft_delete_schedule(Role.driver, sched.id)
    with pytest.raises(ValidationError):
        create_request(store, pas, sched.id)


def test_create_request_unknown_schedule(store, pair):
    _, pas, _ = pair
    with pytest.raises(NotFound):
        create_request(store, pas, 9999)


def test_accept_then_terminal(store, pair):
    drv, pas, sched = pair
    req = create_request(store, pas, sched.id).request
    res = accept_request(store, drv, req.id)
    assert res.state == "accepted"
    with pytest.raises(StateConflict):
        accept_request(store, drv, req.id)
    with pytest.raises(StateConflict):
        reject_request(store, drv, req.id)
    notes = store.list_notifications(pas.user_id)
    assert [n.type for n in notes] == ["trip_accepted"]


def test_reject_sends_no_notification(store, pair):
    drv, pas, sched = pair
    req = create_request(store, pas, sched.id).request
    assert reject_request(store, drv, req.id).state == "rejected"
    assert store.list_notifications(pas.user_id) == []
    with pytest.raises(StateConflict):
        cancel_request(store, pas, req.id)


def test_cancel_from_pending_and_accepted(store, pair):
    drv, pas, sched = pair
    r1 = create_request(store, pas, sched.id).request
    assert cancel_request(store, pas, r1.id).state == "cancelled"
    with pytest.raises(StateConflict):
        cancel_request(store, pas, r1.id)
    with pytest.raises(StateConflict):
        accept_request(store, drv, r1.id)

    r2 = create_request(store, pas, sched.id).request
    accept_request(store, drv, r2.id)
    assert cancel_request(store, pas, r2.id).state == "cancelled"


def test_only_owner_driver_can_accept(store, pair):
    _, pas, sched = pair
    other = make_user("Otro", Role.driver)
    req = create_request(store, pas, sched.id).request
    with pytest.raises(PermissionDenied):
        accept_request(store, SessionContext(other.id, Role.driver), req.id)
    with pytest.raises(PermissionDenied):
        accept_request(store, pas, req.id)


def test_compare_and_swap_loses_race(store, pair):
    drv, pas, sched = pair
    req = create_request(store, pas, sched.id).request
    # passenger cancels after the driver's client read the request as pending
    store.update_request_state(req.id, RequestState.cancelled, expected=[RequestState.pending])
    with pytest.raises(StateConflict):
        store.update_request_state(req.id, RequestState.rejected, expected=[RequestState.pending])
    assert store.get_request(req.id).state == "cancelled"


def test_queries(store, pair):
    drv, pas, sched = pair
    other = make_user("Sofia", Role.passenger)
    octx = SessionContext(other.id, Role.passenger)
    r1 = create_request(store, pas, sched.id).request
    r2 = create_request(store, octx, sched.id).request
    accept_request(store, drv, r1.id)
    assert [r.id for r in pending_for_driver(store, drv.user_id)] == [r2.id]
    assert [r.id for r in active_for_passenger(store, pas.user_id)] == [r1.id]
    reject_request(store, drv, r2.id)
    assert pending_for_driver(store, drv.user_id) == []
    assert active_for_passenger(store, other.id) == []


# ────────────────────────── failure semantics ───────────────────────────────

def test_notification_failure_is_a_warning(store, pair, monkeypatch, caplog):
    drv, pas, sched = pair

    def boom(*args, **kwargs):
        raise StoreUnavailable("quota exceeded")

    monkeypatch.setattr(store, "create_notification", boom)
    with caplog.at_level("WARNING"):
        res = create_request(store, pas, sched.id)
    assert res.state == "pending"
    assert len(res.warnings) == 1
    assert isinstance(res.warnings[0], PartialSideEffectFailure)
    assert res.warnings[0].recipient_id == drv.user_id
    assert store.get_request(res.request.id).state == "pending"
    assert any("notification failed" in r.message for r in caplog.records)


def test_primary_store_failure_propagates(store, pair, monkeypatch):
    drv, pas, sched = pair
    req = create_request(store, pas, sched.id).request

    def boom(*args, **kwargs):
        raise StoreUnavailable("offline")

    monkeypatch.setattr(store, "update_request_state", boom)
    with pytest.raises(StoreUnavailable):
        accept_request(store, drv, req.id)


# ────────────────────────── matches_for ─────────────────────────────────────

def test_matches_for_short_circuits_without_own_schedules(store, monkeypatch):
    calls = []
    original = store.list_active_schedules

    def spy(role, owner_id=None):
        calls.append((role, owner_id))
        return original(role, owner_id=owner_id)

    monkeypatch.setattr(store, "list_active_schedules", spy)
    assert matches_for(store, SessionContext(5, Role.passenger)) == []
    assert len(calls) == 1


def test_end_to_end_scenario(store):
    d = make_user("Diego", Role.driver)
    p = make_user("Pilar", Role.passenger)
    store.create_schedule(Role.passenger, passenger_fields(p.id, day="lunes", time="07:50", flex=30))
    dsched = store.create_schedule(Role.driver, driver_fields(d.id, day="lunes", time="08:00", seats=4))
    pctx = SessionContext(p.id, Role.passenger, p.full_name)
    dctx = SessionContext(d.id, Role.driver, d.full_name)

    found = matches_for(store, pctx)
    assert len(found) == 1
    assert found[0].candidate.id == dsched.id

    req = create_request(store, pctx, found[0].candidate.id).request
    assert req.state == "pending"
    res = accept_request(store, dctx, req.id)
    assert res.state == "accepted"
    notes = store.list_notifications(p.id)
    assert len(notes) == 1
    assert notes[0].type == "trip_accepted"
    assert notes[0].payload["request_id"] == req.id

    # the driver sees the passenger from the other side
    assert [m.candidate.owner_id for m in matches_for(store, dctx)] == [p.id]


# ────────────────────────── push feed ───────────────────────────────────────

@pytest.mark.asyncio
async def test_subscription_receives_only_filtered_inserts(store, pair):
    drv, pas, sched = pair
    async with store.subscribe_inserts("notification", {"user_id": drv.user_id}) as sub:
        create_request(store, pas, sched.id)
        store.create_notification(pas.user_id, NotificationType.trip_accepted, "t", "b")
        event = await sub.get(timeout=1)
        assert event["type"] == "trip_requested"
        assert event["user_id"] == drv.user_id
        await asyncio.sleep(0)
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.05)
    assert sub.closed
    assert store.feed.subscriber_count() == 0


@pytest.mark.asyncio
async def test_closed_subscription_gets_nothing(store, pair):
    drv, pas, sched = pair
    sub = store.subscribe_inserts("notification", {"user_id": drv.user_id})
    sub.close()
    assert store.feed.publish("notification", {"user_id": drv.user_id, "id": 1}) == 0


def test_inbox_dedupes_by_id():
    inbox = NotificationInbox()
    event = {"id": 7, "type": "trip_accepted", "read": False}
    assert inbox.add(event)
    assert not inbox.add(dict(event))
    assert inbox.unread_count == 1
    inbox.add({"id": 8, "type": "trip_requested", "read": False})
    assert [i["id"] for i in inbox.items()] == [8, 7]
    assert inbox.mark_read(7)
    assert not inbox.mark_read(7)
    assert inbox.unread_count == 1
