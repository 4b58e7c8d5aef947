"""
Data access for schedules, trip requests and notifications.

`SQLStore` is the only place that talks to the database. Every SQLAlchemy
failure leaves this module as StoreUnavailable; inserts into the
notification and triprequest tables are published to the insert feed after
they are committed.
"""

import functools
import logging
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

import db
from errors import ValidationError, NotFound, StateConflict, StoreUnavailable
from matching import to_minutes, DEFAULT_FLEXIBILITY
from models import (
    utcnow,
    Day, Place, Role, RequestState,
    DriverSchedule, PassengerSchedule, TripRequest, Notification,
)
from notifications import feed as default_feed, InsertFeed

logger = logging.getLogger(__name__)

_DAYS = {d.value for d in Day}
_PLACES = {p.value for p in Place}


def guarded(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception("store call %s failed", fn.__name__)
            raise StoreUnavailable(str(e)) from e
    return wrapper


def parse_role(role) -> Role:
    """Accept a Role, its value ("conductor") or its name ("driver")."""
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        pass
    try:
        return Role[role]
    except KeyError:
        raise ValidationError(f"unknown role {role!r}")


def _schedule_model(role):
    return DriverSchedule if parse_role(role) is Role.driver else PassengerSchedule


def _bounded_int(fields, key, default=None, minimum=1):
    value = fields.get(key, default)
    if value is None:
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")
    if value < minimum:
        raise ValidationError(f"{key} must be at least {minimum}")
    return value


def validate_schedule_fields(role, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Normalise and check schedule input; raises ValidationError on any problem."""
    model = _schedule_model(role)
    time_key = "departure_time" if model is DriverSchedule else "approx_time"
    missing = [k for k in ("owner_id", "day", time_key, "origin", "destination") if fields.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"missing {', '.join(missing)}")
    day = str(fields["day"]).lower()
    if day not in _DAYS:
        raise ValidationError(f"invalid day {fields['day']!r}")
    origin = str(fields["origin"]).lower()
    destination = str(fields["destination"]).lower()
    for place in (origin, destination):
        if place not in _PLACES:
            raise ValidationError(f"invalid place {place!r}")
    to_minutes(fields[time_key])
    zone = (fields.get("zone") or "").strip() or None
    out = {
        "owner_id": int(fields["owner_id"]),
        "day": day,
        "origin": origin,
        "destination": destination,
        "zone": zone,
        time_key: str(fields[time_key]).strip(),
    }
    if model is DriverSchedule:
        out["seats"] = _bounded_int(fields, "seats", 4)
    else:
        out["flexibility_minutes"] = _bounded_int(fields, "flexibility_minutes", DEFAULT_FLEXIBILITY, minimum=0)
    return out


def row_dict(row) -> Dict[str, Any]:
    return row.model_dump(mode="json")


class SQLStore:
    def __init__(self, insert_feed: Optional[InsertFeed] = None):
        self.feed = insert_feed or default_feed

    def _publish(self, table: str, row):
        self.feed.publish(table, row_dict(row))

    # ---------------- schedules ----------------

    @guarded
    def list_active_schedules(self, role, owner_id: Optional[int] = None) -> List:
        model = _schedule_model(role)
        with db.get_session() as session:
            q = select(model).where(model.active == True)  # noqa: E712
            if owner_id is not None:
                q = q.where(model.owner_id == owner_id)
            return list(session.exec(q.order_by(model.created_at, model.id)).all())

    @guarded
    def get_schedule(self, role, schedule_id: int):
        model = _schedule_model(role)
        with db.get_session() as session:
            s = session.get(model, schedule_id)
            if not s:
                raise NotFound("schedule not found")
            return s

    @guarded
    def create_schedule(self, role, fields: Dict[str, Any]):
        model = _schedule_model(role)
        data = validate_schedule_fields(role, fields)
        with db.get_session() as session:
            s = model(**data)
            session.add(s)
            session.commit()
            session.refresh(s)
            return s

    @guarded
    def soft_delete_schedule(self, role, schedule_id: int):
        model = _schedule_model(role)
        with db.get_session() as session:
            s = session.get(model, schedule_id)
            if not s:
                raise NotFound("schedule not found")
            s.active = False
            session.add(s)
            session.commit()

    def replace_schedule(self, role, schedule_id: int, fields: Dict[str, Any]):
        """Edit as soft-delete + create, so old rows stay around for auditing."""
        data = validate_schedule_fields(role, fields)
        old = self.get_schedule(role, schedule_id)
        if old.owner_id != data["owner_id"]:
            raise NotFound("schedule not found")
        self.soft_delete_schedule(role, schedule_id)
        return self.create_schedule(role, data)

    # ---------------- trip requests ----------------

    @guarded
    def get_request(self, request_id: int) -> TripRequest:
        with db.get_session() as session:
            r = session.get(TripRequest, request_id)
            if not r:
                raise NotFound("request not found")
            return r

    @guarded
    def create_request(self, passenger_id: int, driver_id: int, driver_schedule_id: int,
                       message: Optional[str] = None) -> TripRequest:
        with db.get_session() as session:
            r = TripRequest(
                passenger_id=passenger_id,
                driver_id=driver_id,
                driver_schedule_id=driver_schedule_id,
                message=message,
                state=RequestState.pending.value,
            )
            session.add(r)
            session.commit()
            session.refresh(r)
        self._publish("triprequest", r)
        return r

    @guarded
    def update_request_state(self, request_id: int, new_state, expected: Optional[Iterable] = None) -> TripRequest:
        """Set the state; with `expected`, only if the current state is one of them (compare-and-swap)."""
        new_state = RequestState(new_state).value
        with db.get_session() as session:
            stmt = update(TripRequest).where(TripRequest.id == request_id)
            if expected is not None:
                stmt = stmt.where(TripRequest.state.in_([RequestState(s).value for s in expected]))
            stmt = stmt.values(state=new_state, updated_at=utcnow())
            res = session.execute(stmt)
            session.commit()
            if res.rowcount == 0:
                current = session.get(TripRequest, request_id)
                if not current:
                    raise NotFound("request not found")
                raise StateConflict(f"request {request_id} is {current.state}, cannot become {new_state}")
            return session.get(TripRequest, request_id)

    @guarded
    def list_requests(self, driver_id: Optional[int] = None, passenger_id: Optional[int] = None,
                      states: Optional[Iterable] = None, driver_schedule_id: Optional[int] = None) -> List[TripRequest]:
        with db.get_session() as session:
            q = select(TripRequest)
            if driver_id is not None:
                q = q.where(TripRequest.driver_id == driver_id)
            if passenger_id is not None:
                q = q.where(TripRequest.passenger_id == passenger_id)
            if driver_schedule_id is not None:
                q = q.where(TripRequest.driver_schedule_id == driver_schedule_id)
            if states is not None:
                q = q.where(TripRequest.state.in_([RequestState(s).value for s in states]))
            return list(session.exec(q.order_by(TripRequest.created_at, TripRequest.id)).all())

    # ---------------- notifications ----------------

    @guarded
    def create_notification(self, recipient_id: int, type, title: str, body: str,
                            payload: Optional[Dict[str, Any]] = None) -> Notification:
        with db.get_session() as session:
            n = Notification(user_id=recipient_id, type=str(getattr(type, "value", type)),
                             title=title, body=body, payload=payload)
            session.add(n)
            session.commit()
            session.refresh(n)
        self._publish("notification", n)
        return n

    @guarded
    def list_notifications(self, user_id: int, unread_only: bool = True) -> List[Notification]:
        with db.get_session() as session:
            q = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                q = q.where(Notification.read == False)  # noqa: E712
            return list(session.exec(q.order_by(Notification.created_at.desc(), Notification.id.desc())).all())

    @guarded
    def mark_notification_read(self, notification_id: int) -> Notification:
        with db.get_session() as session:
            n = session.get(Notification, notification_id)
            if not n:
                raise NotFound("notification not found")
            n.read = True
            session.add(n)
            session.commit()
            session.refresh(n)
            return n

    def subscribe_inserts(self, table: str, filter: Optional[Dict[str, Any]] = None):
        return self.feed.subscribe(table, filter)
