"""
Trip request lifecycle.

    pending -> accepted | rejected | cancelled

All three targets are terminal, except that a passenger may still cancel an
accepted request. Illegal transitions raise StateConflict before the store
is touched; the store write itself is a compare-and-swap on the expected
source states, so a concurrent conflicting write also ends in StateConflict.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List

from db import get_lock
from errors import (
    ValidationError,
    StateConflict,
    PermissionDenied,
    StoreUnavailable,
    PartialSideEffectFailure,
)
from matching import find_matches, Match
from models import Role, RequestState, NotificationType, TripRequest
from store import parse_role

logger = logging.getLogger(__name__)

# source states from which each target state may be reached
TRANSITIONS = {
    RequestState.accepted: {RequestState.pending},
    RequestState.rejected: {RequestState.pending},
    RequestState.cancelled: {RequestState.pending, RequestState.accepted},
}

ACTIVE_STATES = [RequestState.pending, RequestState.accepted]


@dataclass
class SessionContext:
    """Who is acting. Passed explicitly into every lifecycle call."""
    user_id: int
    role: Role
    name: Optional[str] = None

    def __post_init__(self):
        self.role = parse_role(self.role)


@dataclass
class RequestResult:
    """Result object for request operations."""
    request: TripRequest
    warnings: List[PartialSideEffectFailure] = field(default_factory=list)

    @property
    def state(self) -> str:
        return self.request.state


def _require_role(ctx: SessionContext, role: Role):
    if ctx.role is not role:
        raise PermissionDenied(f"only a {role.value} can do this")


def _check_transition(req: TripRequest, target: RequestState):
    allowed = TRANSITIONS[target]
    if RequestState(req.state) not in allowed:
        raise StateConflict(f"request {req.id} is {req.state}, cannot become {target.value}")


def _notify(store, result: RequestResult, recipient_id: int, type: NotificationType, title: str, body: str):
    """Create the notification; a store failure here is recorded as a warning, not raised."""
    try:
        store.create_notification(recipient_id, type, title, body, {"request_id": result.request.id})
    except StoreUnavailable as e:
        warning = PartialSideEffectFailure(
            f"request {result.request.id} saved but {type.value} notification failed: {e}",
            request_id=result.request.id,
            recipient_id=recipient_id,
        )
        logger.warning(str(warning))
        result.warnings.append(warning)


# ===================== Passenger Operations =====================

def create_request(store, ctx: SessionContext, driver_schedule_id: int, message: Optional[str] = None) -> RequestResult:
    """
    Ask to join a driver's schedule and notify the driver.

    Raises:
        PermissionDenied: caller is not a passenger
        ValidationError: schedule is inactive or belongs to the caller
        StateConflict: caller already has a pending request for this schedule
    """
    _require_role(ctx, Role.passenger)
    schedule = store.get_schedule(Role.driver, driver_schedule_id)
    if not schedule.active:
        raise ValidationError("schedule is no longer active")
    if schedule.owner_id == ctx.user_id:
        raise ValidationError("cannot request a seat on your own schedule")
    if message is None:
        message = f"Solicitud de viaje de {ctx.name or 'Pasajero'}"

    # serialize the duplicate check with the insert so double-submits cannot both pass
    with get_lock("requests"):
        existing = store.list_requests(
            passenger_id=ctx.user_id,
            driver_schedule_id=driver_schedule_id,
            states=[RequestState.pending],
        )
        if existing:
            raise StateConflict("a pending request for this schedule already exists")
        req = store.create_request(ctx.user_id, schedule.owner_id, driver_schedule_id, message)

    logger.info("request %s created by passenger %s for schedule %s", req.id, ctx.user_id, driver_schedule_id)
    result = RequestResult(request=req)
    _notify(
        store, result, schedule.owner_id, NotificationType.trip_requested,
        "Nueva solicitud de viaje",
        f"{ctx.name or 'Un pasajero'} quiere viajar contigo",
    )
    return result


def cancel_request(store, ctx: SessionContext, request_id: int) -> RequestResult:
    _require_role(ctx, Role.passenger)
    req = store.get_request(request_id)
    if req.passenger_id != ctx.user_id:
        raise PermissionDenied("not your request")
    return RequestResult(request=_transition(store, req, RequestState.cancelled))


# ===================== Driver Operations =====================

def accept_request(store, ctx: SessionContext, request_id: int) -> RequestResult:
    _require_role(ctx, Role.driver)
    req = store.get_request(request_id)
    if req.driver_id != ctx.user_id:
        raise PermissionDenied("not your request")
    result = RequestResult(request=_transition(store, req, RequestState.accepted))
    _notify(
        store, result, req.passenger_id, NotificationType.trip_accepted,
        "¡Solicitud aceptada!",
        "El conductor aceptó tu solicitud de viaje",
    )
    return result


def reject_request(store, ctx: SessionContext, request_id: int) -> RequestResult:
    # the passenger is not notified of rejections
    _require_role(ctx, Role.driver)
    req = store.get_request(request_id)
    if req.driver_id != ctx.user_id:
        raise PermissionDenied("not your request")
    return RequestResult(request=_transition(store, req, RequestState.rejected))


def _transition(store, req: TripRequest, target: RequestState) -> TripRequest:
    _check_transition(req, target)
    updated = store.update_request_state(req.id, target, expected=TRANSITIONS[target])
    logger.info("request %s: %s -> %s", req.id, req.state, updated.state)
    return updated


# ===================== Queries =====================

def pending_for_driver(store, driver_id: int) -> List[TripRequest]:
    return store.list_requests(driver_id=driver_id, states=[RequestState.pending])


def active_for_passenger(store, passenger_id: int) -> List[TripRequest]:
    return store.list_requests(passenger_id=passenger_id, states=ACTIVE_STATES)


def matches_for(store, ctx: SessionContext) -> List[Match]:
    """Counterpart schedules compatible with the caller's active schedules."""
    mine = store.list_active_schedules(ctx.role, owner_id=ctx.user_id)
    if not mine:
        return []
    other = Role.passenger if ctx.role is Role.driver else Role.driver
    return find_matches(mine, store.list_active_schedules(other))
