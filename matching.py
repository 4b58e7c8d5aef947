from typing import List, Iterable, Optional, Union
from dataclasses import dataclass
from datetime import datetime
import os

from models import DriverSchedule, PassengerSchedule
from errors import ValidationError

DEFAULT_FLEXIBILITY = int(os.environ.get("UNIRIDE_DEFAULT_FLEXIBILITY", "30"))

Schedule = Union[DriverSchedule, PassengerSchedule]


@dataclass
class Match:
    """A compatible pair: `candidate` matched because of the caller's `own` schedule."""
    candidate: Schedule
    own: Schedule


def to_minutes(value) -> int:
    """Minutes since midnight for an "HH:MM" (or "HH:MM:SS") time of day."""
    if not isinstance(value, str):
        raise ValidationError(f"time must be a HH:MM string, got {value!r}")
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            t = datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
        return t.hour * 60 + t.minute
    raise ValidationError(f"invalid time of day: {value!r}")


def schedule_time(s: Schedule) -> str:
    if isinstance(s, DriverSchedule):
        return s.departure_time
    if isinstance(s, PassengerSchedule):
        return s.approx_time
    raise ValidationError(f"not a schedule: {s!r}")


def _flexibility(own: Schedule, candidate: Schedule) -> int:
    # only the passenger side carries a tolerance
    if isinstance(own, DriverSchedule) and isinstance(candidate, PassengerSchedule):
        passenger = candidate
    elif isinstance(own, PassengerSchedule) and isinstance(candidate, DriverSchedule):
        passenger = own
    else:
        raise ValidationError("matching requires one driver and one passenger schedule")
    if passenger.flexibility_minutes is None:
        return DEFAULT_FLEXIBILITY
    return passenger.flexibility_minutes


def _compatible(own: Schedule, own_min: int, candidate: Schedule, cand_min: int) -> bool:
    flex = _flexibility(own, candidate)
    if own.day != candidate.day:
        return False
    if own.origin != candidate.origin or own.destination != candidate.destination:
        return False
    return abs(own_min - cand_min) <= flex


def is_compatible(own: Schedule, candidate: Schedule) -> bool:
    return _compatible(own, to_minutes(schedule_time(own)), candidate, to_minutes(schedule_time(candidate)))


def find_matches(mine: List[Schedule], candidates: Iterable[Schedule]) -> List[Match]:
    """Every (own, candidate) pair that passes the compatibility predicate.

    Ordering is own-schedule-major. A candidate shows up once per own schedule
    it matches; use unique_by_owner() to collapse those.
    """
    if not mine:
        return []
    # parse everything up front so bad input fails before any match is produced
    own_times = [(s, to_minutes(schedule_time(s))) for s in mine]
    cand_times = [(c, to_minutes(schedule_time(c))) for c in candidates]
    out = []
    for own, own_min in own_times:
        for cand, cand_min in cand_times:
            if _compatible(own, own_min, cand, cand_min):
                out.append(Match(candidate=cand, own=own))
    return out


def unique_by_owner(matches: List[Match]) -> List[Match]:
    seen = set()
    out = []
    for m in matches:
        if m.candidate.owner_id in seen:
            continue
        seen.add(m.candidate.owner_id)
        out.append(m)
    return out


def filter_schedules(schedules: Iterable[Schedule], day: Optional[str] = None,
                     zone: Optional[str] = None, origin: Optional[str] = None) -> List[Schedule]:
    """Search filter for browsing drivers: day and origin exact, zone as a case-insensitive substring."""
    out = []
    for s in schedules:
        if day and s.day != day:
            continue
        if origin and s.origin != origin:
            continue
        if zone and zone.lower() not in (s.zone or "").lower():
            continue
        out.append(s)
    return out
