"""
Legal status transitions for rides, bookings and ride requests.

Every status change in the service layer goes through `ensure_transition`
so the rules live in one table instead of at each call site.
"""
from enum import Enum

from carpool.schemas.schemas import BookingStatusEnum, RequestStatusEnum, RideStatusEnum
from carpool.services.exceptions import InvalidTransitionError

R = RideStatusEnum
B = BookingStatusEnum
Q = RequestStatusEnum

RIDE_TRANSITIONS: dict[str, set[str]] = {
    R.scheduled: {R.active, R.completed, R.cancelled},
    R.active: {R.completed, R.cancelled},
    R.completed: set(),
    R.cancelled: set(),
}

BOOKING_TRANSITIONS: dict[str, set[str]] = {
    B.confirmed: {B.in_progress, B.completed, B.cancelled},
    B.scheduled: {B.in_progress, B.completed, B.cancelled},
    B.in_progress: {B.completed, B.cancelled},
    B.completed: set(),
    B.cancelled: set(),
}

REQUEST_TRANSITIONS: dict[str, set[str]] = {
    Q.pending: {Q.accepted, Q.declined},
    Q.accepted: set(),
    Q.declined: set(),
}

_TABLES = {
    "ride": RIDE_TRANSITIONS,
    "booking": BOOKING_TRANSITIONS,
    "request": REQUEST_TRANSITIONS,
}

OPEN_RIDE_STATUSES = (R.scheduled.value, R.active.value)
ACTIVE_BOOKING_STATUSES = (B.confirmed.value, B.scheduled.value, B.in_progress.value)
# Statuses in which a booking still holds a seat that cancellation gives back
SEAT_HOLDING_STATUSES = (B.confirmed.value, B.scheduled.value)


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else status


def is_valid_transition(entity: str, current, target) -> bool:
    table = _TABLES[entity]
    return _value(target) in {_value(s) for s in table.get(_value(current), set())}


def is_terminal(entity: str, status) -> bool:
    return not _TABLES[entity].get(_value(status), set())


def sources_for(entity: str, target) -> tuple[str, ...]:
    """Every status from which `target` is reachable in one step."""
    target = _value(target)
    return tuple(
        _value(source)
        for source, targets in _TABLES[entity].items()
        if target in {_value(t) for t in targets}
    )


def ensure_transition(entity: str, current, target) -> str:
    """Return the target status value, or raise InvalidTransitionError."""
    if not is_valid_transition(entity, current, target):
        raise InvalidTransitionError(entity, _value(current), _value(target))
    return _value(target)
