"""Slot accounting rules for charging sessions and station queues.

Everything here is pure: callers read the current records inside a store
transaction, ask for a plan, and write the plan back within the same
transaction. A rejected action raises before anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .const import LOYALTY_POINTS_PER_SESSION
from .exceptions import (
    AlreadyQueuedError,
    NoSlotsAvailableError,
    SessionNotFoundError,
    StationNotFoundError,
    StationUnavailableError,
    UserNotFoundError,
    ValidationError,
)
from .models import ActiveSession, Station, StationStatus, User
from .pricing import effective_price, elapsed_seconds, energy_for_duration


@dataclass(frozen=True, slots=True)
class StartPlan:
    station_id: str
    user_id: str
    available_after: int


@dataclass(frozen=True, slots=True)
class StopPlan:
    session_id: str
    station_id: str
    user_id: str
    duration: int
    kwh_consumed: float
    effective_price: float
    cost: float
    available_after: int
    loyalty_points_after: int


def validate_slot_counts(total: int, available: int) -> None:
    for value, field in ((total, "total slots"), (available, "available slots")):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field.capitalize()} must be an integer.")
        if value < 0:
            raise ValidationError(f"{field.capitalize()} cannot be negative.")
    if available > total:
        raise ValidationError("Available slots cannot be greater than total slots.")


def plan_start_session(station: Station | None, user_id: str, *, station_id: str) -> StartPlan:
    if station is None:
        raise StationNotFoundError(f"Station {station_id} does not exist.")
    if station.status is not StationStatus.OPERATIONAL:
        raise StationUnavailableError(f"Station {station_id} is under maintenance.")
    if station.slots.available <= 0:
        raise NoSlotsAvailableError(
            f"Station {station_id} has no available slots.",
            user_message="No slots are free right now. Join the queue to wait for one.",
        )
    return StartPlan(
        station_id=station.id,
        user_id=user_id,
        available_after=station.slots.available - 1,
    )


def plan_stop_session(
    session: ActiveSession | None,
    station: Station | None,
    user: User | None,
    *,
    session_id: str,
    now: datetime,
) -> StopPlan:
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} does not exist.")
    if station is None:
        raise StationNotFoundError(f"Station {session.station_id} does not exist.")
    if user is None:
        raise UserNotFoundError(f"User {session.user_id} does not exist.")
    duration = elapsed_seconds(session.start_time, now)
    kwh = energy_for_duration(duration)
    price = effective_price(station)
    # An admin edit may have lowered the total while the session ran.
    available_after = min(station.slots.available + 1, station.slots.total)
    return StopPlan(
        session_id=session.id,
        station_id=station.id,
        user_id=session.user_id,
        duration=duration,
        kwh_consumed=kwh,
        effective_price=price,
        cost=kwh * price,
        available_after=available_after,
        loyalty_points_after=user.profile.loyalty_points + LOYALTY_POINTS_PER_SESSION,
    )


def plan_join_queue(station: Station | None, user_id: str, *, station_id: str) -> tuple[str, ...]:
    """Return the queue with ``user_id`` appended at the back."""
    if station is None:
        raise StationNotFoundError(f"Station {station_id} does not exist.")
    if user_id in station.queue:
        position = station.queue.index(user_id) + 1
        raise AlreadyQueuedError(
            f"User {user_id} is already queued at station {station_id}.",
            user_message=f"You are already in the queue (#{position}).",
        )
    return (*station.queue, user_id)


def queue_position(station: Station, user_id: str) -> int | None:
    if user_id not in station.queue:
        return None
    return station.queue.index(user_id) + 1
