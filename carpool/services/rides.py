"""
Ride registry: posting, searching and the driver-side lifecycle.

Flow:
  1. Driver posts a ride (scheduled or immediately active)
  2. Riders book seats through services.bookings
  3. Driver starts the ride -> booked riders move to in_progress
  4. Driver completes (or cancels) the ride -> every open booking is finalised

Steps 3 and 4 flip the ride in one transaction, then walk a snapshot of the
ride's bookings with one compare-and-set commit per booking. A failed item is
logged and reported back. Calling the same operation again only touches the
bookings that did not make it, and only those get a notification.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.config import get_settings
from carpool.database import atomic, utcnow
from carpool.models.booking import Booking
from carpool.models.ride import Ride
from carpool.models.ride_request import RideRequest
from carpool.models.user import User
from carpool.models.vehicle import Vehicle
from carpool.schemas.schemas import (
    BookingStatusEnum, NotificationTypeEnum, RequestStatusEnum, RideStatusEnum,
)
from carpool.services.exceptions import (
    ActiveRideExistsError, PermissionDeniedError, RideNotFoundError,
    ValidationError, VehicleNotFoundError,
)
from carpool.services.notifications import notify
from carpool.services.state_machine import OPEN_RIDE_STATUSES, ensure_transition, sources_for
from carpool.services.users import ensure_user, list_vehicles

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class FanoutResult:
    """Outcome of a start/complete/cancel pass over a ride's bookings."""
    ride: Ride
    transitioned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class CompletionSummary:
    ride: Ride
    riders: list[dict[str, Any]]
    total_cost: float
    currency: str
    failed: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_ride(ride_id: str, db: AsyncSession) -> Ride:
    ride = await db.get(Ride, ride_id)
    if ride is None:
        raise RideNotFoundError()
    return ride


async def lock_ride(ride_id: str, db: AsyncSession) -> Ride:
    result = await db.execute(
        select(Ride).where(Ride.id == ride_id).with_for_update().execution_options(populate_existing=True)
    )
    ride = result.scalar_one_or_none()
    if ride is None:
        raise RideNotFoundError()
    return ride


def _ensure_driver(ride: Ride, driver_id: str) -> None:
    if ride.driver_id != driver_id:
        raise PermissionDeniedError("Only the ride's driver can do this")


async def find_open_ride(driver_id: str, db: AsyncSession) -> Optional[Ride]:
    result = await db.execute(
        select(Ride).where(Ride.driver_id == driver_id, Ride.status.in_(OPEN_RIDE_STATUSES)).limit(1)
    )
    return result.scalar_one_or_none()


async def list_driver_rides(driver_id: str, db: AsyncSession) -> list[Ride]:
    result = await db.execute(
        select(Ride).where(Ride.driver_id == driver_id).order_by(Ride.departure_time.desc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------

async def check_can_post(driver_id: str, db: AsyncSession) -> tuple[list[Vehicle], Optional[Ride]]:
    """Early gate shown before the posting form: the driver's vehicles and any blocking ride."""
    vehicles = await list_vehicles(driver_id, db)
    open_ride = await find_open_ride(driver_id, db)
    return vehicles, open_ride


async def create_ride(
    driver_id: str,
    driver_name: str,
    vehicle_id: str,
    pickup_location: str,
    destination: str,
    departure_time: datetime,
    seats: int,
    db: AsyncSession,
    *,
    pickup_lat: Optional[float] = None,
    pickup_lng: Optional[float] = None,
    dest_lat: Optional[float] = None,
    dest_lng: Optional[float] = None,
    route_polyline: Optional[str] = None,
    distance_km: Optional[float] = None,
    duration_minutes: Optional[float] = None,
    is_scheduled: bool = False,
    scheduled_time: Optional[datetime] = None,
    is_free: bool = False,
    price: float = 0.0,
    is_female_only: bool = False,
    notes: str = "",
) -> Ride:
    if seats is None or seats <= 0:
        raise ValidationError("Please enter a valid number of available seats")
    if not pickup_location.strip():
        raise ValidationError("Please enter pickup location")
    if not destination.strip():
        raise ValidationError("Please enter destination")
    if price < 0:
        raise ValidationError("Price cannot be negative")

    async with atomic(db):
        # Driver row lock serialises concurrent posts by the same driver
        driver = await ensure_user(driver_id, driver_name, db, lock=True)

        vehicle = (
            await db.execute(select(Vehicle).where(Vehicle.id == vehicle_id, Vehicle.owner_id == driver_id))
        ).scalar_one_or_none()
        if vehicle is None:
            raise VehicleNotFoundError("Register a vehicle before posting a ride")
        if seats > vehicle.seats:
            raise ValidationError(f"{vehicle.name} only has {vehicle.seats} seats")
        if is_female_only and driver.gender != "female":
            raise ValidationError("Female-only rides can only be offered by female drivers")

        # Re-checked here, right before insert, not only when the form loaded
        if await find_open_ride(driver_id, db) is not None:
            raise ActiveRideExistsError()

        status = RideStatusEnum.scheduled if is_scheduled else RideStatusEnum.active
        ride = Ride(
            driver_id=driver_id,
            driver_name=driver.name or driver_name,
            vehicle_id=vehicle.id,
            vehicle_name=vehicle.name,
            vehicle_model=vehicle.model,
            vehicle_color=vehicle.color,
            vehicle_plate=vehicle.plate_number,
            pickup_location=pickup_location.strip(),
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            destination=destination.strip(),
            dest_lat=dest_lat,
            dest_lng=dest_lng,
            route_polyline=route_polyline,
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            is_scheduled=is_scheduled,
            scheduled_time=(scheduled_time or departure_time) if is_scheduled else None,
            departure_time=departure_time,
            started_at=None if is_scheduled else utcnow(),
            total_seats=seats,
            available_seats=seats,
            is_free=is_free,
            price=0.0 if is_free else float(price),
            is_female_only=is_female_only,
            notes=notes.strip(),
            status=status.value,
        )
        db.add(ride)
        try:
            await db.flush()
        except IntegrityError as exc:
            # Partial unique index on open rides per driver
            raise ActiveRideExistsError() from exc

    logger.info("Ride %s posted by driver=%s status=%s seats=%d", ride.id, driver_id, ride.status, seats)
    return ride


# ---------------------------------------------------------------------------
# Booking fan-out
# ---------------------------------------------------------------------------

async def _snapshot_bookings(ride_id: str, statuses: Sequence[str], db: AsyncSession) -> list[Any]:
    result = await db.execute(
        select(Booking.id, Booking.rider_id, Booking.rider_name, Booking.estimated_cost)
        .where(Booking.ride_id == ride_id, Booking.status.in_(statuses))
        .order_by(Booking.created_at)
    )
    return list(result.all())


async def _fan_out(
    ride: Ride,
    from_statuses: Sequence[str],
    target: BookingStatusEnum,
    values: dict[str, Any],
    db: AsyncSession,
) -> tuple[list[Any], list[str]]:
    """
    Move each of the ride's bookings still in `from_statuses` to `target`, each with its own commit.
    A booking that has already moved is skipped, which is what makes re-runs safe.

    A failed booking rolls the session back, which expires `ride`; it is
    reloaded before returning so callers can keep reading it.
    """
    rows = await _snapshot_bookings(ride.id, from_statuses, db)
    transitioned, failed = [], []
    for row in rows:
        try:
            async with atomic(db):
                result = await db.execute(
                    update(Booking)
                    .where(Booking.id == row.id, Booking.status.in_(from_statuses))
                    .values(status=target.value, **values)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as exc:
            logger.error("Booking %s -> %s failed: %s", row.id, target.value, exc)
            failed.append(row.id)
            continue
        if result.rowcount == 1:
            transitioned.append(row)
    if failed:
        await db.refresh(ride)
    return transitioned, failed


# ---------------------------------------------------------------------------
# Driver lifecycle
# ---------------------------------------------------------------------------

async def start_ride(ride_id: str, driver_id: str, db: AsyncSession) -> FanoutResult:
    """
    scheduled -> active, then every confirmed/scheduled booking -> in_progress.
    On an already-active ride only the fan-out runs again.
    """
    now = utcnow()
    async with atomic(db):
        ride = await lock_ride(ride_id, db)
        _ensure_driver(ride, driver_id)
        repairing = ride.status == RideStatusEnum.active.value
        if not repairing:
            ride.status = ensure_transition("ride", ride.status, RideStatusEnum.active)
            ride.started_at = now

    if repairing:
        logger.info("Ride %s already active, re-running start for remaining bookings", ride_id)
    else:
        logger.info("Ride %s started by driver=%s", ride_id, driver_id)

    from_statuses = sources_for("booking", BookingStatusEnum.in_progress)
    transitioned, failed = await _fan_out(
        ride, from_statuses, BookingStatusEnum.in_progress, {"started_at": now}, db
    )

    for row in transitioned:
        await notify(
            row.rider_id,
            NotificationTypeEnum.ride_started,
            "Your Ride Has Started!",
            f"{ride.driver_name} has started the ride to {ride.destination}",
            db,
            ride_id=ride.id,
            booking_id=row.id,
            data={"rideId": ride.id, "driverId": ride.driver_id, "driverName": ride.driver_name},
        )

    return FanoutResult(ride=ride, transitioned=[r.id for r in transitioned], failed=failed)


async def complete_ride(ride_id: str, driver_id: str, db: AsyncSession) -> CompletionSummary:
    """
    active/scheduled -> completed and every open booking -> completed.
    Each rider's cost is the estimated_cost fixed on their booking.
    """
    now = utcnow()
    async with atomic(db):
        ride = await lock_ride(ride_id, db)
        _ensure_driver(ride, driver_id)
        repairing = ride.status == RideStatusEnum.completed.value
        if not repairing:
            ride.status = ensure_transition("ride", ride.status, RideStatusEnum.completed)
            ride.completed_at = now

    if repairing:
        logger.info("Ride %s already completed, finalising remaining bookings", ride_id)
    else:
        logger.info("Ride %s completed by driver=%s", ride_id, driver_id)

    from_statuses = sources_for("booking", BookingStatusEnum.completed)
    transitioned, failed = await _fan_out(
        ride, from_statuses, BookingStatusEnum.completed, {"completed_at": now}, db
    )

    for row in transitioned:
        await notify(
            row.rider_id,
            NotificationTypeEnum.ride_completed,
            "Ride Completed!",
            f"Your ride with {ride.driver_name} has been completed. Please rate your experience.",
            db,
            ride_id=ride.id,
            booking_id=row.id,
            data={
                "rideId": ride.id,
                "bookingId": row.id,
                "driverId": ride.driver_id,
                "driverName": ride.driver_name,
                "cost": row.estimated_cost,
                "currency": settings.currency,
            },
        )

    completed = await _snapshot_bookings(ride.id, (BookingStatusEnum.completed.value,), db)
    riders = [
        {"booking_id": r.id, "rider_id": r.rider_id, "name": r.rider_name, "cost": r.estimated_cost}
        for r in completed
    ]
    total_cost = round(sum(r["cost"] for r in riders), 3)
    return CompletionSummary(
        ride=ride, riders=riders, total_cost=total_cost, currency=settings.currency, failed=failed
    )


async def cancel_ride(ride_id: str, driver_id: str, db: AsyncSession) -> FanoutResult:
    """
    Driver calls off the whole ride: open bookings are cancelled and
    pending requests declined. Seats are not handed back on a dead ride.
    """
    now = utcnow()
    async with atomic(db):
        ride = await lock_ride(ride_id, db)
        _ensure_driver(ride, driver_id)
        repairing = ride.status == RideStatusEnum.cancelled.value
        if not repairing:
            ride.status = ensure_transition("ride", ride.status, RideStatusEnum.cancelled)
            ride.cancelled_at = now

        pending = (
            await db.execute(
                select(RideRequest.id, RideRequest.rider_id).where(
                    RideRequest.ride_id == ride.id,
                    RideRequest.status == RequestStatusEnum.pending.value,
                )
            )
        ).all()
        if pending:
            await db.execute(
                update(RideRequest)
                .where(
                    RideRequest.id.in_([p.id for p in pending]),
                    RideRequest.status == RequestStatusEnum.pending.value,
                )
                .values(
                    status=ensure_transition("request", RequestStatusEnum.pending, RequestStatusEnum.declined),
                    decline_reason="Ride cancelled",
                    responded_at=now,
                )
                .execution_options(synchronize_session=False)
            )

    logger.info("Ride %s cancelled by driver=%s (%d pending requests declined)", ride_id, driver_id, len(pending))

    from_statuses = sources_for("booking", BookingStatusEnum.cancelled)
    transitioned, failed = await _fan_out(
        ride,
        from_statuses,
        BookingStatusEnum.cancelled,
        {"cancelled_at": now, "cancelled_by": driver_id},
        db,
    )

    message = f"{ride.driver_name} has cancelled the ride to {ride.destination}"
    for row in transitioned:
        await notify(
            row.rider_id, NotificationTypeEnum.ride_cancelled, "Ride Cancelled", message, db,
            ride_id=ride.id, booking_id=row.id, data={"rideId": ride.id},
        )
    for request in pending:
        await notify(
            request.rider_id, NotificationTypeEnum.ride_cancelled, "Ride Cancelled", message, db,
            ride_id=ride.id, data={"rideId": ride.id, "requestId": request.id},
        )

    return FanoutResult(ride=ride, transitioned=[r.id for r in transitioned], failed=failed)


# ---------------------------------------------------------------------------
# Search & pricing
# ---------------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def _text_match(stored: str, wanted: str) -> bool:
    """Case-insensitive containment in either direction."""
    stored, wanted = stored.strip().lower(), wanted.strip().lower()
    return wanted in stored or stored in wanted


async def search_rides(
    pickup: str,
    destination: str,
    rider_id: str,
    db: AsyncSession,
    departure_time: Optional[datetime] = None,
) -> list[Ride]:
    """
    Open rides with free seats whose endpoints match the query text.
    With a departure time, only rides within the configured window are kept,
    closest first.
    """
    result = await db.execute(
        select(Ride).where(
            Ride.status.in_(OPEN_RIDE_STATUSES),
            Ride.available_seats > 0,
            Ride.driver_id != rider_id,
        )
    )
    rider = await db.get(User, rider_id)
    rider_is_female = rider is not None and rider.gender == "female"

    scored = []
    for ride in result.scalars().all():
        if ride.is_female_only and not rider_is_female:
            continue
        if not (_text_match(ride.pickup_location, pickup) and _text_match(ride.destination, destination)):
            continue
        gap_hours = 0.0
        if departure_time is not None:
            gap_hours = abs((_as_utc(ride.departure_time) - _as_utc(departure_time)).total_seconds()) / 3600
            if gap_hours > settings.search_window_hours:
                continue
        scored.append((gap_hours, _as_utc(ride.departure_time), ride))

    scored.sort(key=lambda item: (item[0], item[1]))
    return [ride for _, _, ride in scored]


def cost_split(ride: Ride) -> dict[str, Any]:
    """Share of the ride price if split evenly between the driver and booked riders."""
    booked = ride.total_seats - ride.available_seats
    total_cost = float(ride.price or 0.0)
    return {
        "total_cost": total_cost,
        "cost_per_person": round(total_cost / (booked + 1), 2),
        "number_of_riders": booked,
        "currency": settings.currency,
    }
