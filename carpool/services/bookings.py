"""
Request/booking broker.

Owns rider requests, bookings and every change to `rides.available_seats`.

Seat changes are always a conditional UPDATE evaluated by the database
(compare-and-set), inside the same transaction that creates or cancels the
booking and with the ride row locked:

    take:    available_seats = available_seats - 1  WHERE available_seats > 0
    release: available_seats = available_seats + 1  WHERE available_seats < total_seats

A zero rowcount means another writer got there first, and the whole
transaction is rolled back.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.database import atomic, utcnow
from carpool.models.booking import Booking
from carpool.models.ride import Ride
from carpool.models.ride_request import RideRequest
from carpool.schemas.schemas import (
    BookingStatusEnum, NotificationTypeEnum, RequestStatusEnum, RideStatusEnum,
)
from carpool.services.exceptions import (
    AlreadyBookedError, BookingNotFoundError, InvalidTransitionError, NoSeatsAvailableError,
    PermissionDeniedError, RequestAlreadyPendingError, RequestNotFoundError,
    RideNotAvailableError, RideNotFoundError,
)
from carpool.services.notifications import notify
from carpool.services.rides import lock_ride
from carpool.services.state_machine import (
    ACTIVE_BOOKING_STATUSES, OPEN_RIDE_STATUSES, SEAT_HOLDING_STATUSES, ensure_transition,
)
from carpool.services.users import ensure_user

logger = logging.getLogger(__name__)

ALREADY_BOOKED_REASON = "Rider already booked this ride"


# ---------------------------------------------------------------------------
# Seat accounting
# ---------------------------------------------------------------------------

async def take_seat(ride_id: str, db: AsyncSession) -> bool:
    result = await db.execute(
        update(Ride)
        .where(Ride.id == ride_id, Ride.available_seats > 0)
        .values(available_seats=Ride.available_seats - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release_seat(ride_id: str, db: AsyncSession) -> bool:
    result = await db.execute(
        update(Ride)
        .where(
            Ride.id == ride_id,
            Ride.status.in_(OPEN_RIDE_STATUSES),
            Ride.available_seats < Ride.total_seats,
        )
        .values(available_seats=Ride.available_seats + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ensure_open(ride: Ride) -> None:
    if ride.status not in OPEN_RIDE_STATUSES:
        raise RideNotAvailableError(f"This ride is {ride.status}")


async def _has_active_booking(ride_id: str, rider_id: str, db: AsyncSession) -> bool:
    result = await db.execute(
        select(Booking.id).where(
            Booking.ride_id == ride_id,
            Booking.rider_id == rider_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
    )
    return result.first() is not None


async def _ensure_no_active_booking(ride_id: str, rider_id: str, db: AsyncSession) -> None:
    if await _has_active_booking(ride_id, rider_id, db):
        raise AlreadyBookedError()


async def _lock_request(request_id: str, db: AsyncSession) -> RideRequest:
    request = (
        await db.execute(
            select(RideRequest)
            .where(RideRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if request is None:
        raise RequestNotFoundError()
    return request


async def _insert_booking(booking: Booking, db: AsyncSession) -> None:
    db.add(booking)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Partial unique index on (ride_id, rider_id) for active bookings
        raise AlreadyBookedError() from exc


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

async def submit_request(
    ride_id: str,
    rider_id: str,
    rider_name: str,
    pickup_location: str,
    db: AsyncSession,
    pickup_lat: Optional[float] = None,
    pickup_lng: Optional[float] = None,
    message: str = "",
) -> RideRequest:
    """
    Ask to join a ride. Seats are not checked here; they are checked when the
    driver accepts, and the first accepted request gets the seat.
    """
    async with atomic(db):
        await ensure_user(rider_id, rider_name, db)
        ride = await db.get(Ride, ride_id)
        if ride is None:
            raise RideNotFoundError()
        _ensure_open(ride)
        if ride.driver_id == rider_id:
            raise PermissionDeniedError("You cannot request your own ride")
        await _ensure_no_active_booking(ride.id, rider_id, db)

        existing = await db.execute(
            select(RideRequest.id).where(
                RideRequest.ride_id == ride.id,
                RideRequest.rider_id == rider_id,
                RideRequest.status == RequestStatusEnum.pending.value,
            )
        )
        if existing.first() is not None:
            raise RequestAlreadyPendingError()

        request = RideRequest(
            ride_id=ride.id,
            driver_id=ride.driver_id,
            rider_id=rider_id,
            rider_name=rider_name,
            pickup_location=pickup_location.strip(),
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            message=message.strip(),
            status=RequestStatusEnum.pending.value,
        )
        db.add(request)

    logger.info("Request %s from rider=%s for ride=%s", request.id, rider_id, ride.id)
    await notify(
        ride.driver_id,
        NotificationTypeEnum.ride_request,
        "New Ride Request",
        f"{rider_name} wants to join your ride to {ride.destination}",
        db,
        ride_id=ride.id,
        data={"rideId": ride.id, "requestId": request.id, "riderId": rider_id, "riderName": rider_name},
    )
    return request


async def list_ride_requests(
    ride_id: str, driver_id: str, db: AsyncSession, status: Optional[str] = None
) -> list[RideRequest]:
    ride = await db.get(Ride, ride_id)
    if ride is None:
        raise RideNotFoundError()
    if ride.driver_id != driver_id:
        raise PermissionDeniedError("Only the ride's driver can see its requests")
    stmt = select(RideRequest).where(RideRequest.ride_id == ride_id)
    if status:
        stmt = stmt.where(RideRequest.status == status)
    result = await db.execute(stmt.order_by(RideRequest.created_at))
    return list(result.scalars().all())


async def accept_request(request_id: str, driver_id: str, db: AsyncSession) -> Booking:
    """
    Atomically: booking created, request accepted, one seat taken.
    On "no seats" nothing is written and the request stays pending.
    A rider who has since booked the ride directly gets the request declined
    and AlreadyBookedError is raised.

    Locks are taken ride first, then request, the same order cancel_ride uses.
    """
    ride_id = await db.scalar(select(RideRequest.ride_id).where(RideRequest.id == request_id))
    if ride_id is None:
        raise RequestNotFoundError()

    booking = None
    async with atomic(db):
        ride = await lock_ride(ride_id, db)
        request = await _lock_request(request_id, db)
        if ride.driver_id != driver_id:
            raise PermissionDeniedError("Only the ride's driver can accept requests")
        accepted = ensure_transition("request", request.status, RequestStatusEnum.accepted)
        _ensure_open(ride)

        now = utcnow()
        if await _has_active_booking(ride.id, request.rider_id, db):
            request.status = ensure_transition("request", request.status, RequestStatusEnum.declined)
            request.decline_reason = ALREADY_BOOKED_REASON
            request.responded_at = now
        else:
            if ride.available_seats <= 0 or not await take_seat(ride.id, db):
                raise NoSeatsAvailableError()

            status = (
                BookingStatusEnum.in_progress
                if ride.status == RideStatusEnum.active.value
                else BookingStatusEnum.scheduled
            )
            booking = Booking(
                ride_id=ride.id,
                request_id=request.id,
                rider_id=request.rider_id,
                rider_name=request.rider_name,
                driver_id=ride.driver_id,
                driver_name=ride.driver_name,
                pickup_location=request.pickup_location,
                destination=ride.destination,
                departure_time=ride.departure_time,
                estimated_cost=ride.price,
                status=status.value,
                started_at=now if status == BookingStatusEnum.in_progress else None,
                rated=False,
            )
            await _insert_booking(booking, db)
            request.status = accepted
            request.responded_at = now

    if booking is None:
        logger.info("Request %s declined: rider=%s already booked ride=%s", request.id, request.rider_id, ride.id)
        await notify(
            request.rider_id,
            NotificationTypeEnum.ride_declined,
            "Ride Request Declined",
            f"Your request for the ride to {ride.destination} was closed: you already have a booking on it",
            db,
            ride_id=ride.id,
            data={"rideId": ride.id, "reason": ALREADY_BOOKED_REASON},
        )
        raise AlreadyBookedError()

    await db.refresh(ride)
    logger.info(
        "Request %s accepted: booking=%s ride=%s seats_left=%d",
        request.id, booking.id, ride.id, ride.available_seats,
    )
    await notify(
        request.rider_id,
        NotificationTypeEnum.ride_accepted,
        "Ride Request Accepted!",
        f"{ride.driver_name} accepted your request to join the ride to {ride.destination}",
        db,
        ride_id=ride.id,
        booking_id=booking.id,
        data={"rideId": ride.id, "bookingId": booking.id, "driverId": ride.driver_id, "driverName": ride.driver_name},
    )
    return booking


async def decline_request(
    request_id: str, driver_id: str, db: AsyncSession, reason: Optional[str] = None
) -> RideRequest:
    async with atomic(db):
        request = await _lock_request(request_id, db)
        if request.driver_id != driver_id:
            raise PermissionDeniedError("Only the ride's driver can decline requests")
        request.status = ensure_transition("request", request.status, RequestStatusEnum.declined)
        request.decline_reason = reason or "Driver declined"
        request.responded_at = utcnow()

    ride = await db.get(Ride, request.ride_id)
    logger.info("Request %s declined by driver=%s", request.id, driver_id)
    driver_name = ride.driver_name if ride else "The driver"
    await notify(
        request.rider_id,
        NotificationTypeEnum.ride_declined,
        "Ride Request Declined",
        f"{driver_name} declined your request to join the ride" + (f": {reason}" if reason else ""),
        db,
        ride_id=request.ride_id,
        data={"rideId": request.ride_id, "reason": request.decline_reason},
    )
    return request


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------

async def direct_book(ride_id: str, rider_id: str, rider_name: str, db: AsyncSession) -> Booking:
    """
    Rider self-service booking without driver approval.
    Every check and write happens in one transaction.
    """
    async with atomic(db):
        await ensure_user(rider_id, rider_name, db)
        ride = await lock_ride(ride_id, db)
        _ensure_open(ride)
        if ride.driver_id == rider_id:
            raise PermissionDeniedError("You cannot book your own ride")
        if ride.available_seats <= 0:
            raise NoSeatsAvailableError()
        await _ensure_no_active_booking(ride.id, rider_id, db)

        if not await take_seat(ride.id, db):
            raise NoSeatsAvailableError()

        booking = Booking(
            ride_id=ride.id,
            rider_id=rider_id,
            rider_name=rider_name,
            driver_id=ride.driver_id,
            driver_name=ride.driver_name,
            pickup_location=ride.pickup_location,
            destination=ride.destination,
            departure_time=ride.departure_time,
            estimated_cost=ride.price,
            status=BookingStatusEnum.confirmed.value,
            rated=False,
        )
        await _insert_booking(booking, db)

    logger.info("Booking %s confirmed for rider=%s on ride=%s", booking.id, rider_id, ride.id)
    return booking


async def get_booking(booking_id: str, user_id: str, db: AsyncSession) -> Booking:
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFoundError()
    if user_id not in (booking.rider_id, booking.driver_id):
        raise PermissionDeniedError("Not your booking")
    return booking


async def list_rider_bookings(rider_id: str, db: AsyncSession) -> list[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.rider_id == rider_id).order_by(Booking.created_at.desc())
    )
    return list(result.scalars().all())


async def cancel_booking(booking_id: str, actor_id: str, db: AsyncSession, actor_name: str = "") -> Booking:
    """
    Rider or driver cancels a booking that has not started yet.
    The seat goes back to the ride in the same transaction.
    """
    async with atomic(db):
        booking = (
            await db.execute(
                select(Booking)
                .where(Booking.id == booking_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError()
        if actor_id not in (booking.rider_id, booking.driver_id):
            raise PermissionDeniedError("Unauthorized to cancel this booking")
        if booking.status not in SEAT_HOLDING_STATUSES:
            raise InvalidTransitionError("booking", booking.status, BookingStatusEnum.cancelled.value)

        ride = (
            await db.execute(
                select(Ride)
                .where(Ride.id == booking.ride_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        booking.status = ensure_transition("booking", booking.status, BookingStatusEnum.cancelled)
        booking.cancelled_at = utcnow()
        booking.cancelled_by = actor_id

        released = False
        if ride is not None:
            released = await release_seat(ride.id, db)

    logger.info(
        "Booking %s cancelled by user=%s (seat released=%s)", booking.id, actor_id, released
    )

    by_rider = actor_id == booking.rider_id
    recipient = booking.driver_id if by_rider else booking.rider_id
    who = actor_name or (booking.rider_name if by_rider else booking.driver_name)
    await notify(
        recipient,
        NotificationTypeEnum.booking_cancelled,
        "Booking Cancelled",
        f"{who} cancelled the booking for the ride to {booking.destination}",
        db,
        ride_id=booking.ride_id,
        booking_id=booking.id,
        data={"rideId": booking.ride_id, "bookingId": booking.id, "cancelledBy": actor_id},
    )
    return booking
