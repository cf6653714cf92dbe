"""
Integration tests for posting rides, the driver lifecycle and search.
Runs the service layer against a per-test SQLite database.
"""
import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from carpool.models.booking import Booking
from carpool.models.notification import Notification
from carpool.models.ride import Ride
from carpool.models.ride_request import RideRequest
from carpool.services.bookings import cancel_booking, direct_book, submit_request
from carpool.services.exceptions import (
    ActiveRideExistsError, InvalidTransitionError, PermissionDeniedError,
    ValidationError, VehicleNotFoundError,
)
from carpool.services.rides import (
    cancel_ride, check_can_post, complete_ride, create_ride, list_driver_rides,
    search_rides, start_ride,
)
from carpool.services.users import update_profile

from conftest import in_hours


async def notifications_for(db, user_id, type_=None):
    stmt = select(Notification).where(Notification.user_id == user_id)
    if type_:
        stmt = stmt.where(Notification.type == type_)
    return list((await db.execute(stmt)).scalars().all())


async def bookings_of(db, ride_id):
    result = await db.execute(
        select(Booking).where(Booking.ride_id == ride_id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def break_first_booking_update(db, monkeypatch):
    """The first UPDATE on bookings fails as if the connection dropped; later ones go through."""
    execute = db.execute
    broken = []

    async def flaky_execute(statement, *args, **kwargs):
        if not broken and statement.is_update and statement.table.name == "bookings":
            broken.append(statement)
            raise OperationalError("UPDATE bookings", {}, Exception("disk I/O error"))
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", flaky_execute)
    return broken


@pytest.mark.asyncio
class TestCreateRide:
    async def test_scheduled_ride_starts_with_all_seats_free(self, db, make_ride):
        ride = await make_ride(seats=3)
        assert ride.status == "scheduled"
        assert ride.total_seats == ride.available_seats == 3
        assert ride.vehicle_plate == "ABC 123"
        assert ride.started_at is None

    async def test_immediate_ride_is_active(self, db, make_ride):
        ride = await make_ride(is_scheduled=False)
        assert ride.status == "active"
        assert ride.started_at is not None

    async def test_second_open_ride_is_rejected(self, db, make_ride):
        first = await make_ride()
        with pytest.raises(ActiveRideExistsError):
            await create_ride("driver-1", "Dana", first.vehicle_id, "A", "B", in_hours(2), 1, db)

    async def test_can_post_again_after_completing(self, db, make_ride):
        first = await make_ride()
        await complete_ride(first.id, "driver-1", db)
        second = await create_ride("driver-1", "Dana", first.vehicle_id, "A", "B", in_hours(2), 1, db)
        assert second.status == "active"
        assert len(await list_driver_rides("driver-1", db)) == 2

    async def test_seats_cannot_exceed_vehicle(self, db, make_driver):
        vehicle = await make_driver(seats=2)
        with pytest.raises(ValidationError):
            await create_ride("driver-1", "Dana", vehicle.id, "A", "B", in_hours(1), 3, db)

    async def test_seats_must_be_positive(self, db, make_driver):
        vehicle = await make_driver()
        with pytest.raises(ValidationError):
            await create_ride("driver-1", "Dana", vehicle.id, "A", "B", in_hours(1), 0, db)

    async def test_unknown_vehicle(self, db, make_driver):
        await make_driver()
        with pytest.raises(VehicleNotFoundError):
            await create_ride("driver-1", "Dana", "no-such-vehicle", "A", "B", in_hours(1), 1, db)

    async def test_female_only_needs_female_driver(self, db, make_driver):
        vehicle = await make_driver(gender="male")
        with pytest.raises(ValidationError):
            await create_ride("driver-1", "Dana", vehicle.id, "A", "B", in_hours(1), 1, db, is_female_only=True)

    async def test_free_ride_has_zero_price(self, db, make_ride):
        ride = await make_ride(price=4.0, is_free=True)
        assert ride.price == 0.0


@pytest.mark.asyncio
class TestCheckCanPost:
    async def test_no_vehicle(self, db):
        vehicles, open_ride = await check_can_post("nobody", db)
        assert vehicles == []
        assert open_ride is None

    async def test_open_ride_blocks(self, db, make_ride):
        ride = await make_ride()
        vehicles, open_ride = await check_can_post("driver-1", db)
        assert len(vehicles) == 1
        assert open_ride.id == ride.id


@pytest.mark.asyncio
class TestStartRide:
    async def test_start_moves_bookings_in_progress(self, db, make_ride):
        ride = await make_ride(seats=2)
        b1 = await direct_book(ride.id, "rider-1", "Ali", db)
        b2 = await direct_book(ride.id, "rider-2", "Sara", db)

        result = await start_ride(ride.id, "driver-1", db)

        assert result.ride.status == "active"
        assert set(result.transitioned) == {b1.id, b2.id}
        assert result.failed == []
        assert {b.status for b in await bookings_of(db, ride.id)} == {"in_progress"}
        assert len(await notifications_for(db, "rider-1", "ride_started")) == 1

    async def test_start_twice_touches_nothing(self, db, make_ride):
        ride = await make_ride()
        await direct_book(ride.id, "rider-1", "Ali", db)
        await start_ride(ride.id, "driver-1", db)

        again = await start_ride(ride.id, "driver-1", db)

        assert again.transitioned == []
        assert len(await notifications_for(db, "rider-1", "ride_started")) == 1

    async def test_restart_repairs_stragglers(self, db, make_ride):
        ride = await make_ride()
        booking = await direct_book(ride.id, "rider-1", "Ali", db)
        # Ride flipped but the booking was never moved
        await db.execute(update(Ride).where(Ride.id == ride.id).values(status="active"))
        await db.commit()

        result = await start_ride(ride.id, "driver-1", db)

        assert result.transitioned == [booking.id]
        await db.refresh(booking)
        assert booking.status == "in_progress"

    async def test_one_failed_booking_does_not_stop_the_others(self, db, make_ride, monkeypatch):
        ride = await make_ride(seats=2)
        ride_id = ride.id
        first_id = (await direct_book(ride_id, "rider-1", "Ali", db)).id
        second_id = (await direct_book(ride_id, "rider-2", "Sara", db)).id
        broken = break_first_booking_update(db, monkeypatch)

        result = await start_ride(ride_id, "driver-1", db)

        assert len(broken) == 1
        assert result.failed == [first_id]
        assert result.transitioned == [second_id]
        assert result.ride.status == "active"
        assert {b.id: b.status for b in await bookings_of(db, ride_id)} == {
            first_id: "confirmed", second_id: "in_progress",
        }
        assert await notifications_for(db, "rider-1", "ride_started") == []
        assert len(await notifications_for(db, "rider-2", "ride_started")) == 1

        # Starting again picks up the booking that failed
        again = await start_ride(ride_id, "driver-1", db)
        assert again.transitioned == [first_id]
        assert again.failed == []

    async def test_only_driver_can_start(self, db, make_ride):
        ride = await make_ride()
        with pytest.raises(PermissionDeniedError):
            await start_ride(ride.id, "rider-1", db)

    async def test_cannot_start_cancelled_ride(self, db, make_ride):
        ride = await make_ride()
        await cancel_ride(ride.id, "driver-1", db)
        with pytest.raises(InvalidTransitionError):
            await start_ride(ride.id, "driver-1", db)


@pytest.mark.asyncio
class TestCompleteRide:
    async def test_total_is_sum_of_rider_costs(self, db, make_ride):
        ride = await make_ride(seats=2, price=3.0)
        first = await direct_book(ride.id, "rider-1", "Ali", db)
        await db.execute(update(Ride).where(Ride.id == ride.id).values(price=5.0))
        await db.commit()
        second = await direct_book(ride.id, "rider-2", "Sara", db)
        await start_ride(ride.id, "driver-1", db)

        summary = await complete_ride(ride.id, "driver-1", db)

        assert summary.total_cost == 8.0
        assert summary.currency == "BHD"
        assert {r["booking_id"]: r["cost"] for r in summary.riders} == {first.id: 3.0, second.id: 5.0}
        assert {b.status for b in await bookings_of(db, ride.id)} == {"completed"}

        sent = await notifications_for(db, "rider-1", "ride_completed")
        sent += await notifications_for(db, "rider-2", "ride_completed")
        assert len(sent) == 2
        assert {n.booking_id: n.data["cost"] for n in sent} == {first.id: 3.0, second.id: 5.0}

    async def test_one_failed_booking_is_left_out_of_the_summary(self, db, make_ride, monkeypatch):
        ride = await make_ride(seats=2)
        ride_id = ride.id
        first_id = (await direct_book(ride_id, "rider-1", "Ali", db)).id
        second_id = (await direct_book(ride_id, "rider-2", "Sara", db)).id
        break_first_booking_update(db, monkeypatch)

        summary = await complete_ride(ride_id, "driver-1", db)

        assert summary.failed == [first_id]
        assert summary.ride.status == "completed"
        assert [r["booking_id"] for r in summary.riders] == [second_id]
        assert summary.total_cost == 2.5
        assert await notifications_for(db, "rider-1", "ride_completed") == []

        again = await complete_ride(ride_id, "driver-1", db)
        assert again.failed == []
        assert again.total_cost == 5.0

    async def test_scheduled_ride_can_complete_directly(self, db, make_ride):
        ride = await make_ride()
        booking = await direct_book(ride.id, "rider-1", "Ali", db)
        summary = await complete_ride(ride.id, "driver-1", db)
        assert summary.ride.status == "completed"
        await db.refresh(booking)
        assert booking.status == "completed"

    async def test_complete_twice_sends_nothing_new(self, db, make_ride):
        ride = await make_ride()
        await direct_book(ride.id, "rider-1", "Ali", db)
        await complete_ride(ride.id, "driver-1", db)
        again = await complete_ride(ride.id, "driver-1", db)
        assert again.total_cost == 2.5
        assert len(await notifications_for(db, "rider-1", "ride_completed")) == 1

    async def test_cancelled_bookings_are_not_billed(self, db, make_ride):
        ride = await make_ride(seats=2)
        keep = await direct_book(ride.id, "rider-1", "Ali", db)
        drop = await direct_book(ride.id, "rider-2", "Sara", db)
        await cancel_booking(drop.id, "rider-2", db)

        summary = await complete_ride(ride.id, "driver-1", db)

        assert [r["booking_id"] for r in summary.riders] == [keep.id]
        assert summary.total_cost == 2.5


@pytest.mark.asyncio
class TestCancelRide:
    async def test_cancels_bookings_and_declines_requests(self, db, make_ride):
        ride = await make_ride(seats=2)
        booking = await direct_book(ride.id, "rider-1", "Ali", db)
        request = await submit_request(ride.id, "rider-2", "Sara", "Manama", db)

        result = await cancel_ride(ride.id, "driver-1", db)

        assert result.ride.status == "cancelled"
        assert result.transitioned == [booking.id]
        await db.refresh(booking)
        assert booking.status == "cancelled"
        assert booking.cancelled_by == "driver-1"
        pending = await db.get(RideRequest, request.id, populate_existing=True)
        assert pending.status == "declined"
        assert len(await notifications_for(db, "rider-1", "ride_cancelled")) == 1
        assert len(await notifications_for(db, "rider-2", "ride_cancelled")) == 1

    async def test_one_failed_booking_still_notifies_the_others(self, db, make_ride, monkeypatch):
        ride = await make_ride(seats=2)
        ride_id = ride.id
        first_id = (await direct_book(ride_id, "rider-1", "Ali", db)).id
        second_id = (await direct_book(ride_id, "rider-2", "Sara", db)).id
        break_first_booking_update(db, monkeypatch)

        result = await cancel_ride(ride_id, "driver-1", db)

        assert result.failed == [first_id]
        assert result.transitioned == [second_id]
        assert result.ride.status == "cancelled"
        assert len(await notifications_for(db, "rider-2", "ride_cancelled")) == 1

    async def test_cannot_cancel_completed_ride(self, db, make_ride):
        ride = await make_ride()
        await complete_ride(ride.id, "driver-1", db)
        with pytest.raises(InvalidTransitionError):
            await cancel_ride(ride.id, "driver-1", db)


@pytest.mark.asyncio
class TestSearchRides:
    async def test_matches_text_and_excludes_own_ride(self, db, make_ride):
        ride = await make_ride(pickup_location="Manama Souq", destination="Riffa")
        found = await search_rides("manama", "riffa", "rider-1", db)
        assert [r.id for r in found] == [ride.id]
        assert await search_rides("manama", "riffa", "driver-1", db) == []

    async def test_no_match(self, db, make_ride):
        await make_ride()
        assert await search_rides("Muharraq", "Riffa", "rider-1", db) == []

    async def test_full_rides_are_hidden(self, db, make_ride):
        ride = await make_ride(seats=1)
        await direct_book(ride.id, "rider-1", "Ali", db)
        assert await search_rides("Manama", "Riffa", "rider-2", db) == []

    async def test_female_only_hidden_from_other_riders(self, db, make_ride):
        await make_ride(is_female_only=True)
        assert await search_rides("Manama", "Riffa", "rider-1", db) == []
        await update_profile("rider-2", db, name="Sara", gender="female")
        assert len(await search_rides("Manama", "Riffa", "rider-2", db)) == 1

    async def test_time_window_and_ordering(self, db, make_ride):
        near = await make_ride(departure_time=in_hours(1))
        far = await make_ride(driver_id="driver-2", name="Omar", departure_time=in_hours(3))

        found = await search_rides("Manama", "Riffa", "rider-1", db, departure_time=in_hours(1.5))
        assert [r.id for r in found] == [near.id, far.id]

        found = await search_rides("Manama", "Riffa", "rider-1", db, departure_time=in_hours(0))
        assert [r.id for r in found] == [near.id]
