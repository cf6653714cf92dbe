"""
Integration tests for the full ride lifecycle through the HTTP API.
Uses pytest-asyncio + HTTPX async client against the ASGI app.
"""
import json
from unittest.mock import AsyncMock

import pytest

from conftest import auth_headers, in_hours

DRIVER = auth_headers("driver-1", "Dana")
RIDER = auth_headers("rider-1", "Ali")
OTHER_RIDER = auth_headers("rider-2", "Sara")


async def post_ride(client, seats=2, price=3.0, **extra):
    resp = await client.post("/v1/vehicles", headers=DRIVER, json={
        "name": "Corolla", "model": "Toyota Corolla", "color": "Silver",
        "plate_number": "12345", "seats": 4,
    })
    assert resp.status_code == 201
    body = {
        "vehicle_id": resp.json()["id"],
        "route": {"pickup_location": "Manama", "destination": "Riffa", "distance_km": 18.5},
        "departure_time": in_hours(1).isoformat(),
        "is_scheduled": True,
        "seats": seats,
        "price": price,
    }
    body.update(extra)
    resp = await client.post("/v1/rides", headers=DRIVER, json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
class TestRideAPI:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_create_ride_missing_auth(self, client):
        resp = await client.post("/v1/rides", json={})
        assert resp.status_code == 401

    async def test_create_ride_invalid_seats(self, client):
        resp = await client.post("/v1/rides", headers=DRIVER, json={
            "vehicle_id": "v1",
            "route": {"pickup_location": "Manama", "destination": "Riffa"},
            "departure_time": in_hours(1).isoformat(),
            "seats": 0,
        })
        assert resp.status_code == 422

    async def test_get_nonexistent_ride(self, client):
        resp = await client.get("/v1/rides/nonexistent-uuid", headers=RIDER)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Ride not found."

    async def test_second_open_ride_conflicts(self, client):
        ride = await post_ride(client)
        resp = await client.post("/v1/rides", headers=DRIVER, json={
            "vehicle_id": ride["vehicle_id"],
            "route": {"pickup_location": "Isa Town", "destination": "Seef"},
            "departure_time": in_hours(3).isoformat(),
            "seats": 1,
        })
        assert resp.status_code == 409

        resp = await client.get("/v1/rides/eligibility", headers=DRIVER)
        assert resp.json()["can_post"] is False
        assert resp.json()["open_ride_id"] == ride["id"]

    async def test_full_lifecycle(self, client):
        ride = await post_ride(client, seats=2, price=3.0)
        assert ride["status"] == "scheduled"
        assert ride["available_seats"] == 2

        # Rider finds the ride and asks to join
        resp = await client.get("/v1/rides/search", headers=RIDER, params={"pickup": "manama", "destination": "riffa"})
        assert [r["id"] for r in resp.json()] == [ride["id"]]

        resp = await client.post(f"/v1/rides/{ride['id']}/requests", headers=RIDER, json={"pickup_location": "Seef"})
        assert resp.status_code == 201
        request_id = resp.json()["id"]

        resp = await client.get(f"/v1/rides/{ride['id']}/requests", headers=DRIVER, params={"status": "pending"})
        assert [r["id"] for r in resp.json()] == [request_id]

        resp = await client.post(f"/v1/requests/{request_id}/accept", headers=DRIVER)
        assert resp.status_code == 200
        booking = resp.json()
        assert booking["status"] == "scheduled"

        # Second rider books directly
        resp = await client.post(f"/v1/rides/{ride['id']}/bookings", headers=OTHER_RIDER)
        assert resp.status_code == 201

        resp = await client.get(f"/v1/rides/{ride['id']}", headers=RIDER)
        assert resp.json()["available_seats"] == 0

        resp = await client.get(f"/v1/rides/{ride['id']}/cost-split", headers=RIDER)
        assert resp.json() == {"total_cost": 3.0, "cost_per_person": 1.0, "number_of_riders": 2, "currency": "BHD"}

        # Driver runs the ride
        resp = await client.post(f"/v1/rides/{ride['id']}/start", headers=DRIVER)
        assert resp.json()["status"] == "active"
        assert len(resp.json()["transitioned_booking_ids"]) == 2

        resp = await client.post(f"/v1/rides/{ride['id']}/start", headers=DRIVER)
        assert resp.json()["transitioned_booking_ids"] == []

        resp = await client.post(f"/v1/rides/{ride['id']}/complete", headers=DRIVER)
        summary = resp.json()
        assert summary["total_cost"] == 6.0
        assert summary["currency"] == "BHD"
        assert len(summary["riders"]) == 2

        # Rider rates the driver once
        rating = {"rated_user_id": "driver-1", "rating": 5}
        resp = await client.post(f"/v1/bookings/{booking['id']}/ratings", headers=RIDER, json=rating)
        assert resp.status_code == 201
        assert resp.json()["average_rating"] == 5.0

        resp = await client.post(f"/v1/bookings/{booking['id']}/ratings", headers=RIDER, json=rating)
        assert resp.status_code == 409

        resp = await client.get("/v1/users/driver-1/stats", headers=RIDER)
        assert resp.json()["total_ratings"] == 1

        # Inbox
        resp = await client.get("/v1/notifications", headers=RIDER)
        types = {n["type"] for n in resp.json()}
        assert {"ride_accepted", "ride_started", "ride_completed"} <= types

        resp = await client.post("/v1/notifications/read-all", headers=RIDER)
        assert resp.json()["updated"] == len(types)
        resp = await client.get("/v1/notifications", headers=RIDER, params={"unread_only": True})
        assert resp.json() == []

    async def test_low_rating_needs_feedback(self, client):
        resp = await client.post("/v1/bookings/any/ratings", headers=RIDER, json={
            "rated_user_id": "driver-1", "rating": 2,
        })
        assert resp.status_code == 422

    async def test_cancel_booking_returns_seat(self, client):
        ride = await post_ride(client, seats=1)
        resp = await client.post(f"/v1/rides/{ride['id']}/bookings", headers=RIDER)
        booking_id = resp.json()["id"]

        resp = await client.post(f"/v1/rides/{ride['id']}/bookings", headers=OTHER_RIDER)
        assert resp.status_code == 409
        assert resp.json()["detail"] == "No seats available."

        resp = await client.post(f"/v1/bookings/{booking_id}/cancel", headers=RIDER)
        assert resp.json()["status"] == "cancelled"

        resp = await client.get(f"/v1/rides/{ride['id']}", headers=RIDER)
        assert resp.json()["available_seats"] == 1

    async def test_driver_cancels_ride(self, client):
        ride = await post_ride(client)
        await client.post(f"/v1/rides/{ride['id']}/bookings", headers=RIDER)

        resp = await client.post(f"/v1/rides/{ride['id']}/cancel", headers=DRIVER)
        assert resp.json()["status"] == "cancelled"

        resp = await client.get("/v1/bookings/mine", headers=RIDER)
        assert [b["status"] for b in resp.json()] == ["cancelled"]


@pytest.mark.asyncio
class TestProfileAPI:
    async def test_me_is_created_on_first_call(self, client):
        resp = await client.get("/v1/users/me", headers=RIDER)
        assert resp.status_code == 200
        assert resp.json()["name"] == "Ali"
        assert resp.json()["average_rating"] == 0.0

    async def test_update_profile_and_documents(self, client):
        resp = await client.patch("/v1/users/me", headers=RIDER, json={"phone": "+97333334444", "gender": "female"})
        assert resp.json()["gender"] == "female"

        resp = await client.put("/v1/users/me/documents", headers=RIDER, json={
            "license_number": "LIC-001", "cpr_number": "900101234",
        })
        assert resp.json()["license_number"] == "LIC-001"

    async def test_vehicle_crud(self, client):
        resp = await client.post("/v1/vehicles", headers=DRIVER, json={
            "name": "Civic", "model": "Honda Civic", "plate_number": "ab 12", "seats": 4,
        })
        vehicle_id = resp.json()["id"]
        assert resp.json()["plate_number"] == "AB 12"

        resp = await client.patch(f"/v1/vehicles/{vehicle_id}", headers=DRIVER, json={"color": "Red"})
        assert resp.json()["color"] == "Red"

        resp = await client.patch(f"/v1/vehicles/{vehicle_id}", headers=RIDER, json={"color": "Blue"})
        assert resp.status_code == 404

        resp = await client.delete(f"/v1/vehicles/{vehicle_id}", headers=DRIVER)
        assert resp.status_code == 204
        resp = await client.get("/v1/vehicles", headers=DRIVER)
        assert resp.json() == []


@pytest.mark.asyncio
class TestIdempotency:
    async def test_booking_response_is_stored(self, client, fake_redis):
        ride = await post_ride(client)
        headers = {**RIDER, "Idempotency-Key": "book-1"}

        resp = await client.post(f"/v1/rides/{ride['id']}/bookings", headers=headers)

        assert resp.status_code == 201
        key, ttl, payload = fake_redis.setex.await_args.args
        assert key == "idempotency:rider-1:book-1"
        assert ttl == 86400
        assert json.loads(payload)["body"]["id"] == resp.json()["id"]

    async def test_repeat_key_replays_without_booking(self, client, fake_redis):
        ride = await post_ride(client)
        fake_redis.get = AsyncMock(return_value=json.dumps({"status_code": 201, "body": {"id": "earlier"}}))

        resp = await client.post(
            f"/v1/rides/{ride['id']}/bookings", headers={**RIDER, "Idempotency-Key": "book-1"}
        )

        assert resp.status_code == 201
        assert resp.json() == {"id": "earlier"}
        assert resp.headers["X-Idempotency-Replay"] == "true"

        fake_redis.get = AsyncMock(return_value=None)
        resp = await client.get(f"/v1/rides/{ride['id']}", headers=RIDER)
        assert resp.json()["available_seats"] == 2
