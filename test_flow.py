import httpx
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from carpool.middleware.auth import create_access_token


BASE_URL = "http://localhost:8000"


async def safe_request(resp: httpx.Response, step: str):
    """Print response + fail loudly if error"""
    print(f"{step}: {resp.status_code}")

    try:
        print(resp.json())
    except Exception:
        print(resp.text)

    resp.raise_for_status()


async def main():

    async with httpx.AsyncClient(timeout=30.0) as client:

        # ---------------------------------------------------
        print("\n1️⃣ Checking Health...")
        resp = await client.get(f"{BASE_URL}/health")
        await safe_request(resp, "Health")

        # ---------------------------------------------------
        print("\n2️⃣ Generating Tokens...")

        driver_id = f"driver-{uuid.uuid4()}"
        rider_id = f"rider-{uuid.uuid4()}"
        driver_headers = {"Authorization": f"Bearer {create_access_token({'sub': driver_id, 'name': 'Test Driver'})}"}
        rider_headers = {"Authorization": f"Bearer {create_access_token({'sub': rider_id, 'name': 'Test Rider'})}"}

        # ---------------------------------------------------
        print("\n3️⃣ Registering Vehicle...")
        resp = await client.post(
            f"{BASE_URL}/v1/vehicles",
            json={"name": "Corolla", "model": "Toyota Corolla", "color": "White", "plate_number": "54321", "seats": 4},
            headers=driver_headers,
        )
        await safe_request(resp, "Register Vehicle")
        vehicle_id = resp.json()["id"]

        # ---------------------------------------------------
        print("\n4️⃣ Driver posts ride...")
        departure = datetime.now(timezone.utc) + timedelta(hours=1)
        resp = await client.post(
            f"{BASE_URL}/v1/rides",
            json={
                "vehicle_id": vehicle_id,
                "route": {"pickup_location": "Manama", "destination": "Riffa"},
                "departure_time": departure.isoformat(),
                "is_scheduled": True,
                "seats": 3,
                "price": 2.5,
            },
            headers=driver_headers,
        )
        await safe_request(resp, "Post Ride")
        ride_id = resp.json()["id"]

        # ---------------------------------------------------
        print("\n5️⃣ Rider searches and books...")
        resp = await client.get(
            f"{BASE_URL}/v1/rides/search",
            params={"pickup": "Manama", "destination": "Riffa"},
            headers=rider_headers,
        )
        await safe_request(resp, "Search")

        resp = await client.post(
            f"{BASE_URL}/v1/rides/{ride_id}/bookings",
            headers={**rider_headers, "Idempotency-Key": str(uuid.uuid4())},
        )
        await safe_request(resp, "Book Seat")
        booking_id = resp.json()["id"]

        # ---------------------------------------------------
        print("\n6️⃣ Driver starts ride...")
        resp = await client.post(f"{BASE_URL}/v1/rides/{ride_id}/start", headers=driver_headers)
        await safe_request(resp, "Start Ride")

        # ---------------------------------------------------
        print("\n7️⃣ Driver completes ride...")
        resp = await client.post(f"{BASE_URL}/v1/rides/{ride_id}/complete", headers=driver_headers)
        await safe_request(resp, "Complete Ride")

        # ---------------------------------------------------
        print("\n8️⃣ Rider rates driver...")
        resp = await client.post(
            f"{BASE_URL}/v1/bookings/{booking_id}/ratings",
            json={"rated_user_id": driver_id, "rating": 5},
            headers=rider_headers,
        )
        await safe_request(resp, "Rate Driver")

        # ---------------------------------------------------
        print("\n9️⃣ Rider checks inbox...")
        resp = await client.get(f"{BASE_URL}/v1/notifications", headers=rider_headers)
        await safe_request(resp, "Notifications")

        print("\n✅ FLOW COMPLETED SUCCESSFULLY")


if __name__ == "__main__":
    asyncio.run(main())
