"""
Rides router: posting, search, the driver lifecycle and the per-ride
request/booking endpoints under /v1/rides.
"""
import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.config import get_settings
from carpool.database import get_db
from carpool.middleware.auth import CurrentUser, get_current_user
from carpool.middleware.idempotency import check_idempotency, store_idempotency_result
from carpool.redis_client import cache_delete, cache_get, cache_set, get_redis, ride_cache_key
from carpool.schemas.schemas import (
    BookingResponse, CostSplitResponse, FanoutResponse, PostEligibilityResponse,
    RequestStatusEnum, RideCompletionResponse, RideCreateRequest, RideRequestCreate,
    RideRequestResponse, RideResponse, RiderCost, VehicleResponse,
)
from carpool.services import bookings as booking_service
from carpool.services import rides as ride_service
from carpool.services.rides import FanoutResult

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


async def invalidate_ride_cache(ride_id: str) -> None:
    redis = await get_redis()
    await cache_delete(redis, ride_cache_key(ride_id))


def _fanout_response(result: FanoutResult) -> FanoutResponse:
    return FanoutResponse(
        ride_id=result.ride.id,
        status=result.ride.status,
        transitioned_booking_ids=result.transitioned,
        failed_booking_ids=result.failed,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideResponse)
async def create_ride(
    payload: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    route = payload.route
    ride = await ride_service.create_ride(
        user.id,
        user.name,
        payload.vehicle_id,
        route.pickup_location,
        route.destination,
        payload.departure_time,
        payload.seats,
        db,
        pickup_lat=route.pickup_lat,
        pickup_lng=route.pickup_lng,
        dest_lat=route.dest_lat,
        dest_lng=route.dest_lng,
        route_polyline=route.polyline,
        distance_km=route.distance_km,
        duration_minutes=route.duration_minutes,
        is_scheduled=payload.is_scheduled,
        scheduled_time=payload.scheduled_time,
        is_free=payload.is_free,
        price=payload.price,
        is_female_only=payload.is_female_only,
        notes=payload.notes,
    )
    return RideResponse.model_validate(ride)


@router.get("/eligibility", response_model=PostEligibilityResponse)
async def post_eligibility(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Whether the caller can post a ride right now (has a vehicle, no open ride)."""
    vehicles, open_ride = await ride_service.check_can_post(user.id, db)
    return PostEligibilityResponse(
        can_post=bool(vehicles) and open_ride is None,
        vehicles=[VehicleResponse.model_validate(v) for v in vehicles],
        open_ride_id=open_ride.id if open_ride else None,
    )


@router.get("/search", response_model=list[RideResponse])
async def search_rides(
    pickup: str = Query(..., min_length=1),
    destination: str = Query(..., min_length=1),
    departure_time: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    rides = await ride_service.search_rides(pickup, destination, user.id, db, departure_time=departure_time)
    return [RideResponse.model_validate(r) for r in rides]


@router.get("/mine", response_model=list[RideResponse])
async def my_rides(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    rides = await ride_service.list_driver_rides(user.id, db)
    return [RideResponse.model_validate(r) for r in rides]


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    redis = await get_redis()

    # Cache-aside: check Redis first
    cache_key = ride_cache_key(ride_id)
    cached = await cache_get(redis, cache_key)
    if cached:
        return RideResponse(**json.loads(cached))

    ride = await ride_service.get_ride(ride_id, db)
    resp = RideResponse.model_validate(ride)
    await cache_set(redis, cache_key, resp.model_dump_json(), ttl=settings.ride_cache_ttl_seconds)
    return resp


@router.post("/{ride_id}/start", response_model=FanoutResponse)
async def start_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    result = await ride_service.start_ride(ride_id, user.id, db)
    await invalidate_ride_cache(ride_id)
    return _fanout_response(result)


@router.post("/{ride_id}/complete", response_model=RideCompletionResponse)
async def complete_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    summary = await ride_service.complete_ride(ride_id, user.id, db)
    await invalidate_ride_cache(ride_id)
    return RideCompletionResponse(
        ride_id=summary.ride.id,
        riders=[RiderCost(**r) for r in summary.riders],
        total_cost=summary.total_cost,
        currency=summary.currency,
        failed_booking_ids=summary.failed,
    )


@router.post("/{ride_id}/cancel", response_model=FanoutResponse)
async def cancel_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    result = await ride_service.cancel_ride(ride_id, user.id, db)
    await invalidate_ride_cache(ride_id)
    return _fanout_response(result)


@router.get("/{ride_id}/cost-split", response_model=CostSplitResponse)
async def cost_split(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    ride = await ride_service.get_ride(ride_id, db)
    return CostSplitResponse(**ride_service.cost_split(ride))


# ---------------------------------------------------------------------------
# Requests & bookings on a ride
# ---------------------------------------------------------------------------

@router.post("/{ride_id}/requests", status_code=status.HTTP_201_CREATED, response_model=RideRequestResponse)
async def submit_request(
    ride_id: str,
    payload: RideRequestCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    request = await booking_service.submit_request(
        ride_id,
        user.id,
        user.name,
        payload.pickup_location,
        db,
        pickup_lat=payload.pickup_lat,
        pickup_lng=payload.pickup_lng,
        message=payload.message,
    )
    return RideRequestResponse.model_validate(request)


@router.get("/{ride_id}/requests", response_model=list[RideRequestResponse])
async def list_requests(
    ride_id: str,
    status_filter: Optional[RequestStatusEnum] = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    requests = await booking_service.list_ride_requests(
        ride_id, user.id, db, status=status_filter.value if status_filter else None
    )
    return [RideRequestResponse.model_validate(r) for r in requests]


@router.post("/{ride_id}/bookings", status_code=status.HTTP_201_CREATED, response_model=BookingResponse)
async def direct_book(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    # 1. Replay a previous response for the same key
    cached = await check_idempotency(user.id, idempotency_key)
    if cached:
        return cached

    # 2. Book (seat taken atomically with the booking insert)
    booking = await booking_service.direct_book(ride_id, user.id, user.name, db)
    await invalidate_ride_cache(ride_id)

    # 3. Remember the response
    resp = BookingResponse.model_validate(booking)
    await store_idempotency_result(user.id, idempotency_key, status.HTTP_201_CREATED, resp.model_dump())
    return resp
