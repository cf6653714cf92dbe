"""
Vehicles router: /v1/vehicles
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.database import get_db
from carpool.middleware.auth import CurrentUser, get_current_user
from carpool.schemas.schemas import VehicleCreateRequest, VehicleResponse, VehicleUpdateRequest
from carpool.services import users as user_service

router = APIRouter(prefix="/v1/vehicles", tags=["Vehicles"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=VehicleResponse)
async def register_vehicle(
    payload: VehicleCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    vehicle = await user_service.register_vehicle(
        user.id,
        user.name,
        payload.name,
        payload.model,
        payload.color,
        payload.plate_number,
        payload.seats,
        db,
    )
    return VehicleResponse.model_validate(vehicle)


@router.get("", response_model=list[VehicleResponse])
async def list_vehicles(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    vehicles = await user_service.list_vehicles(user.id, db)
    return [VehicleResponse.model_validate(v) for v in vehicles]


@router.patch("/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    vehicle_id: str,
    payload: VehicleUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    vehicle = await user_service.update_vehicle(
        vehicle_id, user.id, payload.model_dump(exclude_unset=True), db
    )
    return VehicleResponse.model_validate(vehicle)


@router.delete("/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vehicle(
    vehicle_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    await user_service.delete_vehicle(vehicle_id, user.id, db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
