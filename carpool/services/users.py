"""
User profiles and registered vehicles.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.models.ride import Ride
from carpool.models.user import User
from carpool.models.vehicle import Vehicle
from carpool.services.exceptions import ConflictError, VehicleNotFoundError
from carpool.services.state_machine import OPEN_RIDE_STATUSES

logger = logging.getLogger(__name__)


async def ensure_user(user_id: str, name: str, db: AsyncSession, lock: bool = False) -> User:
    """
    Get-or-create the profile row for an identity-provider user id.
    With lock=True the row is returned under SELECT ... FOR UPDATE.
    """
    stmt = select(User).where(User.id == user_id)
    if lock:
        stmt = stmt.with_for_update()
    user = (await db.execute(stmt)).scalar_one_or_none()
    if user is None:
        user = User(id=user_id, name=name or "")
        db.add(user)
        await db.flush()
        logger.info("Created profile for user=%s", user_id)
    elif name and not user.name:
        user.name = name
    return user


async def update_profile(
    user_id: str,
    db: AsyncSession,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    gender: Optional[str] = None,
) -> User:
    user = await ensure_user(user_id, name or "", db)
    if name is not None:
        user.name = name.strip()
    if phone is not None:
        user.phone = phone.strip()
    if gender is not None:
        user.gender = gender
    await db.commit()
    return user


async def submit_documents(user_id: str, license_number: str, cpr_number: str, db: AsyncSession) -> User:
    """Stores the numbers as submitted; no verification happens here."""
    user = await ensure_user(user_id, "", db)
    user.license_number = license_number.strip()
    user.cpr_number = cpr_number.strip()
    await db.commit()
    return user


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------

async def register_vehicle(
    owner_id: str,
    owner_name: str,
    name: str,
    model: str,
    color: str,
    plate_number: str,
    seats: int,
    db: AsyncSession,
) -> Vehicle:
    await ensure_user(owner_id, owner_name, db)
    vehicle = Vehicle(
        owner_id=owner_id,
        name=name.strip(),
        model=model.strip(),
        color=color.strip(),
        plate_number=plate_number.strip().upper(),
        seats=seats,
    )
    db.add(vehicle)
    await db.commit()
    logger.info("Registered vehicle=%s for user=%s", vehicle.id, owner_id)
    return vehicle


async def list_vehicles(owner_id: str, db: AsyncSession) -> list[Vehicle]:
    result = await db.execute(
        select(Vehicle).where(Vehicle.owner_id == owner_id).order_by(Vehicle.created_at)
    )
    return list(result.scalars().all())


async def get_owned_vehicle(vehicle_id: str, owner_id: str, db: AsyncSession) -> Vehicle:
    result = await db.execute(
        select(Vehicle).where(Vehicle.id == vehicle_id, Vehicle.owner_id == owner_id)
    )
    vehicle = result.scalar_one_or_none()
    if vehicle is None:
        raise VehicleNotFoundError()
    return vehicle


async def update_vehicle(vehicle_id: str, owner_id: str, changes: dict, db: AsyncSession) -> Vehicle:
    vehicle = await get_owned_vehicle(vehicle_id, owner_id, db)
    for field in ("name", "model", "color"):
        if changes.get(field) is not None:
            setattr(vehicle, field, changes[field].strip())
    if changes.get("plate_number") is not None:
        vehicle.plate_number = changes["plate_number"].strip().upper()
    if changes.get("seats") is not None:
        vehicle.seats = changes["seats"]
    await db.commit()
    return vehicle


async def delete_vehicle(vehicle_id: str, owner_id: str, db: AsyncSession) -> None:
    vehicle = await get_owned_vehicle(vehicle_id, owner_id, db)
    in_use = await db.execute(
        select(Ride.id).where(Ride.vehicle_id == vehicle.id, Ride.status.in_(OPEN_RIDE_STATUSES))
    )
    if in_use.first() is not None:
        raise ConflictError("Vehicle is assigned to an open ride")
    await db.delete(vehicle)
    await db.commit()
