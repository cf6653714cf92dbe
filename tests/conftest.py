"""
Shared fixtures: a throwaway SQLite database per test, a mocked Redis pool
and factories for drivers, vehicles and rides.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import carpool.models  # noqa: F401  registers every table on Base.metadata
from carpool import redis_client
from carpool.database import Base, get_db
from carpool.main import app
from carpool.middleware.auth import create_access_token
from carpool.services.rides import create_ride
from carpool.services.users import register_vehicle, update_profile


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'carpool.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    monkeypatch.setattr(redis_client, "_redis_pool", redis)
    return redis


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user_id: str, name: str) -> dict:
    token = create_access_token({"sub": user_id, "name": name})
    return {"Authorization": f"Bearer {token}"}


def in_hours(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


@pytest.fixture
def make_driver(db):
    async def _make(driver_id="driver-1", name="Dana", gender="female", seats=4):
        await update_profile(driver_id, db, name=name, gender=gender)
        return await register_vehicle(driver_id, name, "Civic", "Honda Civic", "White", "abc 123", seats, db)
    return _make


@pytest.fixture
def make_ride(db, make_driver):
    async def _make(driver_id="driver-1", name="Dana", seats=3, price=2.5, is_scheduled=True, **kwargs):
        vehicle = await make_driver(driver_id, name, seats=max(seats, 4))
        return await create_ride(
            driver_id,
            name,
            vehicle.id,
            kwargs.pop("pickup_location", "Manama"),
            kwargs.pop("destination", "Riffa"),
            kwargs.pop("departure_time", in_hours(1)),
            seats,
            db,
            is_scheduled=is_scheduled,
            price=price,
            **kwargs,
        )
    return _make
