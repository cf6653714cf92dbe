import json
from typing import Optional

from fastapi import Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from carpool.config import get_settings
from carpool.redis_client import get_redis

settings = get_settings()


def _cache_key(user_id: str, key: str) -> str:
    # Scoped per user so two clients cannot collide on the same key
    return f"idempotency:{user_id}:{key}"


async def check_idempotency(user_id: str, key: Optional[str]) -> Optional[Response]:
    """
    Returns a cached Response if the Idempotency-Key was already used,
    otherwise returns None (proceed normally).
    """
    if not key:
        return None

    redis = await get_redis()
    cached = await redis.get(_cache_key(user_id, key))

    if cached:
        data = json.loads(cached)
        return JSONResponse(
            content=data["body"],
            status_code=data["status_code"],
            headers={"X-Idempotency-Replay": "true"},
        )
    return None


async def store_idempotency_result(user_id: str, key: Optional[str], status_code: int, body) -> None:
    """Persist the response for the given idempotency key (24h TTL by default)."""
    if not key:
        return
    redis = await get_redis()
    await redis.setex(
        _cache_key(user_id, key),
        settings.idempotency_ttl_seconds,
        json.dumps({"status_code": status_code, "body": jsonable_encoder(body)}),
    )
