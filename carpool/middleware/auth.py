from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from carpool.config import get_settings

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Identity handed over by the auth provider: a stable id and a display name."""
    id: str
    name: str


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    """Sign a JWT with the configured secret (HS256)."""
    payload = dict(data)
    minutes = expires_minutes or settings.access_token_expire_minutes
    payload.setdefault("exp", datetime.now(timezone.utc) + timedelta(minutes=minutes))
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


async def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Decode and validate the JWT Bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_current_user(token_data: dict = Depends(get_token_payload)) -> CurrentUser:
    """Extract the user id (`sub`) and display name (`name`) from the token."""
    user_id = token_data.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return CurrentUser(id=str(user_id), name=token_data.get("name") or "")
