"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Bearer JWTs from the identity provider are validated here; WebSockets pass
the same token as a query parameter and go through authenticate_token().
"""

import uuid
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import TalentProfile, User, UserRole
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: uuid.UUID = uuid.UUID(payload["sub"])
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


async def decode_token(token: str, redis) -> TokenData:
    """Verify signature, claims and the Redis deny-list."""
    try:
        payload = verify_access_token(token)
        token_data = TokenData(payload)
    except (JWTError, KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Check if token has been revoked (logged out)
    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )
    return token_data


async def _load_active_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """Extract and validate JWT from Authorization header."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await decode_token(credentials.credentials, redis)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    return await _load_active_user(db, token_data.user_id)


async def authenticate_token(token: Optional[str], db: AsyncSession, redis) -> User:
    """Same checks as get_current_user, for WebSocket handshakes."""
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    token_data = await decode_token(token, redis)
    return await _load_active_user(db, token_data.user_id)


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return current_user


# Convenience role dependencies
require_booker = RoleRequired(UserRole.BOOKER, UserRole.ADMIN)
require_talent = RoleRequired(UserRole.TALENT)
require_admin = RoleRequired(UserRole.ADMIN)


async def get_talent_profile(
    current_user: User = Depends(require_talent),
    db: AsyncSession = Depends(get_db),
) -> TalentProfile:
    """Resolve the caller's talent profile, 404 if they never created one."""
    result = await db.execute(
        select(TalentProfile).where(TalentProfile.user_id == current_user.id)
    )
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="Talent profile not found")
    return profile
