"""
LearnHub Learning Management System
Dependency injection: authentication, roles, rate limiting and caching
"""

import json
import logging
import time
from typing import Optional, Dict, Any, List

import jwt
import redis.asyncio as redis
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from .database.connection import get_db
from .database.models import User, UserRole
from .exceptions import (
    AppException,
    AuthenticationException,
    AuthorizationException,
    TokenExpiredException,
    TokenInvalidException
)
from ..config import get_settings, get_redis_url

# Configure logging
logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

# Redis connection
_redis_client: Optional[redis.Redis] = None
_redis_retry_at: float = 0.0
REDIS_RETRY_SECONDS = 30


async def get_redis_client() -> Optional[redis.Redis]:
    """Shared Redis client, or None when Redis is disabled or unreachable"""
    global _redis_client, _redis_retry_at

    settings = get_settings()
    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None and time.monotonic() >= _redis_retry_at:
        client = redis.from_url(
            get_redis_url(),
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=2,
            health_check_interval=30
        )
        try:
            await client.ping()
            _redis_client = client
            logger.info("✅ Redis connection established")
        except (redis.RedisError, OSError) as e:
            logger.warning(f"⚠️ Redis connection failed: {e}")
            _redis_retry_at = time.monotonic() + REDIS_RETRY_SECONDS
            await client.aclose()

    return _redis_client


async def close_redis_client():
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("✅ Redis connection closed")


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """Verify and decode JWT token"""
    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.PyJWTError:
        raise TokenInvalidException()

    if payload.get("type") != "access":
        raise TokenInvalidException()

    return payload


async def get_current_user_from_token(token: str, db: AsyncSession) -> User:
    """Resolve the user a bearer token was issued to"""
    payload = verify_jwt_token(token)
    user_id = payload.get("sub")

    if not user_id:
        raise TokenInvalidException("Invalid token payload")

    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.is_deleted.is_(False)
        )
    )
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationException("User no longer exists")

    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Get current authenticated user (optional)"""
    if not credentials:
        return None

    return await get_current_user_from_token(credentials.credentials, db)


async def require_authentication(
    current_user: Optional[User] = Depends(get_current_user)
) -> User:
    """Require user authentication"""
    if not current_user:
        raise AuthenticationException("Not authorized, no token")

    return current_user


def require_role(allowed_roles: List[UserRole]):
    """Factory function to create role-based dependencies"""

    async def check_role(current_user: User = Depends(require_authentication)) -> User:
        if current_user.role not in allowed_roles:
            raise AuthorizationException(
                f"Access denied. Required roles: {', '.join(role.value for role in allowed_roles)}",
                required_roles=[role.value for role in allowed_roles]
            )
        return current_user

    return check_role


# Pre-built role dependencies
require_student = require_role([UserRole.STUDENT])
require_instructor_or_admin = require_role([UserRole.INSTRUCTOR, UserRole.ADMIN])
require_admin = require_role([UserRole.ADMIN])


class RateLimiter:
    """Fixed-window request counter backed by Redis"""

    def __init__(self, requests: int, window: int, scope: str = "ip"):
        self.requests = requests
        self.window = window
        self.scope = scope

    def _key(self, request: Request) -> str:
        client_host = request.client.host if request.client else "unknown"

        if self.scope == "user":
            auth_header = request.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                try:
                    payload = verify_jwt_token(auth_header.split(" ", 1)[1])
                    return f"rate_limit:{request.url.path}:user:{payload.get('sub')}"
                except AppException:
                    pass
        elif self.scope == "global":
            return f"rate_limit:{request.url.path}:global"

        return f"rate_limit:{request.url.path}:ip:{client_host}"

    async def __call__(self, request: Request) -> bool:
        redis_client = await get_redis_client()

        if not redis_client:
            return True

        key = self._key(request)

        try:
            current_requests = await redis_client.get(key)

            if current_requests is None:
                await redis_client.setex(key, self.window, 1)
                return True

            if int(current_requests) < self.requests:
                await redis_client.incr(key)
                return True
        except redis.RedisError as e:
            logger.warning(f"Rate limiting skipped for {key}: {e}")
            return True

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later."
        )


def _build_rate_limiters():
    settings = get_settings()
    return (
        RateLimiter(requests=settings.RATE_LIMIT_PER_MINUTE, window=60, scope="ip"),
        RateLimiter(requests=settings.AUTH_RATE_LIMIT_PER_MINUTE, window=60, scope="ip")
    )


# Common rate limiters
standard_rate_limit, auth_rate_limit = _build_rate_limiters()


class CacheManager:
    """JSON response cache backed by Redis"""

    def __init__(self, ttl: int = 300):
        self.ttl = ttl

    async def get(self, key: str) -> Optional[Any]:
        redis_client = await get_redis_client()

        if not redis_client:
            return None

        try:
            cached_value = await redis_client.get(f"cache:{key}")
            return json.loads(cached_value) if cached_value else None
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Cache get failed for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any) -> bool:
        redis_client = await get_redis_client()

        if not redis_client:
            return False

        try:
            await redis_client.setex(f"cache:{key}", self.ttl, json.dumps(value, default=str))
            return True
        except (redis.RedisError, TypeError) as e:
            logger.warning(f"Cache set failed for key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        redis_client = await get_redis_client()

        if not redis_client:
            return False

        try:
            await redis_client.delete(f"cache:{key}")
            return True
        except redis.RedisError as e:
            logger.warning(f"Cache delete failed for key {key}: {e}")
            return False


# Cache instances
course_cache = CacheManager(ttl=get_settings().CACHE_TTL)


__all__ = [
    "get_redis_client",
    "close_redis_client",
    "verify_jwt_token",
    "get_current_user",
    "require_authentication",
    "require_role",
    "require_student",
    "require_instructor_or_admin",
    "require_admin",
    "RateLimiter",
    "standard_rate_limit",
    "auth_rate_limit",
    "CacheManager",
    "course_cache"
]
