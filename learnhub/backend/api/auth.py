"""
LearnHub Learning Management System
Authentication API routes
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from uuid import UUID

import jwt
from passlib.context import CryptContext
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..database.connection import get_db
from ..database.models import User, UserRole
from ..dependencies import require_authentication, auth_rate_limit
from ..exceptions import (
    AuthenticationException,
    DuplicateResourceException,
    InvalidCredentialsException
)
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=get_settings().BCRYPT_ROUNDS
)


# Pydantic models
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    role: UserRole = UserRole.STUDENT
    university: Optional[str] = None
    learning_goals: List[str] = []
    skill_tags: List[str] = []

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Name is required')
        return v.strip()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        settings = get_settings()
        if len(v) < settings.PASSWORD_MIN_LENGTH:
            raise ValueError(f'Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long')
        return v

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v == UserRole.ADMIN:
            raise ValueError('Admin accounts cannot be self-registered')
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if not v:
            raise ValueError('Password is required')
        return v


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    university: Optional[str] = None
    learning_goals: Optional[List[str]] = None
    skill_tags: Optional[List[str]] = None
    preferences: Optional[Dict[str, Any]] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if v is not None and len(v.strip()) == 0:
            raise ValueError('Name cannot be empty')
        return v.strip() if v else v


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, v):
        settings = get_settings()
        if len(v) < settings.PASSWORD_MIN_LENGTH:
            raise ValueError(f'Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long')
        return v


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: UserRole
    university: Optional[str] = None
    learning_goals: List[str] = []
    skill_tags: List[str] = []
    preferences: Dict[str, Any] = {}
    total_learning_hours: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_learning_date: Optional[datetime] = None
    created_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# Utility functions
def hash_password(password: str) -> str:
    """Hash password using bcrypt"""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash"""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


async def get_user_by_email(email: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(
        select(User).where(
            User.email == email.strip().lower(),
            User.is_deleted.is_(False)
        )
    )
    return result.scalar_one_or_none()


def build_token_response(user: User) -> TokenResponse:
    settings = get_settings()
    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return TokenResponse(
        access_token=token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user)
    )


# Authentication routes
@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    rate_limit: bool = Depends(auth_rate_limit)
):
    """Register a new student or instructor account"""

    if await get_user_by_email(request.email, db):
        raise DuplicateResourceException("user", "email", request.email)

    user = User(
        name=request.name,
        email=request.email.lower(),
        hashed_password=hash_password(request.password),
        role=request.role,
        university=request.university,
        learning_goals=request.learning_goals,
        skill_tags=request.skill_tags,
        preferences={
            "preferred_learning_time": "any",
            "learning_pace": "medium",
            "notifications_enabled": True
        },
        total_learning_hours=0,
        current_streak=0,
        longest_streak=0,
        last_login=datetime.utcnow()
    )

    db.add(user)
    await db.commit()

    logger.info(f"New user registered: {user.email} ({user.role.value})")

    return build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
    rate_limit: bool = Depends(auth_rate_limit)
):
    """Authenticate user and return an access token"""

    user = await get_user_by_email(request.email, db)

    if not user or not verify_password(request.password, user.hashed_password):
        raise InvalidCredentialsException()

    user.last_login = datetime.utcnow()
    await db.commit()

    logger.info(f"User {user.email} logged in successfully")

    return build_token_response(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    current_user: User = Depends(require_authentication)
):
    """Get current user's profile information"""
    return current_user


@router.put("/me", response_model=UserResponse)
async def update_current_user_profile(
    request: UpdateProfileRequest,
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Update the editable parts of the current user's profile"""

    for field, value in request.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(current_user, field, value)

    await db.commit()

    return current_user


@router.put("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    current_user: User = Depends(require_authentication),
    db: AsyncSession = Depends(get_db)
):
    """Change user password"""

    if not verify_password(request.current_password, current_user.hashed_password):
        raise AuthenticationException("Current password is incorrect")

    current_user.hashed_password = hash_password(request.new_password)
    await db.commit()

    logger.info(f"Password changed for user {current_user.email}")

    return {"message": "Password changed successfully"}
