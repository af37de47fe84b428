from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional


class UserBase(BaseModel):
    """Base user schema."""

    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = Field(None, max_length=255)
    company_address: Optional[str] = Field(None, max_length=500)
    company_phone: Optional[str] = Field(None, max_length=30)


class UserCreate(UserBase):
    """Schema for creating a user."""

    password: str = Field(..., min_length=8)


class UserResponse(UserBase):
    """Schema for user response. The issuer block comes from these fields."""

    id: str
    full_name: str
    is_active: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_db_user(cls, user) -> "UserResponse":
        """Create UserResponse from database User model."""
        return cls(
            id=str(user.id),
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            company_name=user.company_name,
            company_address=user.company_address,
            company_phone=user.company_phone,
            full_name=user.full_name,
            is_active=user.is_active,
            created_at=user.created_at,
        )


class AuthMeResponse(BaseModel):
    """Response wrapper for /auth/me."""

    user: UserResponse


class Token(BaseModel):
    """JWT token response; ``token`` mirrors ``access_token``."""

    access_token: str
    token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Data encoded in JWT token."""

    user_id: Optional[int] = None
    email: Optional[str] = None


class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr
    password: str
