"""
Auth and restaurant Pydantic schemas for request/response validation.
"""
from uuid import UUID

import pytz
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class UserRegister(BaseModel):
    """Schema for user registration request."""
    email: EmailStr
    password: str = Field(..., min_length=8)


class UserLogin(BaseModel):
    """Schema for user login request."""
    email: EmailStr
    password: str


class Token(BaseModel):
    """Schema for token response."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenRefresh(BaseModel):
    """Schema for token refresh request."""
    refresh_token: str


class UserResponse(BaseModel):
    """Schema for user response (without password)."""
    id: UUID
    email: str

    model_config = ConfigDict(from_attributes=True)


class RestaurantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    timezone: str = "UTC"
    currency: str = Field("USD", min_length=3, max_length=3)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v


class RestaurantResponse(BaseModel):
    id: UUID
    name: str
    timezone: str
    currency: str

    model_config = ConfigDict(from_attributes=True)
