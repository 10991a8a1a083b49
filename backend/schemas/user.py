"""
User schemas

Core user types. Request schemas (UserCreate) live in the routers.
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime


class User(BaseModel):
    """Canonical representation of a user in API responses."""
    user_id: int = Field(description="Unique identifier")
    email: EmailStr = Field(description="User's email address")
    full_name: Optional[str] = Field(None, description="User's full name")
    is_active: bool = Field(default=True, description="Whether user is active")
    created_at: datetime = Field(description="Record creation timestamp")

    class Config:
        from_attributes = True


class Token(BaseModel):
    """Authentication response with JWT token."""
    access_token: str = Field(description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    user_id: int = Field(description="User's unique identifier")
    email: str = Field(description="User's email address")
    username: str = Field(description="Display username (from email)")
