from fastapi import APIRouter, Depends, HTTPException, status, Form
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, EmailStr, Field
from typing import Annotated, Optional
import logging

from database import get_async_db
from models import User as UserModel
from schemas.user import Token, User

from services import auth_service

logger = logging.getLogger(__name__)

# Re-export validate_token as get_current_user for convenient importing by other routers
# Usage: from routers.auth import get_current_user
get_current_user = auth_service.validate_token


# ============== Request Schemas ==============

class UserCreate(BaseModel):
    """Request schema for user registration."""
    email: EmailStr = Field(description="User's email address")
    password: str = Field(
        min_length=5,
        description="User's password"
    )
    full_name: Optional[str] = Field(default=None, max_length=255, description="User's full name")


router = APIRouter()


@router.post(
    "/register",
    response_model=Token,
    summary="Register a new user and automatically log them in"
)
async def register(user: UserCreate, db: AsyncSession = Depends(get_async_db)):
    """
    Register a new user and automatically log them in with:
    - **email**: valid email address
    - **password**: string
    - **full_name**: optional display name

    Returns JWT token and session information, same as login endpoint.
    """
    return await auth_service.register_and_login_user(
        db, user.email, user.password, user.full_name
    )


@router.post(
    "/login",
    response_model=Token,
    summary="Login to get JWT token",
    responses={
        200: {
            "content": {
                "application/json": {
                    "example": {
                        "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                        "token_type": "bearer",
                        "user_id": 1,
                        "email": "john.doe@example.com",
                        "username": "john.doe"
                    }
                }
            }
        },
        401: {
            "description": "Invalid credentials"
        }
    }
)
async def login(
    username: Annotated[str, Form(description="User's email address")],
    password: Annotated[str, Form(description="User's password")],
    db: AsyncSession = Depends(get_async_db)
):
    """
    Login with email and password to get a JWT token.

    - **username**: email address
    - **password**: user password
    """
    try:
        return await auth_service.login_user(db, username, password)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login failed for {username}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/me", response_model=User, summary="Get the current user")
async def get_me(current_user: UserModel = Depends(get_current_user)):
    return current_user
