"""
User Service - User lookup and registration.

Authentication (tokens, passwords) is handled by auth_service.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
from fastapi import HTTPException, status, Depends
from passlib.context import CryptContext
import logging

from models import User as UserModel
from database import get_async_db

logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class UserService:
    """Service for user management operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: int) -> Optional[UserModel]:
        """Get user by ID. Returns None if not found."""
        result = await self.db.execute(
            select(UserModel).where(UserModel.user_id == user_id)
        )
        return result.scalars().first()

    async def get_user_by_email(self, email: str) -> Optional[UserModel]:
        result = await self.db.execute(
            select(UserModel).where(UserModel.email == email)
        )
        return result.scalars().first()

    async def create_user(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
    ) -> UserModel:
        """Create a new user with a bcrypt-hashed password."""
        existing = await self.get_user_by_email(email)
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        user = UserModel(
            email=email,
            password=pwd_context.hash(password),
            full_name=full_name,
        )

        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info(f"Created user: {email} (id={user.user_id})")
        return user

    async def verify_credentials(self, email: str, password: str) -> Optional[UserModel]:
        """Return the user when the password matches and the account is active."""
        user = await self.get_user_by_email(email)
        if not user:
            return None

        if not pwd_context.verify(password, user.password):
            return None

        if not user.is_active:
            return None

        return user


async def get_user_service(
    db: AsyncSession = Depends(get_async_db)
) -> UserService:
    """Get a UserService instance with async database session."""
    return UserService(db)
