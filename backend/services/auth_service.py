"""
Auth Service - Authentication and token management.

This service owns:
- JWT token creation and validation
- Sliding token refresh
- Login and registration flows

User lookups are handled by user_service.
"""

from datetime import datetime, timedelta
from typing import Optional, TypedDict
from jose import JWTError, ExpiredSignatureError, jwt
from fastapi import HTTPException, status, Depends, Security, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from models import User
from schemas.user import Token
from services.user_service import UserService, pwd_context
from config.settings import settings
from database import get_async_db
import logging
import time

SECRET_KEY = settings.JWT_SECRET_KEY
ALGORITHM = settings.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
# Refresh token when this share of its lifetime has passed
TOKEN_REFRESH_THRESHOLD = 0.8
logger = logging.getLogger(__name__)

security = HTTPBearer()


class TokenPayload(TypedDict, total=False):
    """JWT token payload."""
    sub: str          # Subject (email)
    user_id: int
    username: str     # Display username
    iat: int          # Issued-at timestamp (added automatically)
    exp: datetime     # Expiration (added automatically)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: TokenPayload, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Token payload data
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode: dict = dict(data)
    now = datetime.utcnow()

    if "iat" not in to_encode:
        to_encode["iat"] = int(time.time())

    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    logger.info(f"Created access token for user_id={data.get('user_id')}")
    return encoded_jwt


def _token_data_for_user(user: User) -> TokenPayload:
    return {
        "sub": user.email,
        "user_id": user.user_id,
        "username": user.email.split('@')[0],
    }


def _create_token_for_user(user: User) -> Token:
    token_data = _token_data_for_user(user)
    return Token(
        access_token=create_access_token(data=token_data),
        token_type="bearer",
        username=token_data["username"],
        user_id=user.user_id,
        email=user.email
    )


async def login_user(db: AsyncSession, email: str, password: str) -> Token:
    """
    Authenticate user and return JWT token.

    Raises:
        HTTPException: If credentials invalid or user inactive
    """
    logger.info(f"Login attempt for: {email}")

    user = await UserService(db).verify_credentials(email, password)

    if not user:
        logger.warning(f"Failed login attempt for: {email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )

    logger.info(f"Successful login for: {email}")
    return _create_token_for_user(user)


async def register_and_login_user(
    db: AsyncSession,
    email: str,
    password: str,
    full_name: Optional[str] = None
) -> Token:
    """
    Register a new user and automatically log them in.

    Raises:
        HTTPException: If email already exists
    """
    logger.info(f"Registering new user: {email}")

    user = await UserService(db).create_user(
        email=email,
        password=password,
        full_name=full_name
    )

    logger.info(f"Successfully registered user: {email}")
    return _create_token_for_user(user)


def _needs_refresh(payload: dict) -> bool:
    exp_timestamp = payload.get("exp")
    if not exp_timestamp:
        return False

    current_time = int(time.time())
    iat_timestamp = payload.get("iat")
    if iat_timestamp:
        total_lifetime = exp_timestamp - iat_timestamp
        if total_lifetime <= 0:
            return False
        return (current_time - iat_timestamp) / total_lifetime >= TOKEN_REFRESH_THRESHOLD

    # No iat claim: compare remaining time against the default lifetime
    threshold_seconds = ACCESS_TOKEN_EXPIRE_MINUTES * 60 * (1 - TOKEN_REFRESH_THRESHOLD)
    return exp_timestamp - current_time < threshold_seconds


async def validate_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Security(security),
    db: AsyncSession = Depends(get_async_db)
) -> User:
    """
    Validate JWT token and return user.

    Used as a router dependency: Depends(auth_service.validate_token)

    If the token is valid but past the refresh threshold, a new token is
    stored in request.state.new_token for the middleware to return in the
    X-New-Token response header.
    """
    t_start = time.perf_counter()
    try:
        token = credentials.credentials
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])

        email: str = payload.get("sub")
        if email is None:
            logger.error("Token missing email claim")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload"
            )

        user = await UserService(db).get_user_by_email(email)
        if user is None:
            logger.error(f"Token user not found: {email}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        if not user.is_active:
            logger.warning(f"Inactive user attempted access: {email}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User account is deactivated"
            )

        user.username = payload.get("username")

        if _needs_refresh(payload):
            new_token_data = _token_data_for_user(user)
            new_token_data["iat"] = int(time.time())
            request.state.new_token = create_access_token(data=new_token_data)
            logger.debug(f"Generated refresh token for {email}")

        logger.debug(f"validate_token - email={email}, total={time.perf_counter() - t_start:.3f}s")
        return user

    except ExpiredSignatureError:
        logger.info("Token expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired"
        )
    except JWTError as e:
        logger.error(f"JWT validation error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )
