"""
Single-user authentication.

The admin logs in with a username and a bcrypt-checked password and receives
a short-lived access token (sent back as ``Authorization: Bearer``) plus a
long-lived refresh token kept in an HttpOnly cookie. Refreshing rotates both.
"""
import logging
import math
import uuid
from datetime import UTC, datetime, timedelta
from hmac import compare_digest
from typing import Any

import bcrypt
import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from starlette.status import (
    HTTP_401_UNAUTHORIZED,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from timetracker import settings
from timetracker.middleware import RateLimiter

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=30)
REFRESH_COOKIE = "refreshToken"
ADMIN_USER_ID = 1

router = APIRouter(prefix="/api/auth", tags=["auth"])

login_limiter = RateLimiter(max_requests=5, window_seconds=15 * 60)
bearer_scheme = HTTPBearer(auto_error=False)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    expires_in: int


def _jwt_secret() -> str:
    try:
        return settings.load_secret("jwt_secret", min_length=32)
    except ValueError as e:
        logger.error(f"JWT secret unavailable: {e}")
        raise HTTPException(HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error") from e


def create_token(user_id: int, token_type: str, ttl: timedelta) -> str:
    now = datetime.now(UTC)
    claims = {
        "sub": str(user_id),
        "user_id": user_id,
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + ttl,
    }
    if token_type == "access":
        claims["role"] = "admin"
    return jwt.encode(claims, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    """Raises jwt.InvalidTokenError (including expiry) on a bad token."""
    return jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.error("Stored admin password hash is not a valid bcrypt hash")
        return False


def _issue_tokens(response: Response, user_id: int) -> dict[str, Any]:
    access_token = create_token(user_id, "access", ACCESS_TOKEN_TTL)
    refresh_token = create_token(user_id, "refresh", REFRESH_TOKEN_TTL)

    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        httponly=True,
        secure=settings.is_production(),
        samesite="strict",
        path="/",
        max_age=int(REFRESH_TOKEN_TTL.total_seconds()),
    )
    return {"access_token": access_token, "expires_in": int(ACCESS_TOKEN_TTL.total_seconds())}


def login_rate_limit(request: Request) -> None:
    """FastAPI dependency: five login attempts per client per 15 minutes."""
    client = request.client.host if request.client else "unknown"
    retry_after = login_limiter.hit(client)
    if retry_after is not None:
        logger.warning(f"Login rate limit exceeded for {client}")
        raise HTTPException(
            HTTP_429_TOO_MANY_REQUESTS,
            "Too many login attempts, try again later",
            headers={"Retry-After": str(math.ceil(retry_after))},
        )


def require_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),  # noqa: B008
) -> dict[str, Any]:
    """FastAPI dependency that returns the claims of a valid access token."""
    if credentials is None:
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Unauthorized")

    try:
        claims = decode_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Unauthorized") from e

    if claims.get("type") != "access":
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Unauthorized")

    return claims


@router.post("/login", response_model=TokenResponse, summary="Log in as the admin user")
def login(
    body: LoginRequest,
    response: Response,
    _: None = Depends(login_rate_limit),  # noqa: B008
):
    if not compare_digest(body.username.encode("utf-8"), settings.ADMIN_USER.encode("utf-8")):
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Invalid credentials")

    try:
        password_hash = settings.load_secret("admin_password_hash")
    except ValueError as e:
        logger.error(f"Failed to load admin password hash: {e}")
        raise HTTPException(HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error") from e

    if not verify_password(body.password, password_hash):
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Invalid credentials")

    logger.info(f"User {body.username} logged in")
    return _issue_tokens(response, ADMIN_USER_ID)


@router.post("/refresh", response_model=TokenResponse, summary="Rotate tokens using the refresh cookie")
def refresh(request: Request, response: Response):
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    if not refresh_token:
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Refresh token required")

    try:
        claims = decode_token(refresh_token)
    except jwt.InvalidTokenError as e:
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Invalid or expired refresh token") from e

    if claims.get("type") != "refresh":
        raise HTTPException(HTTP_401_UNAUTHORIZED, "Invalid token type")

    return _issue_tokens(response, claims["user_id"])


@router.post("/logout", summary="Clear the refresh cookie")
def logout(response: Response, _: dict = Depends(require_user)) -> dict[str, str]:  # noqa: B008
    response.delete_cookie(REFRESH_COOKIE, path="/")
    return {"message": "Logged out"}
