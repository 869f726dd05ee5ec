"""Request tracking middleware and JWT authentication."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Header, HTTPException, Request, status
from jose import JWTError, jwt
from loguru import logger

from .accounts import Principal
from .config import settings
from .quota import extract_client_ip


async def add_request_id(request: Request, call_next):
    """Add request ID to context for tracking.

    Args:
        request: Incoming FastAPI request.
        call_next: Next middleware or handler in chain.

    Returns:
        Response with X-Request-ID header.

    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    with logger.contextualize(request_id=request_id):
        logger.debug(
            "Request started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.debug(
            "Request completed",
            status_code=response.status_code,
        )

        return response


def create_token(user_id: str, email: str | None = None) -> str:
    """Create a JWT token for a user.

    Args:
        user_id: The user identifier to encode in the token.
        email: Optional email claim.

    Returns:
        Encoded JWT token as string.
    """
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": user_id,
        "exp": now + timedelta(minutes=settings.jwt_expiration_minutes),
        "iat": now,
    }
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    token: str = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token


def decode_token(authorization: str) -> Principal:
    """Validate a Bearer authorization value and return the caller.

    Raises:
        HTTPException: If token is invalid or expired.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not authorization.startswith("Bearer "):
        raise credentials_exception

    token = authorization.removeprefix("Bearer ").strip()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": bool(settings.jwt_audience)},
        )
    except JWTError as e:
        raise credentials_exception from e

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception
    return Principal(user_id=str(user_id), email=payload.get("email"))


async def get_current_user(authorization: str | None = Header(None)) -> Principal:
    """Require a signed-in caller."""
    return decode_token(authorization or "")


async def get_optional_user(authorization: str | None = Header(None)) -> Principal | None:
    """Signed-in caller, or None for guests. A malformed token is still rejected."""
    if not authorization:
        return None
    return decode_token(authorization)


def get_client_ip(request: Request) -> str:
    """Caller IP used for the guest quota."""
    return extract_client_ip(request.headers, request.client.host if request.client else None)
