"""FastAPI dependency injection functions."""
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from booking_engine.auth import AccessGate, InvalidAccessKeyError
from booking_engine.engine import BookingEngine


def get_engine(request: Request) -> BookingEngine:
    """The engine built at startup (one per app, never a module global)."""
    return request.app.state.engine


def get_gate(request: Request) -> AccessGate:
    return request.app.state.gate


async def require_staff(
    request: Request,
    x_access_key: Optional[str] = Header(default=None, description="Staff passphrase")
) -> None:
    """
    FastAPI dependency guarding staff endpoints.

    Validates the X-Access-Key header against the configured access gate.

    Raises:
        HTTPException 401: If the passphrase is missing or wrong
    """
    try:
        get_gate(request).verify(x_access_key)
    except InvalidAccessKeyError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "AccessKey"}
        )
