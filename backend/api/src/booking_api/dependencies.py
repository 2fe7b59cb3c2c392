"""FastAPI dependency providers.

Service instances come from booking_core.services.registry (lru_cache
singletons); this module adds the request-scoped pieces.

Usage in routes:
    from booking_api.dependencies import get_booking_locker, get_current_user

    @router.get("/bookings/{booking_id}")
    async def get_booking(
        booking_id: str,
        user: User = Depends(get_current_user),
        locker: BookingLocker = Depends(get_booking_locker),
    ):
        ...

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from fastapi import Depends, Header, HTTPException
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN, HTTP_404_NOT_FOUND

from booking_core.models import Booking, User
from booking_core.services import BookingLocker, UserDirectory
from booking_core.services.registry import (
    get_booking_locker,
    get_payment_reconciler,
    get_user_directory,
    reset_services,
)

__all__ = [
    "get_booking_locker",
    "get_current_user",
    "get_owned_booking",
    "get_payment_reconciler",
    "get_user_directory",
    "reset_services",
]

USER_ID_HEADER = "X-User-Id"


async def get_current_user(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    directory: UserDirectory = Depends(get_user_directory),
) -> User:
    """Resolve the caller from the X-User-Id header.

    Authentication happens upstream (API Gateway authorizer); the header
    carries the authenticated subject.

    Raises:
        HTTPException: 401 if the header is missing, 403 if the user is unknown
    """
    if not x_user_id:
        raise HTTPException(
            status_code=HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_ID_HEADER} header",
        )

    user = directory.get_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Unknown user")
    return user


async def get_owned_booking(
    booking_id: str,
    user: User = Depends(get_current_user),
    locker: BookingLocker = Depends(get_booking_locker),
) -> Booking:
    """Load a booking that belongs to the caller.

    Another user's booking is reported as not found so IDs cannot be probed.
    """
    booking = locker.get_booking(booking_id)
    if booking.user_id != user.user_id:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking
