"""
FastAPI dependencies (DB session, clock, poll loop) and error mapping
"""
from fastapi import HTTPException, Request, status

from bookingcrm.application.bookings import BookingConflictError
from bookingcrm.application.plan_limits import PlanLimitError
from bookingcrm.infrastructure.db.session import get_db as _get_db
from bookingcrm.utils.clock import Clock, local_now


# Re-export get_db for convenience
get_db = _get_db


def get_clock() -> Clock:
    """Wall clock used by the use cases (overridden in tests)."""
    return local_now


def get_poll_loop(request: Request):
    """
    PollLoop created by the app lifespan

    Raises:
        HTTPException(503): the loop is not running (app started without lifespan)
    """
    loop = getattr(request.app.state, "poll_loop", None)
    if loop is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Poll loop not running")
    return loop


def get_sink(request: Request):
    return getattr(request.app.state, "notification_sink", None)


def http_error(exc: ValueError) -> HTTPException:
    """
    Map an application error to an HTTP error

    Usage:
        try:
            use_case.execute(...)
        except ValueError as e:
            raise http_error(e)
    """
    if isinstance(exc, BookingConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "reason": exc.conflict.reason,
                "is_double_book": exc.conflict.is_double_book,
                "day_status": exc.conflict.day_status,
                "conflicting_booking_id": exc.conflict.conflicting_booking_id,
            },
        )
    if isinstance(exc, PlanLimitError):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc))
    if "not found" in str(exc):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
