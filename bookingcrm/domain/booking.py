"""
Booking domain - lifecycle states, transition table and derived values.

Lifecycle:
    To Be Confirmed -> Screening -> Pending Deposit -> Confirmed
        -> In Progress -> Completed

Side branches Cancelled / No Show are reachable from every non-terminal
state, by user action only. The automatic engine never produces them.
"""
from datetime import datetime, timedelta
from enum import Enum


class BookingStatus(str, Enum):
    TO_BE_CONFIRMED = "To Be Confirmed"
    SCREENING = "Screening"
    PENDING_DEPOSIT = "Pending Deposit"
    CONFIRMED = "Confirmed"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"


class ScreeningStatus(str, Enum):
    UNSCREENED = "Unscreened"
    IN_PROGRESS = "In Progress"
    SCREENED = "Screened"


class RiskLevel(str, Enum):
    UNKNOWN = "Unknown"
    LOW = "Low Risk"
    MEDIUM = "Medium Risk"
    HIGH = "High Risk"


class Recurrence(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class LocationType(str, Enum):
    INCALL = "Incall"
    OUTCALL = "Outcall"
    TRAVEL = "Travel"
    VIRTUAL = "Virtual"


class CancelledBy(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"


class DepositOutcome(str, Enum):
    KEPT = "kept"
    RETURNED = "returned"
    CREDIT = "credit"


TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
})

# Bookings in these states do not occupy the calendar
INACTIVE_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.NO_SHOW})

# Progress order of the main line; used to assert automatic moves only go forward
STATUS_RANK = {
    BookingStatus.TO_BE_CONFIRMED: 0,
    BookingStatus.SCREENING: 1,
    BookingStatus.PENDING_DEPOSIT: 2,
    BookingStatus.CONFIRMED: 3,
    BookingStatus.IN_PROGRESS: 4,
    BookingStatus.COMPLETED: 5,
}

_SIDE_BRANCHES = {BookingStatus.CANCELLED, BookingStatus.NO_SHOW}

# Explicit user-driven transitions (editor, detail screen, swipe actions).
# Editors may jump forward, e.g. record an already finished session as Completed.
MANUAL_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.TO_BE_CONFIRMED: frozenset({
        BookingStatus.SCREENING, BookingStatus.PENDING_DEPOSIT, BookingStatus.CONFIRMED,
        BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, *_SIDE_BRANCHES,
    }),
    BookingStatus.SCREENING: frozenset({
        BookingStatus.TO_BE_CONFIRMED, BookingStatus.PENDING_DEPOSIT, BookingStatus.CONFIRMED,
        BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, *_SIDE_BRANCHES,
    }),
    BookingStatus.PENDING_DEPOSIT: frozenset({
        BookingStatus.TO_BE_CONFIRMED, BookingStatus.SCREENING, BookingStatus.CONFIRMED,
        BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, *_SIDE_BRANCHES,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.TO_BE_CONFIRMED, BookingStatus.SCREENING, BookingStatus.PENDING_DEPOSIT,
        BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, *_SIDE_BRANCHES,
    }),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, *_SIDE_BRANCHES}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset({BookingStatus.TO_BE_CONFIRMED, BookingStatus.CONFIRMED}),
    BookingStatus.NO_SHOW: frozenset(),
}

# "Advance" button on the booking detail screen
NEXT_STATUS = {
    BookingStatus.TO_BE_CONFIRMED: BookingStatus.PENDING_DEPOSIT,
    BookingStatus.SCREENING: BookingStatus.PENDING_DEPOSIT,
    BookingStatus.PENDING_DEPOSIT: BookingStatus.CONFIRMED,
    BookingStatus.CONFIRMED: BookingStatus.IN_PROGRESS,
    BookingStatus.IN_PROGRESS: BookingStatus.COMPLETED,
}


class InvalidTransitionError(ValueError):
    pass


def assert_manual_transition(current: BookingStatus, target: BookingStatus) -> None:
    """Raise InvalidTransitionError unless the user may move current -> target."""
    if current == target:
        return
    if target not in MANUAL_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Invalid booking transition: {current.value} -> {target.value}"
        )


def screened_target(deposit_amount: int, deposit_received: bool) -> BookingStatus:
    """Where a booking lands once its client has passed screening."""
    if deposit_amount > 0 and not deposit_received:
        return BookingStatus.PENDING_DEPOSIT
    return BookingStatus.CONFIRMED


def booking_total(base_rate: int, extras: int, travel_fee: int) -> int:
    """Total price in cents."""
    return base_rate + extras + travel_fee


def booking_end(date_time: datetime, duration_minutes: int) -> datetime:
    return date_time + timedelta(minutes=duration_minutes)


def completion_due_at(date_time: datetime, duration_minutes: int, grace_minutes: int = 5) -> datetime:
    """Moment an In Progress booking is considered finished."""
    return booking_end(date_time, duration_minutes) + timedelta(minutes=grace_minutes)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def escalate_risk(current: RiskLevel, no_show_count: int) -> RiskLevel:
    """
    Risk level after a client's no-show.

    Two or more no-shows always mean High Risk; the first one bumps an
    unknown or low risk client to Medium Risk.
    """
    if no_show_count >= 2:
        return RiskLevel.HIGH
    if no_show_count >= 1 and current in (RiskLevel.UNKNOWN, RiskLevel.LOW):
        return RiskLevel.MEDIUM
    return current


def forces_safety_check(risk_level: RiskLevel) -> bool:
    """High risk and unvetted clients always get a safety check-in."""
    return risk_level in (RiskLevel.HIGH, RiskLevel.UNKNOWN)


def format_duration(minutes: int) -> str:
    h, m = divmod(minutes, 60)
    if h and m:
        return f"{h}h {m}m"
    if h:
        return f"{h}h"
    return f"{m}m"
