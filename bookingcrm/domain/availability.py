"""
Day availability and time-slot helpers.

Times of day are "HH:MM" strings. A booking that crosses midnight is only
checked against the part that falls on its own day.
"""
import math
from dataclasses import dataclass, field
from enum import Enum

MINUTES_PER_DAY = 1440


class AvailabilityStatus(str, Enum):
    AVAILABLE = "Available"
    LIMITED = "Limited"
    BUSY = "Busy"
    OFF = "Off"


@dataclass
class AvailabilityConflict:
    has_conflict: bool
    reason: str = ""
    is_double_book: bool = False
    day_status: str | None = None
    conflicting_booking_id: str | None = None

    @classmethod
    def none(cls) -> "AvailabilityConflict":
        return cls(has_conflict=False)


@dataclass
class TimeSlot:
    start: str
    end: str
    booking_id: str | None = None

    def to_dict(self) -> dict:
        data = {"start": self.start, "end": self.end}
        if self.booking_id:
            data["booking_id"] = self.booking_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TimeSlot":
        return cls(start=data["start"], end=data["end"], booking_id=data.get("booking_id"))


@dataclass
class DayRules:
    """Availability record of one day, detached from storage."""
    status: AvailabilityStatus
    start_time: str | None = None
    end_time: str | None = None
    open_slots: list[TimeSlot] = field(default_factory=list)


def time_to_minutes(value: str) -> int:
    h, m = value.split(":")
    return int(h) * 60 + int(m)


def minutes_to_time(minutes: int) -> str:
    h, m = divmod(minutes % MINUTES_PER_DAY, 60)
    return f"{h:02d}:{m:02d}"


def snap_to_half_hour(value: str, round_up: bool = False) -> str:
    mins = time_to_minutes(value)
    if round_up:
        snapped = math.ceil(mins / 30) * 30
    else:
        snapped = (mins // 30) * 30
    return minutes_to_time(min(snapped, MINUTES_PER_DAY - 1))


def format_time12(value: str) -> str:
    """'14:00' -> '2:00 PM'"""
    h, m = value.split(":")
    hour = int(h)
    ampm = "PM" if hour >= 12 else "AM"
    if hour == 0:
        hour = 12
    elif hour > 12:
        hour -= 12
    return f"{hour}:{m} {ampm}"


def merge_slots(slots: list[TimeSlot]) -> list[TimeSlot]:
    """Merge overlapping or touching slots, sorted by start."""
    if len(slots) <= 1:
        return list(slots)
    ordered = sorted(slots, key=lambda s: time_to_minutes(s.start))
    merged = [TimeSlot(ordered[0].start, ordered[0].end, ordered[0].booking_id)]
    for slot in ordered[1:]:
        last = merged[-1]
        if time_to_minutes(slot.start) <= time_to_minutes(last.end):
            if time_to_minutes(slot.end) > time_to_minutes(last.end):
                last.end = slot.end
        else:
            merged.append(TimeSlot(slot.start, slot.end, slot.booking_id))
    return merged


def booking_slot(start_time: str, duration_minutes: int, booking_id: str | None = None) -> TimeSlot:
    """Half-hour aligned slot covering a booking, clamped to the end of its day."""
    start_mins = time_to_minutes(start_time)
    end_mins = start_mins + duration_minutes
    if end_mins >= MINUTES_PER_DAY:
        end = "23:59"
    else:
        end = snap_to_half_hour(minutes_to_time(end_mins), round_up=True)
    return TimeSlot(start=snap_to_half_hour(start_time), end=end, booking_id=booking_id)


def evaluate_day(day: DayRules | None, start_time: str, duration_minutes: int) -> AvailabilityConflict:
    """Check a booking window against the day's availability record."""
    if day is None:
        return AvailabilityConflict.none()

    start_mins = time_to_minutes(start_time)
    effective_end = min(start_mins + duration_minutes, MINUTES_PER_DAY)
    status = AvailabilityStatus(day.status)

    if status == AvailabilityStatus.OFF:
        return AvailabilityConflict(True, "This day is marked as a Day Off.", day_status=status.value)

    if status == AvailabilityStatus.BUSY:
        return AvailabilityConflict(True, "This day is marked as Busy.", day_status=status.value)

    if status == AvailabilityStatus.LIMITED:
        in_open_slot = any(
            start_mins >= time_to_minutes(slot.start) and effective_end <= time_to_minutes(slot.end)
            for slot in day.open_slots
        )
        if not in_open_slot:
            return AvailabilityConflict(
                True,
                "This time is outside your open availability windows.",
                day_status=status.value,
            )
        return AvailabilityConflict.none()

    if day.start_time and day.end_time:
        if start_mins < time_to_minutes(day.start_time) or effective_end > time_to_minutes(day.end_time):
            return AvailabilityConflict(
                True,
                "This booking falls outside your available hours "
                f"({format_time12(day.start_time)} - {format_time12(day.end_time)}).",
                day_status=status.value,
            )
    return AvailabilityConflict.none()
