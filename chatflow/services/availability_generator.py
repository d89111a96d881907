"""
Appointment slot generation.

Given a tenant's business hours, date exceptions, appointment settings,
existing appointments and (optionally) an agent's weekly availability, build
the list of bookable slots for one day.

Algorithm:
1. Closed weekday (or no hours configured) -> no slots
2. Exception for the date: closed -> no slots, open -> its hours replace the weekday's
3. Walk from opening time in steps of duration + buffer while a full
   appointment still fits before closing time
4. Drop slots inside the minimum notice window (today only), outside the
   agent's availability ranges, or overlapping an existing appointment
5. Cap the result with the max daily appointments setting
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

AGENT_DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


@dataclass(frozen=True)
class TimeSlot:
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    start_datetime: str | None = None  # ISO
    end_datetime: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "start_datetime": self.start_datetime,
            "end_datetime": self.end_datetime,
        }

    @property
    def label(self) -> str:
        return f"{self.start_time} - {self.end_time}"


@dataclass(frozen=True)
class BusinessHours:
    open_time: str = "00:00"
    close_time: str = "00:00"
    is_closed: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "open_time": self.open_time,
            "close_time": self.close_time,
            "is_closed": self.is_closed,
        }


@dataclass(frozen=True)
class AvailabilityResult:
    date: date
    slots: list[TimeSlot]
    business_hours: BusinessHours
    is_exception_day: bool = False


@dataclass(frozen=True)
class HoursException:
    open_time: str | None = None
    close_time: str | None = None
    is_closed: bool = True


@dataclass
class AppointmentSettings:
    appointment_duration: int = 30
    buffer_time: int = 0
    max_daily_appointments: int | None = None
    min_notice_minutes: int = 60


@dataclass(frozen=True)
class AppointmentType:
    id: str
    duration: int
    buffer_time: int = 0
    max_daily_appointments: int | None = None


@dataclass(frozen=True)
class BookedInterval:
    start_time: str
    end_time: str


@dataclass
class DaySchedule:
    """Everything slot generation needs for one day."""

    hours: BusinessHours | None
    exception: HoursException | None = None
    settings: AppointmentSettings = field(default_factory=AppointmentSettings)
    appointment_type: AppointmentType | None = None
    booked: list[BookedInterval] = field(default_factory=list)
    agent_availability: dict[str, Any] | None = None


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")[:2]
    return time(int(hour), int(minute))


def _agent_allows(agent_availability: dict[str, Any] | None, start: datetime, end: datetime) -> bool:
    """Slot must sit entirely inside one of the agent's ranges for that weekday."""
    if not agent_availability:
        return True

    day = agent_availability.get(AGENT_DAY_NAMES[start.weekday()])
    if not day or not day.get("enabled"):
        return False

    start_hhmm, end_hhmm = start.strftime("%H:%M"), end.strftime("%H:%M")
    for agent_slot in day.get("slots") or []:
        if start_hhmm >= agent_slot["start"] and end_hhmm <= agent_slot["end"]:
            return True
    return False


def _overlaps(start: datetime, end: datetime, day: date, booked: list[BookedInterval]) -> bool:
    for interval in booked:
        booked_start = datetime.combine(day, _parse_hhmm(interval.start_time))
        booked_end = datetime.combine(day, _parse_hhmm(interval.end_time))
        if start < booked_end and end > booked_start:
            return True
    return False


def generate_availability(
    day: date,
    schedule: DaySchedule,
    now: datetime | None = None,
) -> AvailabilityResult:
    """
    Generate bookable slots for a day.

    Args:
        day: Date to generate slots for
        schedule: Hours, settings and bookings for that day
        now: Current local time (naive); used for the minimum notice window

    Returns:
        AvailabilityResult with slots in chronological order
    """
    now = now or datetime.now()

    if schedule.hours is None or schedule.hours.is_closed:
        hours = schedule.hours or BusinessHours()
        return AvailabilityResult(
            date=day,
            slots=[],
            business_hours=BusinessHours(hours.open_time, hours.close_time, True),
        )

    exception = schedule.exception
    if exception is not None and exception.is_closed:
        return AvailabilityResult(
            date=day,
            slots=[],
            business_hours=BusinessHours(
                exception.open_time or "00:00", exception.close_time or "00:00", True
            ),
            is_exception_day=True,
        )

    if exception is not None and exception.open_time and exception.close_time:
        open_time, close_time = exception.open_time, exception.close_time
    else:
        open_time, close_time = schedule.hours.open_time, schedule.hours.close_time

    settings = schedule.settings
    appointment_type = schedule.appointment_type
    duration = appointment_type.duration if appointment_type else settings.appointment_duration
    buffer_time = appointment_type.buffer_time if appointment_type else settings.buffer_time

    opens_at = datetime.combine(day, _parse_hhmm(open_time))
    closes_at = datetime.combine(day, _parse_hhmm(close_time))
    total_minutes = int((closes_at - opens_at).total_seconds() // 60)
    step = duration + buffer_time
    min_notice_at = now + timedelta(minutes=settings.min_notice_minutes)

    slots: list[TimeSlot] = []
    minute = 0
    while step > 0 and minute <= total_minutes - duration:
        start = opens_at + timedelta(minutes=minute)
        end = start + timedelta(minutes=duration)
        minute += step

        if day == now.date() and start < min_notice_at:
            continue
        if not _agent_allows(schedule.agent_availability, start, end):
            continue
        if _overlaps(start, end, day, schedule.booked):
            continue

        slots.append(
            TimeSlot(
                start_time=start.strftime("%H:%M"),
                end_time=end.strftime("%H:%M"),
                start_datetime=start.isoformat(),
                end_datetime=end.isoformat(),
            )
        )

    max_daily = (
        appointment_type.max_daily_appointments
        if appointment_type and appointment_type.max_daily_appointments
        else settings.max_daily_appointments
    )
    if max_daily is not None:
        remaining = max(0, max_daily - len(schedule.booked))
        slots = slots[:remaining]

    return AvailabilityResult(
        date=day,
        slots=slots,
        business_hours=BusinessHours(open_time, close_time, False),
        is_exception_day=exception is not None,
    )
