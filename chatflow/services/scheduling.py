"""
Scheduling provider.

Availability, booking, rescheduling and cancellation keyed by tenant,
appointment type, location and agent identifiers.

Implementations:
- HttpSchedulingClient: talks to the scheduling API (SCHEDULING_API_URL)
- InMemorySchedulingProvider: generates slots locally from per-tenant
  business hours; used when no API is configured and in tests
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from chatflow.services.availability_generator import (
    AppointmentSettings,
    AppointmentType,
    AvailabilityResult,
    BookedInterval,
    BusinessHours,
    DaySchedule,
    HoursException,
    TimeSlot,
    generate_availability,
)
from chatflow.services.errors import ConfigurationError, ExternalServiceError
from chatflow.services.http import JsonApiClient
from shared.circuit_breaker import scheduling_breaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    date: date
    start_time: str
    end_time: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    appointment_type_id: str | None = None
    location_id: str | None = None
    agent_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Appointment:
    id: str
    date: date
    start_time: str
    end_time: str | None = None
    status: str = "scheduled"

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Appointment":
        return cls(
            id=str(payload["id"]),
            date=date.fromisoformat(str(payload["date"])[:10]),
            start_time=str(payload["start_time"])[:5],
            end_time=str(payload["end_time"])[:5] if payload.get("end_time") else None,
            status=payload.get("status", "scheduled"),
        )


class SchedulingProvider(Protocol):
    async def get_availability(
        self,
        tenant_id: str,
        day: date,
        appointment_type_id: str | None = None,
        location_id: str | None = None,
        agent_id: str | None = None,
    ) -> AvailabilityResult: ...

    async def book_appointment(self, tenant_id: str, request: BookingRequest) -> Appointment: ...

    async def reschedule_appointment(
        self,
        tenant_id: str,
        appointment_id: str,
        day: date,
        start_time: str,
        end_time: str | None = None,
        reason: str | None = None,
    ) -> Appointment: ...

    async def cancel_appointment(
        self, tenant_id: str, appointment_id: str, reason: str | None = None
    ) -> Appointment: ...


class HttpSchedulingClient(JsonApiClient):
    """Scheduling API client."""

    service_name = "scheduling"

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 10.0):
        super().__init__(base_url, scheduling_breaker, token=token, timeout=timeout)

    async def get_availability(
        self,
        tenant_id: str,
        day: date,
        appointment_type_id: str | None = None,
        location_id: str | None = None,
        agent_id: str | None = None,
    ) -> AvailabilityResult:
        params = {"date": day.isoformat()}
        for name, value in (
            ("appointment_type_id", appointment_type_id),
            ("location_id", location_id),
            ("agent_id", agent_id),
        ):
            if value:
                params[name] = value

        payload = await self.request("GET", f"/tenants/{tenant_id}/availability", params=params)
        hours = payload.get("business_hours") or {}
        return AvailabilityResult(
            date=day,
            slots=[
                TimeSlot(
                    start_time=slot["start_time"],
                    end_time=slot["end_time"],
                    start_datetime=slot.get("start_datetime"),
                    end_datetime=slot.get("end_datetime"),
                )
                for slot in payload.get("available_slots", [])
            ],
            business_hours=BusinessHours(
                open_time=hours.get("open_time", "00:00"),
                close_time=hours.get("close_time", "00:00"),
                is_closed=hours.get("is_closed", False),
            ),
            is_exception_day=payload.get("is_exception_day", False),
        )

    async def book_appointment(self, tenant_id: str, request: BookingRequest) -> Appointment:
        body = {
            "date": request.date.isoformat(),
            "start_time": request.start_time,
            "end_time": request.end_time,
            "customer_name": request.customer_name,
            "customer_phone": request.customer_phone,
            "customer_email": request.customer_email,
            "appointment_type_id": request.appointment_type_id,
            "location_id": request.location_id,
            "agent_id": request.agent_id,
            "notes": request.notes,
        }
        payload = await self.request("POST", f"/tenants/{tenant_id}/appointments", json=body)
        return Appointment.from_api(payload)

    async def reschedule_appointment(
        self,
        tenant_id: str,
        appointment_id: str,
        day: date,
        start_time: str,
        end_time: str | None = None,
        reason: str | None = None,
    ) -> Appointment:
        payload = await self.request(
            "POST",
            f"/tenants/{tenant_id}/appointments/{appointment_id}/reschedule",
            json={
                "date": day.isoformat(),
                "start_time": start_time,
                "end_time": end_time,
                "reason": reason,
            },
        )
        return Appointment.from_api(payload)

    async def cancel_appointment(
        self, tenant_id: str, appointment_id: str, reason: str | None = None
    ) -> Appointment:
        payload = await self.request(
            "POST",
            f"/tenants/{tenant_id}/appointments/{appointment_id}/cancel",
            json={"reason": reason},
        )
        return Appointment.from_api(payload)


def default_business_hours() -> dict[int, BusinessHours]:
    """Monday-Friday 09:00-18:00, Saturday 10:00-14:00, Sunday closed."""
    hours = {weekday: BusinessHours("09:00", "18:00", False) for weekday in range(5)}
    hours[5] = BusinessHours("10:00", "14:00", False)
    hours[6] = BusinessHours("00:00", "00:00", True)
    return hours


@dataclass
class TenantSchedule:
    business_hours: dict[int, BusinessHours] = field(default_factory=default_business_hours)
    exceptions: dict[date, HoursException] = field(default_factory=dict)
    settings: AppointmentSettings = field(default_factory=AppointmentSettings)
    appointment_types: dict[str, AppointmentType] = field(default_factory=dict)
    agent_availability: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class _StoredAppointment:
    appointment: Appointment
    request: BookingRequest


class InMemorySchedulingProvider:
    """
    Local scheduler built on generate_availability().

    Bookings are kept in memory per tenant, so availability reflects
    appointments booked through this provider.
    """

    def __init__(
        self,
        schedules: dict[str, TenantSchedule] | None = None,
        timezone: str = "Europe/Madrid",
    ):
        self.schedules = schedules or {}
        self.timezone = ZoneInfo(timezone)
        self.appointments: dict[str, dict[str, _StoredAppointment]] = {}

    def _schedule(self, tenant_id: str) -> TenantSchedule:
        return self.schedules.setdefault(tenant_id, TenantSchedule())

    def _day_schedule(
        self,
        tenant_id: str,
        day: date,
        appointment_type_id: str | None,
        location_id: str | None,
        agent_id: str | None,
        exclude_id: str | None = None,
    ) -> DaySchedule:
        schedule = self._schedule(tenant_id)

        appointment_type = None
        if appointment_type_id:
            appointment_type = schedule.appointment_types.get(appointment_type_id)
            if appointment_type is None:
                raise ConfigurationError(
                    "scheduling", f"appointment type '{appointment_type_id}' not found"
                )

        agent_availability = None
        if agent_id:
            if agent_id not in schedule.agent_availability:
                raise ConfigurationError("scheduling", f"agent '{agent_id}' not found")
            agent_availability = schedule.agent_availability[agent_id]

        booked = [
            BookedInterval(stored.appointment.start_time, stored.appointment.end_time or stored.appointment.start_time)
            for appointment_id, stored in self.appointments.get(tenant_id, {}).items()
            if appointment_id != exclude_id
            and stored.appointment.date == day
            and stored.appointment.status != "cancelled"
            and (location_id is None or stored.request.location_id == location_id)
            and (agent_id is None or stored.request.agent_id == agent_id)
        ]

        return DaySchedule(
            hours=schedule.business_hours.get(day.weekday()),
            exception=schedule.exceptions.get(day),
            settings=schedule.settings,
            appointment_type=appointment_type,
            booked=booked,
            agent_availability=agent_availability,
        )

    def _now(self) -> datetime:
        return datetime.now(self.timezone).replace(tzinfo=None)

    async def get_availability(
        self,
        tenant_id: str,
        day: date,
        appointment_type_id: str | None = None,
        location_id: str | None = None,
        agent_id: str | None = None,
    ) -> AvailabilityResult:
        day_schedule = self._day_schedule(
            tenant_id, day, appointment_type_id, location_id, agent_id
        )
        return generate_availability(day, day_schedule, now=self._now())

    def _find_slot(
        self, day_schedule: DaySchedule, day: date, start_time: str
    ) -> TimeSlot:
        result = generate_availability(day, day_schedule, now=self._now())
        for slot in result.slots:
            if slot.start_time == start_time:
                return slot
        raise ExternalServiceError("scheduling", f"slot {day} {start_time} is not available")

    async def book_appointment(self, tenant_id: str, request: BookingRequest) -> Appointment:
        day_schedule = self._day_schedule(
            tenant_id,
            request.date,
            request.appointment_type_id,
            request.location_id,
            request.agent_id,
        )
        slot = self._find_slot(day_schedule, request.date, request.start_time)

        appointment = Appointment(
            id=str(uuid.uuid4()),
            date=request.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
        )
        self.appointments.setdefault(tenant_id, {})[appointment.id] = _StoredAppointment(
            appointment, request
        )
        logger.info(
            f"Appointment {appointment.id} booked for {request.date} {slot.start_time}",
            extra={"tenant_id": tenant_id},
        )
        return appointment

    def _get_stored(self, tenant_id: str, appointment_id: str) -> _StoredAppointment:
        stored = self.appointments.get(tenant_id, {}).get(appointment_id)
        if stored is None:
            raise ConfigurationError("scheduling", f"appointment '{appointment_id}' not found")
        return stored

    async def reschedule_appointment(
        self,
        tenant_id: str,
        appointment_id: str,
        day: date,
        start_time: str,
        end_time: str | None = None,
        reason: str | None = None,
    ) -> Appointment:
        stored = self._get_stored(tenant_id, appointment_id)
        request = stored.request
        day_schedule = self._day_schedule(
            tenant_id,
            day,
            request.appointment_type_id,
            request.location_id,
            request.agent_id,
            exclude_id=appointment_id,
        )
        slot = self._find_slot(day_schedule, day, start_time)

        stored.appointment = replace(
            stored.appointment,
            date=day,
            start_time=slot.start_time,
            end_time=slot.end_time,
            status="rescheduled",
        )
        stored.request = replace(request, date=day, start_time=slot.start_time)
        return stored.appointment

    async def cancel_appointment(
        self, tenant_id: str, appointment_id: str, reason: str | None = None
    ) -> Appointment:
        stored = self._get_stored(tenant_id, appointment_id)
        stored.appointment = replace(stored.appointment, status="cancelled")
        return stored.appointment
