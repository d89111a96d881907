"""
Appointment executors: book, reschedule and cancel.

All three call the scheduling provider at most once per invocation and only
after their preconditions hold. Missing user input is not an error: it is
routed as an ordinary branch (`needDateTime`, `needReason`) and the missing
variable is recorded under `awaiting_input`.

Precondition order:
    book:        slot + date present            else error
    reschedule:  new slot -> reason (if required) -> appointmentId -> provider
    cancel:      appointmentId -> reason (if required) -> provider
"""

import logging
import re
from datetime import date
from typing import Any, Mapping

from chatflow.executors.base import (
    AWAITING_INPUT_KEY,
    Branch,
    ExecutionResult,
    config_flag,
    config_value,
)
from chatflow.services.scheduling import BookingRequest, SchedulingProvider
from chatflow.state.context import ExecutionContext
from chatflow.utils.date_parser import format_date_spanish, parse_natural_date, today_in

logger = logging.getLogger(__name__)

HHMM = re.compile(r"^(\d{1,2})[:.h](\d{2})")

BOOK_SUCCESS_TEMPLATE = "¡Listo! Tu cita quedó agendada para el {{appointment_date_label}} a las {{appointmentTime}}."
BOOK_MISSING_SLOT_MESSAGE = "Necesito que elijas una fecha y un horario antes de agendar la cita."
RESCHEDULE_SUCCESS_TEMPLATE = "Tu cita fue reprogramada para el {{appointment_date_label}} a las {{appointmentTime}}."
NEED_DATE_TIME_MESSAGE = "¿Para qué fecha y hora te gustaría reprogramar tu cita?"
NEED_RESCHEDULE_REASON_MESSAGE = "¿Podrías indicarnos el motivo del cambio de tu cita?"
RESCHEDULE_FAILURE_MESSAGE = "No encontré la cita que quieres reprogramar."
CANCEL_SUCCESS_MESSAGE = "Tu cita ha sido cancelada correctamente."
NEED_CANCEL_REASON_MESSAGE = "¿Podrías indicarnos el motivo de la cancelación?"
CANCEL_FAILURE_MESSAGE = "No encontré la cita que quieres cancelar."


def _normalize_hhmm(value: str) -> str | None:
    match = HHMM.match(value.strip())
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def resolve_selected_slot(context: ExecutionContext) -> dict[str, Any] | None:
    """
    Resolve the slot the user picked.

    `selectedTimeSlot` / `selectedSlot` may hold a slot dict, a time ("10:00",
    "10h00") or a 1-based index into `availableSlots`.

    Returns:
        Slot dict with at least start_time, or None
    """
    value = context.get("selectedTimeSlot") or context.get("selectedSlot")
    if value is None:
        return None

    available = context.get("availableSlots") or []

    if isinstance(value, Mapping):
        return dict(value) if value.get("start_time") else None

    if isinstance(value, int) and not isinstance(value, bool):
        return dict(available[value - 1]) if 1 <= value <= len(available) else None

    text = str(value).strip()
    if text.isdigit():
        index = int(text)
        return dict(available[index - 1]) if 1 <= index <= len(available) else None

    start_time = _normalize_hhmm(text)
    if start_time is None:
        return None
    for slot in available:
        if slot.get("start_time") == start_time:
            return dict(slot)
    return {"start_time": start_time, "end_time": None}


def resolve_selected_date(context: ExecutionContext, timezone: str) -> date | None:
    raw = context.get("selectedDate") or context.get("checkedDate")
    if not raw:
        return None
    try:
        return parse_natural_date(str(raw), today_in(timezone))
    except ValueError:
        return None


def _ids(context: ExecutionContext, config: Mapping[str, Any]) -> dict[str, str | None]:
    return {
        "appointment_type_id": config_value(config, "appointmentTypeId", "appointment_type_id")
        or context.get("appointmentTypeId"),
        "location_id": config_value(config, "locationId", "location_id") or context.get("locationId"),
        "agent_id": config_value(config, "agentId", "agent_id") or context.get("agentId"),
    }


async def execute_book_appointment(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
    *,
    scheduling: SchedulingProvider,
    timezone: str = "Europe/Madrid",
) -> ExecutionResult:
    """
    Book the selected slot for the customer.

    Returns:
        ExecutionResult with branch success / error
    """
    slot = resolve_selected_slot(context)
    day = resolve_selected_date(context, timezone)
    if slot is None or day is None:
        return ExecutionResult.of(Branch.ERROR, BOOK_MISSING_SLOT_MESSAGE, context)

    request = BookingRequest(
        date=day,
        start_time=slot["start_time"],
        end_time=slot.get("end_time"),
        customer_name=context.get("customerName"),
        customer_phone=context.get("customerPhone"),
        customer_email=context.get("customerEmail"),
        notes=config_value(config, "notes") or context.get("appointmentNotes"),
        **_ids(context, config),
    )
    appointment = await scheduling.book_appointment(tenant_id, request)

    logger.info(
        f"Appointment {appointment.id} booked",
        extra={"tenant_id": tenant_id, "session_id": context.session_id},
    )

    updated = context.merge({
        "appointmentId": appointment.id,
        "appointmentDate": appointment.date.isoformat(),
        "appointmentTime": appointment.start_time,
        "appointmentStatus": appointment.status,
    })
    template = config_value(config, "successMessage", "success_message", default=BOOK_SUCCESS_TEMPLATE)
    message = updated.render(template, {"appointment_date_label": format_date_spanish(appointment.date)})
    return ExecutionResult.of(Branch.SUCCESS, message, updated)


async def execute_reschedule_appointment(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
    *,
    scheduling: SchedulingProvider,
    timezone: str = "Europe/Madrid",
) -> ExecutionResult:
    """
    Move an existing appointment to the selected slot.

    Returns:
        ExecutionResult with branch success / needDateTime / needReason / failure
    """
    slot = resolve_selected_slot(context)
    day = resolve_selected_date(context, timezone)
    if slot is None or day is None:
        message = config_value(config, "needDateTimeMessage", default=NEED_DATE_TIME_MESSAGE)
        return ExecutionResult.of(
            Branch.NEED_DATE_TIME,
            message,
            context.merge({AWAITING_INPUT_KEY: "selectedTimeSlot"}),
        )

    reason = context.get("rescheduleReason")
    if config_flag(config, "requireReason", "require_reason") and not reason:
        message = config_value(config, "needReasonMessage", default=NEED_RESCHEDULE_REASON_MESSAGE)
        return ExecutionResult.of(
            Branch.NEED_REASON,
            message,
            context.merge({AWAITING_INPUT_KEY: "rescheduleReason"}),
        )

    appointment_id = context.get("appointmentId")
    if not appointment_id:
        message = config_value(config, "failureMessage", default=RESCHEDULE_FAILURE_MESSAGE)
        return ExecutionResult.of(Branch.FAILURE, message, context)

    appointment = await scheduling.reschedule_appointment(
        tenant_id,
        str(appointment_id),
        day,
        slot["start_time"],
        end_time=slot.get("end_time"),
        reason=reason,
    )

    updated = context.merge({
        "appointmentDate": appointment.date.isoformat(),
        "appointmentTime": appointment.start_time,
        "appointmentStatus": appointment.status,
        "appointmentRescheduled": True,
        AWAITING_INPUT_KEY: None,
    })
    template = config_value(config, "successMessage", default=RESCHEDULE_SUCCESS_TEMPLATE)
    message = updated.render(template, {"appointment_date_label": format_date_spanish(appointment.date)})
    return ExecutionResult.of(Branch.SUCCESS, message, updated)


async def execute_cancel_appointment(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
    *,
    scheduling: SchedulingProvider,
) -> ExecutionResult:
    """
    Cancel an existing appointment.

    Returns:
        ExecutionResult with branch success / needReason / failure
    """
    appointment_id = context.get("appointmentId")
    if not appointment_id:
        message = config_value(config, "failureMessage", default=CANCEL_FAILURE_MESSAGE)
        return ExecutionResult.of(Branch.FAILURE, message, context)

    reason = context.get("cancellationReason")
    if config_flag(config, "requireReason", "require_reason") and not reason:
        message = config_value(config, "needReasonMessage", default=NEED_CANCEL_REASON_MESSAGE)
        return ExecutionResult.of(
            Branch.NEED_REASON,
            message,
            context.merge({AWAITING_INPUT_KEY: "cancellationReason"}),
        )

    appointment = await scheduling.cancel_appointment(tenant_id, str(appointment_id), reason=reason)

    updated = context.merge({
        "appointmentStatus": appointment.status,
        "appointmentCancelled": True,
        AWAITING_INPUT_KEY: None,
    })
    message = config_value(config, "successMessage", default=CANCEL_SUCCESS_MESSAGE)
    return ExecutionResult.of(Branch.SUCCESS, updated.render(message), updated)
