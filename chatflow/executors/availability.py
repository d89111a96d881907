"""
Availability-check executor.

Looks up open slots for a date and routes to `available` / `not_available`.
The date comes from node config `date`, else context `selectedDate` / `date`,
else today in the configured timezone; Spanish expressions ("mañana",
"viernes") are accepted.

Context written:
    availableSlots   list of slot dicts (start_time, end_time, ...)
    hasAvailability  bool
    checkedDate      ISO date
    businessHours    {open_time, close_time, is_closed}

The not_available message deliberately carries no times.
"""

import logging
from typing import Any, Mapping

from chatflow.executors.base import Branch, ExecutionResult, config_value
from chatflow.services.scheduling import SchedulingProvider
from chatflow.state.context import ExecutionContext
from chatflow.utils.date_parser import format_date_spanish, parse_natural_date, today_in

logger = logging.getLogger(__name__)

DEFAULT_SLOTS_TO_SHOW = 3

AVAILABLE_TEMPLATE = (
    "Tenemos disponibilidad para el {{checked_date_label}}. "
    "Estos son algunos horarios:\n{{slots_list}}"
)
NOT_AVAILABLE_TEMPLATE = (
    "Lo siento, no hay horarios disponibles para el {{checked_date_label}}. "
    "¿Quieres probar con otra fecha?"
)
INVALID_DATE_MESSAGE = (
    "No pude entender la fecha indicada. "
    "¿Puedes escribirla de nuevo? Por ejemplo: 'mañana' o '15 de noviembre'."
)


def _ids(context: ExecutionContext, config: Mapping[str, Any]) -> dict[str, str | None]:
    return {
        "appointment_type_id": config_value(config, "appointmentTypeId", "appointment_type_id")
        or context.get("appointmentTypeId"),
        "location_id": config_value(config, "locationId", "location_id") or context.get("locationId"),
        "agent_id": config_value(config, "agentId", "agent_id") or context.get("agentId"),
    }


async def execute_check_availability(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
    *,
    scheduling: SchedulingProvider,
    timezone: str = "Europe/Madrid",
) -> ExecutionResult:
    """
    Check schedule availability for one date.

    Args:
        tenant_id: Tenant whose schedule is queried
        context: Current execution context
        config: Node config (date, appointmentTypeId, locationId, agentId,
            maxSlotsToShow, availableMessage, notAvailableMessage)
        scheduling: Scheduling provider
        timezone: Timezone that "today" is evaluated in

    Returns:
        ExecutionResult with branch available / not_available / error
    """
    today = today_in(timezone)
    raw_date = config_value(config, "date") or context.get("selectedDate") or context.get("date")

    try:
        day = parse_natural_date(str(raw_date), today) if raw_date else today
    except ValueError:
        logger.info(
            f"Unparseable date '{raw_date}'",
            extra={"tenant_id": tenant_id, "session_id": context.session_id},
        )
        return ExecutionResult.of(Branch.ERROR, INVALID_DATE_MESSAGE, context)

    result = await scheduling.get_availability(tenant_id, day, **_ids(context, config))

    slots = [slot.to_dict() for slot in result.slots]
    updated = context.merge({
        "availableSlots": slots,
        "hasAvailability": bool(slots),
        "checkedDate": day.isoformat(),
        "businessHours": result.business_hours.to_dict(),
    })

    display = {"checked_date_label": format_date_spanish(day)}

    if not slots:
        template = config_value(config, "notAvailableMessage", "not_available_message",
                                default=NOT_AVAILABLE_TEMPLATE)
        return ExecutionResult.of(Branch.NOT_AVAILABLE, updated.render(template, display), updated)

    max_slots = int(config_value(config, "maxSlotsToShow", "max_slots_to_show",
                                 default=DEFAULT_SLOTS_TO_SHOW))
    display["slots_list"] = "\n".join(
        f"{index}. {slot.label}" for index, slot in enumerate(result.slots[:max_slots], start=1)
    )
    template = config_value(config, "availableMessage", "available_message",
                            default=AVAILABLE_TEMPLATE)
    return ExecutionResult.of(Branch.AVAILABLE, updated.render(template, display), updated)
