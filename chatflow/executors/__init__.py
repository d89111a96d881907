"""
Node executors.

build_registry() wires every executor to its provider and registers it by
node kind with the error branch the kind reports on failure:

    availability-check       available / not_available / error
    book-appointment         success / error
    reschedule-appointment   success / needReason / needDateTime / failure
    cancel-appointment       success / needReason / failure
    lead-qualification       qualified / not_qualified / error
    catalog-listing          response
    text-generation          response / error
    condition                one tag per option (or true / false)
"""

from functools import partial

from chatflow.executors.availability import execute_check_availability
from chatflow.executors.base import (
    AWAITING_INPUT_KEY,
    Branch,
    ExecutionOutputs,
    ExecutionResult,
    ExecutorRegistry,
)
from chatflow.executors.booking import (
    execute_book_appointment,
    execute_cancel_appointment,
    execute_reschedule_appointment,
)
from chatflow.executors.catalog import execute_catalog_listing
from chatflow.executors.condition import execute_condition
from chatflow.executors.lead_qualification import execute_lead_qualification
from chatflow.executors.text_generation import execute_text_generation
from chatflow.flow.models import NodeKind
from chatflow.services import Providers

AVAILABILITY_ERROR_MESSAGE = (
    "Lo siento, no pude consultar la disponibilidad en este momento. "
    "Por favor, intenta nuevamente más tarde."
)
BOOKING_ERROR_MESSAGE = (
    "Lo siento, no pude completar la reserva en este momento. "
    "Por favor, intenta nuevamente más tarde."
)

# Catalog fetches must give up before the registry timeout so the example
# catalog can still be rendered
CATALOG_FETCH_SHARE = 0.75

APPOINTMENT_FAILURE_MESSAGE = (
    "Lo siento, no pude modificar tu cita en este momento. "
    "Por favor, contacta con nosotros."
)


def build_registry(
    providers: Providers,
    timeout_seconds: float = 10.0,
    timezone: str = "Europe/Madrid",
) -> ExecutorRegistry:
    registry = ExecutorRegistry(timeout_seconds=timeout_seconds)

    registry.register(
        NodeKind.AVAILABILITY_CHECK,
        partial(execute_check_availability, scheduling=providers.scheduling, timezone=timezone),
        error_message=AVAILABILITY_ERROR_MESSAGE,
    )
    registry.register(
        NodeKind.BOOK_APPOINTMENT,
        partial(execute_book_appointment, scheduling=providers.scheduling, timezone=timezone),
        error_message=BOOKING_ERROR_MESSAGE,
        side_effecting=True,
    )
    registry.register(
        NodeKind.RESCHEDULE_APPOINTMENT,
        partial(execute_reschedule_appointment, scheduling=providers.scheduling, timezone=timezone),
        error_branch=Branch.FAILURE,
        error_message=APPOINTMENT_FAILURE_MESSAGE,
        side_effecting=True,
    )
    registry.register(
        NodeKind.CANCEL_APPOINTMENT,
        partial(execute_cancel_appointment, scheduling=providers.scheduling),
        error_branch=Branch.FAILURE,
        error_message=APPOINTMENT_FAILURE_MESSAGE,
        side_effecting=True,
    )
    registry.register(
        NodeKind.LEAD_QUALIFICATION,
        partial(execute_lead_qualification, crm=providers.crm),
        side_effecting=True,
    )
    registry.register(
        NodeKind.CATALOG_LISTING,
        partial(
            execute_catalog_listing,
            catalog=providers.catalog,
            fetch_timeout=timeout_seconds * CATALOG_FETCH_SHARE,
        ),
        error_branch=Branch.RESPONSE,
    )
    registry.register(
        NodeKind.TEXT_GENERATION,
        partial(execute_text_generation, generator=providers.text_generator),
    )
    registry.register(NodeKind.CONDITION, execute_condition)

    return registry


__all__ = [
    "AWAITING_INPUT_KEY",
    "Branch",
    "ExecutionOutputs",
    "ExecutionResult",
    "ExecutorRegistry",
    "build_registry",
]
