"""Unit tests for the availability-check executor."""

import re
from datetime import date
from unittest.mock import AsyncMock

import pytest

from chatflow.executors.availability import INVALID_DATE_MESSAGE, execute_check_availability
from chatflow.executors.base import Branch
from chatflow.services.availability_generator import AvailabilityResult, BusinessHours, TimeSlot


def make_result(day, starts):
    slots = [
        TimeSlot(start_time=start, end_time=end)
        for start, end in starts
    ]
    return AvailabilityResult(
        date=day,
        slots=slots,
        business_hours=BusinessHours("10:00", "14:00", False),
    )


@pytest.fixture
def scheduling():
    return AsyncMock()


class TestCheckAvailability:
    """Test available / not_available / error routing."""

    @pytest.mark.asyncio
    async def test_available_lists_first_slots(self, context, scheduling):
        day = date(2025, 11, 8)
        scheduling.get_availability.return_value = make_result(
            day, [("10:00", "10:30"), ("10:30", "11:00"), ("11:00", "11:30"), ("11:30", "12:00")]
        )

        result = await execute_check_availability(
            "tenant-1", context, {"date": "2025-11-08"}, scheduling=scheduling
        )

        assert result.next_branch == Branch.AVAILABLE
        assert "sábado 8 de noviembre" in result.outputs.message
        assert "1. 10:00 - 10:30" in result.outputs.message
        assert "3. 11:00 - 11:30" in result.outputs.message
        assert "11:30 - 12:00" not in result.outputs.message

        updated = result.outputs.context
        assert updated.get("hasAvailability") is True
        assert updated.get("checkedDate") == "2025-11-08"
        assert len(updated.get("availableSlots")) == 4
        assert updated.get("businessHours") == {"open_time": "10:00", "close_time": "14:00", "is_closed": False}

    @pytest.mark.asyncio
    async def test_not_available_message_has_no_times(self, context, scheduling):
        day = date(2025, 11, 9)
        scheduling.get_availability.return_value = make_result(day, [])

        result = await execute_check_availability(
            "tenant-1", context, {"date": "2025-11-09"}, scheduling=scheduling
        )

        assert result.next_branch == Branch.NOT_AVAILABLE
        assert "domingo 9 de noviembre" in result.outputs.message
        assert not re.search(r"\d{1,2}:\d{2}", result.outputs.message)
        assert result.outputs.context.get("hasAvailability") is False

    @pytest.mark.asyncio
    async def test_date_from_context(self, context, scheduling):
        scheduling.get_availability.return_value = make_result(date(2025, 12, 1), [])

        await execute_check_availability(
            "tenant-1",
            context.merge({"selectedDate": "2025-12-01", "agentId": "agent-7"}),
            {"locationId": "loc-1"},
            scheduling=scheduling,
        )

        scheduling.get_availability.assert_awaited_once_with(
            "tenant-1",
            date(2025, 12, 1),
            appointment_type_id=None,
            location_id="loc-1",
            agent_id="agent-7",
        )

    @pytest.mark.asyncio
    async def test_unparseable_date_is_error(self, context, scheduling):
        result = await execute_check_availability(
            "tenant-1", context, {"date": "el día que sea"}, scheduling=scheduling
        )

        assert result.next_branch == Branch.ERROR
        assert result.outputs.message == INVALID_DATE_MESSAGE
        assert result.outputs.context is context
        scheduling.get_availability.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_templates(self, context, scheduling):
        scheduling.get_availability.return_value = make_result(date(2025, 11, 8), [("10:00", "10:30")])

        result = await execute_check_availability(
            "tenant-1",
            context.merge({"name": "Ana"}),
            {
                "date": "2025-11-08",
                "availableMessage": "{{name}}, hay hueco el {{checked_date_label}}:\n{{slots_list}}",
                "maxSlotsToShow": 1,
            },
            scheduling=scheduling,
        )

        assert result.outputs.message == "Ana, hay hueco el sábado 8 de noviembre:\n1. 10:00 - 10:30"

    @pytest.mark.asyncio
    async def test_provider_errors_propagate_to_registry(self, context, scheduling):
        scheduling.get_availability.side_effect = RuntimeError("down")

        with pytest.raises(RuntimeError):
            await execute_check_availability(
                "tenant-1", context, {"date": "2025-11-08"}, scheduling=scheduling
            )
