"""``add-reminder``: attach a display alarm to every event."""

from __future__ import annotations

import logging
from datetime import timedelta

from icalendar import vDuration
from pydantic import field_validator

from icalrelay.calendar import CalendarDocument
from icalrelay.errors import InvalidParameter
from icalrelay.modules.base import ExecutionContext, ModuleParams

logger = logging.getLogger(__name__)


def parse_reminder_time(value: str) -> timedelta:
    """Parse the time part of an ISO 8601 duration (``15M``, ``1H30M``)."""
    text = value.strip().upper()
    try:
        offset = vDuration.from_ical(f"PT{text}")
    except ValueError as exc:
        raise InvalidParameter(f"invalid reminder time {value!r}") from exc
    if offset <= timedelta(0):
        raise InvalidParameter(f"reminder time must be positive, got {value!r}")
    return offset


class AddReminderParams(ModuleParams):
    time: timedelta

    @field_validator("time", mode="before")
    @classmethod
    def _parse_time(cls, value):
        if isinstance(value, timedelta):
            return value
        return parse_reminder_time(str(value))


def add_reminder(
    document: CalendarDocument, params: AddReminderParams, ctx: ExecutionContext
) -> int:
    """Add an alarm firing ``time`` before the start of every event."""
    for _, event in document.events():
        event.add_alarm(-params.time, action="DISPLAY")
        logger.debug("Added reminder to event %s", event.id)
    return 0
