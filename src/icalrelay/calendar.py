"""In-memory calendar document model.

Wraps an :class:`icalendar.Calendar` so that modules only ever see the event
attributes they operate on (id, text fields, start/end, recurrence rule,
alarms). Components other than VEVENT pass through untouched.

Removal is two-pass: callers collect the positions to drop while reading the
component list, then call :meth:`CalendarDocument.remove_components`, which
rebuilds the sequence without them. The relative order of every untouched
component is preserved.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

from icalendar import Alarm, Calendar, Component, Event, vRecur, vText

logger = logging.getLogger(__name__)

DEFAULT_PRODID = "-//icalrelay//icalrelay//EN"

# Module-facing field name -> iCalendar property name.
TEXT_FIELDS: dict[str, str] = {
    "summary": "SUMMARY",
    "description": "DESCRIPTION",
    "location": "LOCATION",
}


class CalendarParseError(ValueError):
    """Raised when calendar text cannot be parsed."""


def as_utc(value: Any) -> datetime | None:
    """Normalise a decoded DTSTART/DTEND value to an aware UTC datetime.

    All-day dates become midnight UTC and floating times are read as UTC.
    Anything else (including ``None``) yields ``None``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    return None


def _shift_value(value: date | datetime, delta: timedelta) -> date | datetime:
    # date + timedelta drops anything below a day
    if not isinstance(value, datetime) and delta % timedelta(days=1):
        return as_utc(value) + delta
    return value + delta


class EventView:
    """Accessor for a single VEVENT component."""

    __slots__ = ("component",)

    def __init__(self, component: Event) -> None:
        self.component = component

    def __repr__(self) -> str:
        return f"EventView(id={self.id!r}, summary={self.summary!r})"

    # -- identity & text ---------------------------------------------------

    @property
    def id(self) -> str:
        uid = self.component.get("UID")
        return str(uid) if uid is not None else ""

    def get_text(self, field: str) -> str | None:
        """Return a text field by module-facing name, ``None`` when absent."""
        value = self.component.get(TEXT_FIELDS[field])
        if value is None:
            return None
        if isinstance(value, list):
            value = value[0]
        return str(value)

    def set_text(self, field: str, value: str) -> None:
        self.component[TEXT_FIELDS[field]] = vText(value)

    @property
    def summary(self) -> str | None:
        return self.get_text("summary")

    @property
    def description(self) -> str | None:
        return self.get_text("description")

    @property
    def location(self) -> str | None:
        return self.get_text("location")

    # -- time --------------------------------------------------------------

    def _decoded(self, name: str) -> Any:
        if name not in self.component:
            return None
        try:
            return self.component.decoded(name)
        except (KeyError, ValueError):
            logger.debug("Unreadable %s on event %s", name, self.id)
            return None

    @property
    def raw_start(self) -> date | datetime | None:
        """DTSTART exactly as decoded (date, naive or aware datetime)."""
        return self._decoded("DTSTART")

    @property
    def raw_end(self) -> date | datetime | None:
        return self._decoded("DTEND")

    @property
    def start(self) -> datetime | None:
        return as_utc(self.raw_start)

    @property
    def end(self) -> datetime | None:
        return as_utc(self.raw_end)

    def set_start(self, value: date | datetime) -> None:
        self.component.pop("DTSTART", None)
        self.component.add("DTSTART", value)

    def set_end(self, value: date | datetime) -> None:
        self.component.pop("DTEND", None)
        self.component.add("DTEND", value)

    def shift(self, delta: timedelta) -> None:
        """Move start and end by the same amount, keeping the event span.

        All-day dates stay dates for whole-day shifts. Any finer shift turns
        them into UTC datetimes starting from midnight.
        """
        start, end = self.raw_start, self.raw_end
        if start is not None:
            self.set_start(_shift_value(start, delta))
        if end is not None:
            self.set_end(_shift_value(end, delta))

    # -- recurrence --------------------------------------------------------

    @property
    def rrule(self) -> str | None:
        """The recurrence rule as ``KEY=VALUE;...`` text, ``None`` when absent."""
        value = self.component.get("RRULE")
        if value is None:
            return None
        if isinstance(value, list):
            value = value[0]
        return value.to_ical().decode()

    def set_rrule(self, rule: str) -> None:
        """Replace every RRULE property on the event with *rule*."""
        self.component.pop("RRULE", None)
        self.component["RRULE"] = vRecur.from_ical(rule.rstrip(";"))

    # -- alarms ------------------------------------------------------------

    @property
    def alarms(self) -> list[Alarm]:
        return [c for c in self.component.subcomponents if c.name == "VALARM"]

    def add_alarm(self, trigger: timedelta, action: str = "DISPLAY") -> Alarm:
        alarm = Alarm()
        alarm.add("ACTION", action)
        alarm.add("TRIGGER", trigger)
        if action == "DISPLAY":
            alarm.add("DESCRIPTION", self.summary or "Reminder")
        self.component.add_component(alarm)
        return alarm


class CalendarDocument:
    """An ordered sequence of calendar components plus calendar metadata."""

    def __init__(self, calendar: Calendar | None = None) -> None:
        self.calendar = calendar if calendar is not None else _template()

    @classmethod
    def parse(cls, data: bytes | str) -> CalendarDocument:
        """Parse iCalendar text.

        Raises
        ------
        CalendarParseError
            If *data* is not a VCALENDAR.
        """
        try:
            parsed = Calendar.from_ical(data)
        except (ValueError, IndexError) as exc:
            raise CalendarParseError(f"invalid calendar data: {exc}") from exc
        if not isinstance(parsed, Calendar) or parsed.name != "VCALENDAR":
            raise CalendarParseError("data does not contain a VCALENDAR")
        return cls(parsed)

    @classmethod
    def empty(cls, prodid: str = DEFAULT_PRODID) -> CalendarDocument:
        return cls(_template(prodid))

    @property
    def components(self) -> list[Component]:
        """The live component list. Do not remove from it while iterating."""
        return self.calendar.subcomponents

    def events(self) -> list[tuple[int, EventView]]:
        """Return ``(position, event)`` pairs in document order."""
        return [
            (i, EventView(c))
            for i, c in enumerate(self.calendar.subcomponents)
            if c.name == "VEVENT"
        ]

    def event_count(self) -> int:
        return sum(1 for c in self.calendar.subcomponents if c.name == "VEVENT")

    def find_event(self, uid: str) -> tuple[int, EventView] | None:
        """Return the first event whose UID equals *uid*."""
        for position, event in self.events():
            if event.id == uid:
                return position, event
        return None

    def append(self, component: Component) -> None:
        self.calendar.add_component(component)

    def remove(self, position: int) -> None:
        """Remove the component at *position*.

        Positions below *position* keep their meaning, so this is only safe
        inside a reverse iteration. Prefer :meth:`remove_components`.
        """
        del self.calendar.subcomponents[position]

    def remove_components(self, positions: Iterable[int]) -> int:
        """Drop every component at *positions* and return how many were removed."""
        drop = set(positions)
        if not drop:
            return 0
        kept = [c for i, c in enumerate(self.calendar.subcomponents) if i not in drop]
        removed = len(self.calendar.subcomponents) - len(kept)
        self.calendar.subcomponents[:] = kept
        return removed

    def serialize(self) -> bytes:
        return self.calendar.to_ical()

    def write(self, path: str | Path) -> None:
        """Write the serialized calendar to *path* with owner-only permissions."""
        target = Path(path)
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(self.serialize())


def _template(prodid: str = DEFAULT_PRODID) -> Calendar:
    cal = Calendar()
    cal.add("PRODID", prodid)
    cal.add("VERSION", "2.0")
    return cal
