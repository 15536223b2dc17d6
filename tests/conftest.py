"""Shared fixtures for the icalrelay test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from icalrelay.calendar import CalendarDocument
from icalrelay.modules import ExecutionContext

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

VTIMEZONE = """BEGIN:VTIMEZONE
TZID:Europe/Berlin
BEGIN:STANDARD
DTSTART:19701025T030000
TZOFFSETFROM:+0200
TZOFFSETTO:+0100
RRULE:FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU
END:STANDARD
END:VTIMEZONE"""


def vevent(
    uid: str,
    summary: str | None = None,
    start: str | None = "20240105T100000Z",
    end: str | None = "20240105T110000Z",
    *,
    rrule: str | None = None,
    description: str | None = None,
    location: str | None = None,
) -> str:
    lines = ["BEGIN:VEVENT", f"UID:{uid}", "DTSTAMP:20240101T000000Z"]
    if summary is not None:
        lines.append(f"SUMMARY:{summary}")
    if description is not None:
        lines.append(f"DESCRIPTION:{description}")
    if location is not None:
        lines.append(f"LOCATION:{location}")
    if start is not None:
        lines.append(f"DTSTART:{start}")
    if end is not None:
        lines.append(f"DTEND:{end}")
    if rrule is not None:
        lines.append(f"RRULE:{rrule}")
    lines.append("END:VEVENT")
    return "\n".join(lines)


def vcalendar(*events: str, prodid: str = "-//test//test//EN", timezone: bool = False) -> str:
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", f"PRODID:{prodid}"]
    if timezone:
        lines.append(VTIMEZONE)
    lines.extend(events)
    lines.append("END:VCALENDAR")
    return "\r\n".join("\n".join(lines).split("\n")) + "\r\n"


@pytest.fixture
def make_event() -> Callable[..., str]:
    return vevent


@pytest.fixture
def make_calendar() -> Callable[..., str]:
    return vcalendar


@pytest.fixture
def make_document() -> Callable[..., CalendarDocument]:
    def _make(*events: str, **kwargs) -> CalendarDocument:
        return CalendarDocument.parse(vcalendar(*events, **kwargs))

    return _make


@pytest.fixture
def ctx() -> ExecutionContext:
    return ExecutionContext(clock=lambda: FIXED_NOW)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


def _reset_otel_global_state():
    trace._TRACER_PROVIDER_SET_ONCE = trace.Once()
    trace._TRACER_PROVIDER = None


@pytest.fixture
def span_exporter():
    """Install an in-memory TracerProvider for one test."""
    _reset_otel_global_state()
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    yield exporter
    provider.shutdown()
    _reset_otel_global_state()
