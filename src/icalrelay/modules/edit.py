"""Field-editing modules: ``edit-byid`` and ``edit-bysummary-regex``.

Neither changes the number of events. When several events match, edits are
applied event by event; an error part-way through leaves the earlier events
edited.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

from pydantic import Field, field_validator, model_validator

from icalrelay.calendar import CalendarDocument, EventView
from icalrelay.errors import InvalidParameter
from icalrelay.modules.base import (
    ExecutionContext,
    ModuleParams,
    OverwriteMode,
    apply_overwrite,
    parse_go_duration,
    time_bound_validator,
)
from icalrelay.timewindow import TimeBound, TimeWindow, parse_rfc3339

logger = logging.getLogger(__name__)


class FieldEditParams(ModuleParams):
    """Parameters shared by both edit modules."""

    overwrite: OverwriteMode = OverwriteMode.TRUE
    new_summary: str | None = Field(default=None, alias="new-summary")
    new_description: str | None = Field(default=None, alias="new-description")
    new_location: str | None = Field(default=None, alias="new-location")
    new_start: datetime | None = Field(default=None, alias="new-start")
    new_end: datetime | None = Field(default=None, alias="new-end")

    @field_validator("new_start", "new_end", mode="before")
    @classmethod
    def _parse_instant(cls, value, info):
        if value is None or isinstance(value, datetime):
            return value
        return parse_rfc3339(str(value), name=info.field_name.replace("_", "-"))

    def text_edits(self) -> dict[str, str]:
        edits = {
            "summary": self.new_summary,
            "description": self.new_description,
            "location": self.new_location,
        }
        return {field: value for field, value in edits.items() if value is not None}


def apply_field_edits(event: EventView, params: FieldEditParams) -> None:
    """Apply the ``new-*`` parameters of *params* to *event*."""
    for field, new_value in params.text_edits().items():
        current = event.get_text(field)
        value = apply_overwrite(current, new_value, params.overwrite)
        if value is not None:
            event.set_text(field, value)
        logger.debug("Changed %s of event %s to %r", field, event.id, event.get_text(field))
    if params.new_start is not None:
        event.set_start(params.new_start)
        logger.debug("Changed start of event %s to %s", event.id, params.new_start)
    if params.new_end is not None:
        event.set_end(params.new_end)
        logger.debug("Changed end of event %s to %s", event.id, params.new_end)


# ---------------------------------------------------------------------------
# edit-byid
# ---------------------------------------------------------------------------


class EditIdParams(FieldEditParams):
    id: str


def edit_id(document: CalendarDocument, params: EditIdParams, ctx: ExecutionContext) -> int:
    """Edit the first event whose UID matches ``id``."""
    found = document.find_event(params.id)
    if found is None:
        logger.debug("No event with id %s found", params.id)
        return 0
    _, event = found
    logger.debug("Changing event with id %s", event.id)
    apply_field_edits(event, params)
    return 0


# ---------------------------------------------------------------------------
# edit-bysummary-regex
# ---------------------------------------------------------------------------


class EditSummaryRegexParams(FieldEditParams):
    regex: re.Pattern[str]
    # Lower bound. Earlier relays read it from a "start" key instead; "after"
    # matches delete-timeframe.
    after: TimeBound | None = None
    before: TimeBound | None = None
    move_time: timedelta | None = Field(default=None, alias="move-time")

    parse_bounds = time_bound_validator("after", "before")

    @field_validator("move_time", mode="before")
    @classmethod
    def _parse_move_time(cls, value):
        if value is None or isinstance(value, timedelta):
            return value
        return parse_go_duration(str(value))

    @model_validator(mode="after")
    def _move_time_exclusive(self) -> EditSummaryRegexParams:
        if self.move_time is not None and (self.new_start is not None or self.new_end is not None):
            raise InvalidParameter(
                "two exclusive params were given: 'move-time' and 'new-start'/'new-end'"
            )
        return self


def edit_summary_regex(
    document: CalendarDocument, params: EditSummaryRegexParams, ctx: ExecutionContext
) -> int:
    """Edit every event whose summary matches ``regex`` and starts inside the window."""
    window: TimeWindow | None = None
    if params.after is not None or params.before is not None:
        window = TimeWindow.resolve(params.after, params.before, now=ctx.now)
    for _, event in document.events():
        if window is not None and not window.contains(event.start):
            continue
        if not params.regex.search(event.summary or ""):
            continue
        logger.debug("Changing event with id %s", event.id)
        apply_field_edits(event, params)
        if params.move_time is not None:
            event.shift(params.move_time)
            logger.debug("Moved event %s by %s", event.id, params.move_time)
    return 0
