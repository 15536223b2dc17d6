"""Deletion modules.

All of them collect the positions to remove while reading the document and
drop them in a single :meth:`CalendarDocument.remove_components` call. The
returned delta is the negated number of removed events.
"""

from __future__ import annotations

import logging
import re

from pydantic import Field, model_validator

from icalrelay.calendar import CalendarDocument
from icalrelay.errors import InvariantViolation, MissingParameter
from icalrelay.modules.base import ExecutionContext, ModuleParams, time_bound_validator
from icalrelay.rrule import RRuleAction, truncate_rrule
from icalrelay.timewindow import TimeBound, TimeWindow

logger = logging.getLogger(__name__)


def _removed_delta(document: CalendarDocument, positions: list[int], module: str) -> int:
    delta = -document.remove_components(positions)
    if delta > 0:
        raise InvariantViolation(f"{module}: computed positive delta {delta}")
    return delta


# ---------------------------------------------------------------------------
# delete-bysummary-regex
# ---------------------------------------------------------------------------


class DeleteSummaryRegexParams(ModuleParams):
    regex: re.Pattern[str]
    from_: TimeBound | None = Field(default=None, alias="from")
    until: TimeBound | None = None

    parse_bounds = time_bound_validator("from_", "until")


def delete_summary_regex(
    document: CalendarDocument, params: DeleteSummaryRegexParams, ctx: ExecutionContext
) -> int:
    """Remove every event whose summary matches ``regex``.

    The ``from``/``until`` filter only applies when both bounds are set; a
    single bound is ignored.
    """
    window: TimeWindow | None = None
    if params.from_ is not None and params.until is not None:
        window = TimeWindow.resolve(params.from_, params.until, now=ctx.now)
    elif params.from_ is not None or params.until is not None:
        logger.warning(
            "delete-bysummary-regex: only one of 'from'/'until' given, time filter ignored"
        )

    positions = []
    for position, event in document.events():
        if window is not None and not window.contains(event.start):
            continue
        summary = event.summary or ""
        if params.regex.search(summary):
            logger.debug("Excluding event %r with id %s", summary, event.id)
            positions.append(position)
    return _removed_delta(document, positions, "delete-bysummary-regex")


# ---------------------------------------------------------------------------
# delete-byid
# ---------------------------------------------------------------------------


class DeleteIdParams(ModuleParams):
    id: str


def delete_id(document: CalendarDocument, params: DeleteIdParams, ctx: ExecutionContext) -> int:
    """Remove the first event with the given UID. No match is not an error."""
    found = document.find_event(params.id)
    if found is None:
        logger.debug("No event with id %s found", params.id)
        return 0
    logger.debug("Excluding event with id %s", params.id)
    return _removed_delta(document, [found[0]], "delete-byid")


# ---------------------------------------------------------------------------
# delete-timeframe
# ---------------------------------------------------------------------------


class DeleteTimeframeParams(ModuleParams):
    after: TimeBound | None = None
    before: TimeBound | None = None

    parse_bounds = time_bound_validator("after", "before")

    @model_validator(mode="after")
    def _one_bound_required(self) -> DeleteTimeframeParams:
        if self.after is None and self.before is None:
            raise MissingParameter(
                "after",
                module="delete-timeframe",
                message="missing both parameters 'after' and 'before', one is required",
            )
        return self


def delete_timeframe(
    document: CalendarDocument, params: DeleteTimeframeParams, ctx: ExecutionContext
) -> int:
    """Remove events starting strictly inside ``(after, before)``.

    Recurring events first have their rule truncated at ``after`` so that the
    series cannot re-enter the deleted window.
    """
    window = TimeWindow.resolve(params.after, params.before, now=ctx.now)
    logger.debug("Deleting events between %s and %s", window.after, window.before)

    positions = []
    for position, event in document.events():
        rule = event.rrule
        if rule is not None:
            edit = truncate_rrule(rule, window.after)
            if edit.changed:
                event.set_rrule(edit.rule)
                logger.debug("RRULE of event %s: %s", event.id, edit.action)
            elif edit.action is RRuleAction.COUNT_UNSUPPORTED:
                logger.info("COUNT in RRULE of event %s not supported, left as is", event.id)
        if window.contains(event.start):
            logger.debug("Excluding event with id %s", event.id)
            positions.append(position)
    return _removed_delta(document, positions, "delete-timeframe")


# ---------------------------------------------------------------------------
# delete-duplicates
# ---------------------------------------------------------------------------


class DeleteDuplicatesParams(ModuleParams):
    pass


def _identity(value) -> str:
    return value.isoformat() if value is not None else ""


def delete_duplicates(
    document: CalendarDocument, params: DeleteDuplicatesParams, ctx: ExecutionContext
) -> int:
    """Collapse events sharing start, end and summary.

    The occurrence that appears last in the document survives.
    """
    seen: set[str] = set()
    positions = []
    for position, event in reversed(document.events()):
        key = _identity(event.raw_start) + _identity(event.raw_end) + (event.summary or "")
        if key in seen:
            logger.debug("Excluding duplicate event with id %s", event.id)
            positions.append(position)
        else:
            seen.add(key)
    return _removed_delta(document, positions, "delete-duplicates")
