"""Recurrence-rule truncation.

Deleting a time window must also stop recurring events from producing new
occurrences after the window starts, otherwise a calendar client expanding
the rule would bring the deleted occurrences back.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from icalrelay.errors import InvalidParameter

logger = logging.getLogger(__name__)

# Compact UTC timestamp used inside RRULE values.
UNTIL_FORMAT = "%Y%m%dT%H%M%SZ"
UNTIL_DATE_FORMAT = "%Y%m%d"


class RRuleAction(enum.StrEnum):
    SHORTENED = "shortened"
    UNCHANGED = "unchanged"
    COUNT_UNSUPPORTED = "count-unsupported"
    UNTIL_ADDED = "until-added"


@dataclass(frozen=True)
class RRuleEdit:
    rule: str
    action: RRuleAction

    @property
    def changed(self) -> bool:
        return self.action in (RRuleAction.SHORTENED, RRuleAction.UNTIL_ADDED)


def parse_rule(rule: str) -> dict[str, str]:
    """Split ``KEY=VALUE;...`` into a dict; the last duplicate key wins."""
    parts: dict[str, str] = {}
    for part in rule.split(";"):
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise InvalidParameter(f"invalid recurrence rule part {part!r} in {rule!r}")
        parts[key] = value
    return parts


def format_rule(parts: dict[str, str]) -> str:
    return "".join(f"{key}={value};" for key, value in parts.items())


def format_until(instant: datetime) -> str:
    # strftime does not zero-pad years below 1000 on every platform.
    t = instant.astimezone(UTC)
    return f"{t.year:04d}{t.month:02d}{t.day:02d}T{t.hour:02d}{t.minute:02d}{t.second:02d}Z"


def parse_until(value: str) -> datetime:
    """Parse an UNTIL value; a bare date means midnight UTC."""
    fmt = UNTIL_DATE_FORMAT if len(value) == 8 else UNTIL_FORMAT
    try:
        return datetime.strptime(value, fmt).replace(tzinfo=UTC)
    except ValueError as exc:
        raise InvalidParameter(f"invalid UNTIL time {value!r}: {exc}") from exc


def truncate_rrule(rule: str, cutoff: datetime) -> RRuleEdit:
    """End *rule* at *cutoff* unless it already ends on or before it.

    COUNT-bounded rules are left alone: computing an equivalent count is not
    supported.
    """
    parts = parse_rule(rule)

    if "UNTIL" in parts:
        until = parse_until(parts["UNTIL"])
        if until <= cutoff:
            return RRuleEdit(rule, RRuleAction.UNCHANGED)
        parts["UNTIL"] = format_until(cutoff)
        return RRuleEdit(format_rule(parts), RRuleAction.SHORTENED)

    if "COUNT" in parts:
        logger.warning("COUNT-bounded recurrence rule left unmodified: %s", rule)
        return RRuleEdit(rule, RRuleAction.COUNT_UNSUPPORTED)

    parts["UNTIL"] = format_until(cutoff)
    return RRuleEdit(format_rule(parts), RRuleAction.UNTIL_ADDED)
