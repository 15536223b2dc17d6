"""Resolution of optional ``after``/``before`` bounds into a time window."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from icalrelay.errors import InvalidParameter

NOW = "now"

MIN_INSTANT = datetime.min.replace(tzinfo=UTC)
MAX_INSTANT = datetime.max.replace(tzinfo=UTC)

# A bound as stored in a validated module config: an instant or the literal "now".
TimeBound = datetime | str


def parse_rfc3339(value: str, *, name: str = "timestamp") -> datetime:
    """Parse an RFC 3339 timestamp; the UTC offset (or ``Z``) is required."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidParameter(f"invalid {name} {value!r}: {exc}") from exc
    if parsed.tzinfo is None:
        raise InvalidParameter(f"invalid {name} {value!r}: missing UTC offset")
    return parsed


def parse_bound(value: str | None, *, name: str) -> TimeBound | None:
    """Validate a textual bound without resolving ``now``."""
    if value is None or value == "":
        return None
    if value == NOW:
        return NOW
    return parse_rfc3339(value, name=name)


def resolve_bound(bound: TimeBound | None, *, default: datetime, now: datetime) -> datetime:
    if bound is None:
        return default
    if isinstance(bound, datetime):
        return bound
    if bound == NOW:
        return now
    return parse_rfc3339(bound)


@dataclass(frozen=True)
class TimeWindow:
    """Open interval ``(after, before)``.

    Both ends are exclusive: an event starting exactly on a bound is outside
    the window.
    """

    after: datetime = MIN_INSTANT
    before: datetime = MAX_INSTANT

    @classmethod
    def resolve(
        cls,
        after: TimeBound | None = None,
        before: TimeBound | None = None,
        *,
        now: datetime | Callable[[], datetime] | None = None,
    ) -> TimeWindow:
        if callable(now):
            now = now()
        current = now or datetime.now(UTC)
        return cls(
            after=resolve_bound(after, default=MIN_INSTANT, now=current),
            before=resolve_bound(before, default=MAX_INSTANT, now=current),
        )

    def contains(self, instant: datetime | None) -> bool:
        if instant is None:
            return False
        return self.after < instant < self.before
