"""Shared types for calendar modules.

Every module is described by a :class:`ModuleSpec`: a pydantic parameter
schema, the function that applies it, the effect class its delta must obey,
and whether it is safe for low-privileged editors.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from icalrelay.errors import InvalidParameter, InvariantViolation, MissingParameter
from icalrelay.timewindow import TimeBound, parse_bound

if TYPE_CHECKING:
    import httpx

    from icalrelay.calendar import CalendarDocument

DEFAULT_FETCH_TIMEOUT_S = 30.0


class ModuleKind(enum.StrEnum):
    """The closed set of modules. Adding one is a code change."""

    DELETE_BYSUMMARY_REGEX = "delete-bysummary-regex"
    DELETE_BYID = "delete-byid"
    DELETE_TIMEFRAME = "delete-timeframe"
    DELETE_DUPLICATES = "delete-duplicates"
    EDIT_BYID = "edit-byid"
    EDIT_BYSUMMARY_REGEX = "edit-bysummary-regex"
    ADD_URL = "add-url"
    ADD_FILE = "add-file"
    SAVE_TO_FILE = "save-to-file"
    ADD_REMINDER = "add-reminder"


class Effect(enum.StrEnum):
    """What a module may do to the event count."""

    DELETE = "delete"  # delta <= 0
    EDIT = "edit"  # delta == 0
    ADD = "add"  # delta >= 0
    SINK = "sink"  # delta == 0, document untouched


def check_delta(effect: Effect, delta: int, module: str) -> int:
    """Return *delta* unchanged, or raise if it is outside *effect*'s range."""
    if effect is Effect.DELETE and delta > 0:
        raise InvariantViolation(f"deletion module '{module}' returned positive delta {delta}")
    if effect is Effect.ADD and delta < 0:
        raise InvariantViolation(f"addition module '{module}' returned negative delta {delta}")
    if effect in (Effect.EDIT, Effect.SINK) and delta != 0:
        raise InvariantViolation(f"module '{module}' must not change the event count ({delta})")
    return delta


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ExecutionContext:
    """Per-execution collaborators handed to every module.

    ``http_client`` is optional; when absent ``add-url`` opens a short-lived
    client with ``timeout_s``.
    """

    http_client: httpx.Client | None = None
    timeout_s: float | None = DEFAULT_FETCH_TIMEOUT_S
    clock: Callable[[], datetime] = field(default=_utcnow)

    def now(self) -> datetime:
        return self.clock()


# ---------------------------------------------------------------------------
# Parameter schemas
# ---------------------------------------------------------------------------


class ModuleParams(BaseModel):
    """Base schema: hyphenated keys, empty strings count as absent."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        arbitrary_types_allowed=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None and v != ""}
        return data


def time_bound_validator(*fields: str):
    """Build a ``field_validator`` parsing RFC 3339 / ``now`` bounds."""

    def _parse(cls, value: Any, info) -> TimeBound | None:
        if value is None or isinstance(value, datetime):
            return value
        return parse_bound(str(value), name=info.field_name)

    return field_validator(*fields, mode="before")(_parse)


def validate_params(schema: type[ModuleParams], params: Mapping[str, Any], module: str):
    """Validate a raw parameter bag, translating pydantic errors to the taxonomy."""
    try:
        return schema.model_validate(dict(params))
    except ValidationError as exc:
        errors = exc.errors()
        for err in errors:
            if err["type"] == "missing":
                raise MissingParameter(str(err["loc"][0]), module=module) from None
        err = errors[0]
        loc = ".".join(str(p) for p in err["loc"])
        cause = err.get("ctx", {}).get("error")
        detail = str(cause) if cause is not None else err["msg"]
        if not loc:
            raise InvalidParameter(f"invalid parameters for module '{module}': {detail}") from None
        raise InvalidParameter(
            f"invalid parameter '{loc}' for module '{module}': {detail}"
        ) from None


# ---------------------------------------------------------------------------
# Overwrite policy
# ---------------------------------------------------------------------------


class OverwriteMode(enum.StrEnum):
    TRUE = "true"
    FALSE = "false"
    FILL_EMPTY = "fillempty"


def apply_overwrite(current: str | None, new: str, mode: OverwriteMode) -> str | None:
    """Return the value a field should take, or ``None`` to leave it unchanged.

    A field that does not exist yet is always created with *new*.
    """
    if current is None or mode is OverwriteMode.TRUE:
        return new
    if mode is OverwriteMode.FALSE:
        return f"{current}; {new}"
    if current == "":
        return new
    return None


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------

# Unit -> microseconds.
_GO_DURATION_UNITS = {
    "ns": 0.001,
    "us": 1.0,
    "µs": 1.0,
    "ms": 1_000.0,
    "s": 1_000_000.0,
    "m": 60_000_000.0,
    "h": 3_600_000_000.0,
}
_GO_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_GO_DURATION = re.compile(r"[-+]?(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|ms|s|m|h))+")


def parse_go_duration(value: str) -> timedelta:
    """Parse a signed duration such as ``1h30m``, ``-15m`` or ``1.5h``."""
    text = value.strip()
    if text in ("0", "+0", "-0"):
        return timedelta(0)
    if not _GO_DURATION.fullmatch(text):
        raise InvalidParameter(f"invalid duration {value!r}")
    sign = -1 if text.startswith("-") else 1
    micros = sum(
        float(number) * _GO_DURATION_UNITS[unit]
        for number, unit in _GO_DURATION_PART.findall(text)
    )
    return timedelta(microseconds=sign * micros)


# ---------------------------------------------------------------------------
# Module spec
# ---------------------------------------------------------------------------

ModuleFunc = Callable[["CalendarDocument", Any, ExecutionContext], int]


@dataclass(frozen=True)
class ModuleSpec:
    kind: ModuleKind
    schema: type[ModuleParams]
    apply: ModuleFunc
    effect: Effect
    low_privileged: bool
    summary: str = ""

    @property
    def name(self) -> str:
        return self.kind.value
