"""Module pipeline execution.

A profile's module list is validated once into :class:`ModuleInvocation`
objects (so missing or malformed parameters surface before any mutation),
then executed in order against a single document.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace

from icalrelay.calendar import CalendarDocument
from icalrelay.core.logging import log_context
from icalrelay.errors import MissingParameter, RelayError
from icalrelay.modules.base import (
    ExecutionContext,
    ModuleParams,
    ModuleSpec,
    check_delta,
    validate_params,
)
from icalrelay.modules.registry import get_module

logger = logging.getLogger(__name__)

# Keys of a configured module entry that are not module parameters.
RESERVED_KEYS = frozenset({"name", "expires"})


class ErrorPolicy(enum.StrEnum):
    """What to do when a module raises a :class:`RelayError`."""

    ABORT = "abort"
    CONTINUE = "continue"


@dataclass(frozen=True)
class ModuleInvocation:
    spec: ModuleSpec
    params: ModuleParams
    raw: Mapping[str, str] = field(default_factory=dict)
    position: int = 0

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass
class ModuleOutcome:
    name: str
    position: int
    delta: int
    error: RelayError | None = None


@dataclass
class PipelineResult:
    delta: int = 0
    outcomes: list[ModuleOutcome] = field(default_factory=list)
    aborted: bool = False

    @property
    def errors(self) -> list[RelayError]:
        return [o.error for o in self.outcomes if o.error is not None]

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_invocation(
    name: str, params: Mapping[str, Any] | None = None, *, position: int = 0
) -> ModuleInvocation:
    """Validate one module invocation.

    Raises
    ------
    UnknownModule, MissingParameter, InvalidParameter
    """
    spec = get_module(name)
    raw = {k: v for k, v in (params or {}).items() if k not in RESERVED_KEYS}
    return ModuleInvocation(
        spec=spec,
        params=validate_params(spec.schema, raw, spec.name),
        raw=raw,
        position=position,
    )


def load_pipeline(entries: Iterable[Mapping[str, Any]]) -> list[ModuleInvocation]:
    """Validate a configured module list (each entry has a ``name`` key)."""
    invocations = []
    for position, entry in enumerate(entries):
        name = entry.get("name")
        if not name:
            raise MissingParameter("name", message=f"module entry {position + 1} has no 'name'")
        invocations.append(parse_invocation(str(name), entry, position=position))
    return invocations


def call_module(
    document: CalendarDocument,
    invocation: ModuleInvocation,
    ctx: ExecutionContext | None = None,
) -> int:
    """Run a single module and return its delta.

    Raises
    ------
    RelayError
        Whatever the module raised.
    InvariantViolation
        If the delta does not fit the module's effect class.
    """
    ctx = ctx or ExecutionContext()
    spec = invocation.spec
    tracer = trace.get_tracer("icalrelay")
    with (
        log_context(module=spec.name),
        tracer.start_as_current_span("icalrelay.module") as span,
    ):
        span.set_attribute("module.name", spec.name)
        span.set_attribute("module.position", invocation.position)
        try:
            delta = spec.apply(document, invocation.params, ctx)
        except RelayError as exc:
            span.set_status(trace.StatusCode.ERROR, str(exc))
            raise
        span.set_attribute("module.delta", delta)
    return check_delta(spec.effect, delta, spec.name)


def run_pipeline(
    document: CalendarDocument,
    invocations: Sequence[ModuleInvocation],
    ctx: ExecutionContext | None = None,
    *,
    policy: ErrorPolicy = ErrorPolicy.ABORT,
) -> PipelineResult:
    """Execute *invocations* in order against *document*.

    With :attr:`ErrorPolicy.ABORT` the first :class:`RelayError` stops the
    pipeline; with :attr:`ErrorPolicy.CONTINUE` it is recorded and the next
    module runs. An :class:`~icalrelay.errors.InvariantViolation` always
    propagates.
    """
    ctx = ctx or ExecutionContext()
    result = PipelineResult()
    for invocation in invocations:
        try:
            delta = call_module(document, invocation, ctx)
        except RelayError as exc:
            logger.warning(
                "Module %s (position %d) failed: %s",
                invocation.name,
                invocation.position + 1,
                exc,
            )
            result.delta += exc.delta
            result.outcomes.append(
                ModuleOutcome(invocation.name, invocation.position, exc.delta, exc)
            )
            if policy is ErrorPolicy.ABORT:
                result.aborted = True
                break
            continue
        result.delta += delta
        result.outcomes.append(ModuleOutcome(invocation.name, invocation.position, delta))
        logger.debug("Module %s changed event count by %d", invocation.name, delta)
    return result
