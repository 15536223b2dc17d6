"""Profile rendering: sources in, pipeline applied, document out."""

from __future__ import annotations

import logging

from opentelemetry import trace

from icalrelay.calendar import CalendarDocument
from icalrelay.config import RelayConfig
from icalrelay.core.logging import log_context
from icalrelay.errors import NotFound
from icalrelay.modules import (
    ErrorPolicy,
    ExecutionContext,
    PipelineResult,
    is_known,
    is_low_privileged,
    load_pipeline,
    run_pipeline,
)
from icalrelay.modules.sources import add_multi_source, load_source

logger = logging.getLogger(__name__)


def context_from_config(config: RelayConfig) -> ExecutionContext:
    return ExecutionContext(timeout_s=config.fetch.timeout_s)


def can_configure_module(config: RelayConfig, profile: str, token: str, module: str) -> bool:
    """Return whether *token* may add *module* to *profile*.

    Super tokens may configure every module. A profile's admin tokens are
    limited to the low-privileged modules.
    """
    if not token or not is_known(module) or not config.profile_exists(profile):
        return False
    if token in config.server.super_tokens:
        return True
    return token in config.profiles[profile].admin_tokens and is_low_privileged(module)


def render_profile(
    config: RelayConfig,
    name: str,
    ctx: ExecutionContext | None = None,
    policy: ErrorPolicy = ErrorPolicy.ABORT,
) -> tuple[CalendarDocument, PipelineResult]:
    """Build the calendar served for profile *name*.

    The first source becomes the base document, so its calendar properties
    and time zones are kept; the remaining sources only contribute events.

    Raises
    ------
    NotFound
        If no such profile is configured.
    RelayError
        If a source cannot be loaded or the module list is invalid.
    """
    profile = config.profiles.get(name)
    if profile is None:
        raise NotFound(f"profile '{name}' not found")

    ctx = ctx or context_from_config(config)
    tracer = trace.get_tracer("icalrelay")
    with log_context(profile=name):
        with tracer.start_as_current_span("icalrelay.render") as span:
            span.set_attribute("profile.name", name)
            # Invalid module parameters fail before any source is fetched.
            invocations = load_pipeline(profile.modules)

            document = None
            if profile.sources:
                document = load_source(profile.sources[0], ctx)
            if document is None:
                document = CalendarDocument.empty()
            add_multi_source(document, profile.sources[1:], ctx)
            logger.debug(
                "Loaded %d events from %d source(s)",
                document.event_count(),
                len(profile.sources),
            )

            result = run_pipeline(document, invocations, ctx, policy=policy)
            span.set_attribute("pipeline.delta", result.delta)
            if not result.ok:
                span.set_status(trace.StatusCode.ERROR, str(result.errors[0]))

    logger.info(
        "Rendered profile %s: %d events, delta %d", name, document.event_count(), result.delta
    )
    return document, result
