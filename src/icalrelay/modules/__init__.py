"""Calendar transformation modules and the pipeline engine."""

from icalrelay.modules.base import ExecutionContext, ModuleKind
from icalrelay.modules.engine import (
    ErrorPolicy,
    ModuleInvocation,
    PipelineResult,
    call_module,
    load_pipeline,
    parse_invocation,
    run_pipeline,
)
from icalrelay.modules.registry import (
    MODULES,
    available_modules,
    get_module,
    is_known,
    is_low_privileged,
    low_privileged_modules,
)

__all__ = [
    "MODULES",
    "ErrorPolicy",
    "ExecutionContext",
    "ModuleInvocation",
    "ModuleKind",
    "PipelineResult",
    "available_modules",
    "call_module",
    "get_module",
    "is_known",
    "is_low_privileged",
    "load_pipeline",
    "low_privileged_modules",
    "parse_invocation",
    "run_pipeline",
]
