"""The closed module table and its privilege classification.

Low-privileged modules only reshape events that are already in the
calendar. Everything else reaches the network or the filesystem with
configured values (``add-url`` can be abused for server-side request
forgery, ``add-file`` for local file disclosure, ``save-to-file`` for file
overwrite) and must only be configurable by fully trusted actors. The
authorization layer enforces this using :func:`is_low_privileged`.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from icalrelay.errors import UnknownModule
from icalrelay.modules.base import Effect, ModuleKind, ModuleSpec
from icalrelay.modules.delete import (
    DeleteDuplicatesParams,
    DeleteIdParams,
    DeleteSummaryRegexParams,
    DeleteTimeframeParams,
    delete_duplicates,
    delete_id,
    delete_summary_regex,
    delete_timeframe,
)
from icalrelay.modules.edit import (
    EditIdParams,
    EditSummaryRegexParams,
    edit_id,
    edit_summary_regex,
)
from icalrelay.modules.persist import SaveToFileParams, save_to_file
from icalrelay.modules.reminder import AddReminderParams, add_reminder
from icalrelay.modules.sources import AddFileParams, AddUrlParams, add_file, add_url

_SPECS = (
    ModuleSpec(
        ModuleKind.DELETE_BYSUMMARY_REGEX,
        DeleteSummaryRegexParams,
        delete_summary_regex,
        Effect.DELETE,
        low_privileged=True,
        summary="Delete events whose summary matches a regex",
    ),
    ModuleSpec(
        ModuleKind.DELETE_BYID,
        DeleteIdParams,
        delete_id,
        Effect.DELETE,
        low_privileged=True,
        summary="Delete the event with the given id",
    ),
    ModuleSpec(
        ModuleKind.DELETE_TIMEFRAME,
        DeleteTimeframeParams,
        delete_timeframe,
        Effect.DELETE,
        low_privileged=True,
        summary="Delete events inside a time window, truncating recurrences",
    ),
    ModuleSpec(
        ModuleKind.DELETE_DUPLICATES,
        DeleteDuplicatesParams,
        delete_duplicates,
        Effect.DELETE,
        low_privileged=True,
        summary="Delete events with identical start, end and summary",
    ),
    ModuleSpec(
        ModuleKind.EDIT_BYID,
        EditIdParams,
        edit_id,
        Effect.EDIT,
        low_privileged=True,
        summary="Edit the event with the given id",
    ),
    ModuleSpec(
        ModuleKind.EDIT_BYSUMMARY_REGEX,
        EditSummaryRegexParams,
        edit_summary_regex,
        Effect.EDIT,
        low_privileged=True,
        summary="Edit events whose summary matches a regex",
    ),
    ModuleSpec(
        ModuleKind.ADD_URL,
        AddUrlParams,
        add_url,
        Effect.ADD,
        low_privileged=False,
        summary="Add events from a remote calendar",
    ),
    ModuleSpec(
        ModuleKind.ADD_FILE,
        AddFileParams,
        add_file,
        Effect.ADD,
        low_privileged=False,
        summary="Add events from a local calendar file",
    ),
    ModuleSpec(
        ModuleKind.SAVE_TO_FILE,
        SaveToFileParams,
        save_to_file,
        Effect.SINK,
        low_privileged=False,
        summary="Write the current calendar to a file",
    ),
    ModuleSpec(
        ModuleKind.ADD_REMINDER,
        AddReminderParams,
        add_reminder,
        Effect.EDIT,
        low_privileged=False,
        summary="Add a display reminder to every event",
    ),
)

MODULES: Mapping[ModuleKind, ModuleSpec] = MappingProxyType({s.kind: s for s in _SPECS})
_NAMES = frozenset(kind.value for kind in ModuleKind)


def is_known(name: str) -> bool:
    return name in _NAMES


def is_low_privileged(name: str) -> bool:
    """Whether a module may be configured by a restricted editor.

    Unknown names are never low-privileged.
    """
    return is_known(name) and MODULES[ModuleKind(name)].low_privileged


def get_module(name: str | ModuleKind) -> ModuleSpec:
    """Look up a module by name.

    Raises
    ------
    UnknownModule
        If *name* is not a module.
    """
    if isinstance(name, ModuleKind):
        return MODULES[name]
    if not is_known(name):
        raise UnknownModule(f"unknown module '{name}'")
    return MODULES[ModuleKind(name)]


def available_modules() -> list[str]:
    """All module names, sorted for determinism."""
    return sorted(kind.value for kind in ModuleKind)


def low_privileged_modules() -> list[str]:
    return sorted(spec.name for spec in MODULES.values() if spec.low_privileged)
