"""``save-to-file``: write the current document to disk."""

from __future__ import annotations

import logging

from icalrelay.calendar import CalendarDocument
from icalrelay.errors import PersistenceFailure
from icalrelay.modules.base import ExecutionContext, ModuleParams

logger = logging.getLogger(__name__)


class SaveToFileParams(ModuleParams):
    file: str


def save_to_file(
    document: CalendarDocument, params: SaveToFileParams, ctx: ExecutionContext
) -> int:
    try:
        document.write(params.file)
    except OSError as exc:
        logger.error("Error writing calendar to %s: %s", params.file, exc)
        raise PersistenceFailure(f"error writing to file {params.file}: {exc}") from exc
    logger.debug("Saved calendar to %s", params.file)
    return 0
