"""Source aggregation: ``add-url`` and ``add-file``.

Fetched calendars only contribute their events; the target's own calendar
properties (PRODID, timezone, ...) are left untouched.

These modules are privileged: they reach the network and the local
filesystem with values taken straight from configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import urlsplit

import httpx
from pydantic import Field, model_validator

from icalrelay.calendar import CalendarDocument, CalendarParseError
from icalrelay.errors import RelayError, SourceNotFound, SourceUnavailable
from icalrelay.modules.base import DEFAULT_FETCH_TIMEOUT_S, ExecutionContext, ModuleParams

logger = logging.getLogger(__name__)

HEADER_PREFIX = "header-"

T = TypeVar("T")


def merge_into(target: CalendarDocument, source: CalendarDocument) -> int:
    """Append every event of *source* to *target* and return how many were added."""
    count = 0
    for _, event in source.events():
        target.append(event.component)
        count += 1
    return count


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------


def fetch_calendar(
    url: str,
    headers: Mapping[str, str] | None = None,
    *,
    client: httpx.Client | None = None,
    timeout_s: float | None = DEFAULT_FETCH_TIMEOUT_S,
) -> CalendarDocument | None:
    """GET *url* and parse the body.

    Returns ``None`` when the source answered with a non-200 status or an
    unparseable body; both are logged and treated as an empty feed.

    Raises
    ------
    SourceUnavailable
        On transport errors and timeouts.
    """
    try:
        if client is None:
            with httpx.Client(timeout=timeout_s, follow_redirects=True) as own_client:
                response = own_client.get(url, headers=dict(headers or {}))
        else:
            response = client.get(
                url, headers=dict(headers or {}), timeout=timeout_s, follow_redirects=True
            )
    except httpx.TimeoutException as exc:
        logger.error("Timed out requesting additional URL %s: %s", url, exc)
        raise SourceUnavailable(f"timeout requesting additional URL {url}: {exc}") from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.error("Error requesting additional URL %s: %s", url, exc)
        raise SourceUnavailable(f"error requesting additional URL {url}: {exc}") from exc

    if response.status_code != 200:
        logger.warning(
            "Unexpected status '%s %s' from additional URL '%s'",
            response.status_code,
            response.reason_phrase,
            url,
        )
        logger.debug("Full response body: %s", response.text)
        return None

    try:
        return CalendarDocument.parse(response.content)
    except CalendarParseError as exc:
        logger.error("Could not parse calendar from %s: %s", url, exc)
        return None


def add_events_url(
    document: CalendarDocument,
    url: str,
    headers: Mapping[str, str] | None = None,
    ctx: ExecutionContext | None = None,
) -> int:
    ctx = ctx or ExecutionContext()
    source = fetch_calendar(url, headers, client=ctx.http_client, timeout_s=ctx.timeout_s)
    if source is None:
        return 0
    added = merge_into(document, source)
    logger.debug("Added %d events from %s", added, url)
    return added


def _add_each(items: Iterable[T], add_one: Callable[[T], int]) -> int:
    """Sum *add_one* over *items*, stopping at the first error.

    The error raised carries the number of events already added as ``delta``.
    """
    count = 0
    for item in items:
        try:
            count += add_one(item)
        except RelayError as exc:
            exc.delta = count
            raise
    return count


def add_multi_url(
    document: CalendarDocument,
    urls: Iterable[str],
    headers: Mapping[str, str] | None = None,
    ctx: ExecutionContext | None = None,
) -> int:
    """Add events from every URL in order, stopping at the first error."""
    return _add_each(urls, lambda url: add_events_url(document, url, headers, ctx))


class AddUrlParams(ModuleParams):
    url: str
    headers: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_headers(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            headers = {
                key[len(HEADER_PREFIX) :]: str(value)
                for key, value in data.items()
                if isinstance(key, str) and key.startswith(HEADER_PREFIX) and value
            }
            data["headers"] = headers
        return data


def add_url(document: CalendarDocument, params: AddUrlParams, ctx: ExecutionContext) -> int:
    return add_events_url(document, params.url, params.headers, ctx)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def load_calendar_file(filename: str | Path) -> CalendarDocument | None:
    """Read and parse a local calendar file.

    Returns ``None`` (after logging) when the file is not a calendar.

    Raises
    ------
    SourceNotFound
        If the file does not exist.
    SourceUnavailable
        If the file exists but cannot be read.
    """
    path = Path(filename)
    if not path.is_file():
        raise SourceNotFound(f"file {filename} not found")
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise SourceUnavailable(f"cannot read file {filename}: {exc}") from exc
    try:
        return CalendarDocument.parse(data)
    except CalendarParseError as exc:
        logger.error("Could not parse calendar file %s: %s", filename, exc)
        return None


def add_events_file(document: CalendarDocument, filename: str | Path) -> int:
    source = load_calendar_file(filename)
    if source is None:
        return 0
    added = merge_into(document, source)
    logger.debug("Added %d events from %s", added, filename)
    return added


def add_multi_file(document: CalendarDocument, filenames: Iterable[str | Path]) -> int:
    """Add events from every file in order, stopping at the first error."""
    return _add_each(filenames, lambda filename: add_events_file(document, filename))


# ---------------------------------------------------------------------------
# Mixed sources
# ---------------------------------------------------------------------------


def is_url(source: str) -> bool:
    return urlsplit(source).scheme in ("http", "https")


def load_source(source: str, ctx: ExecutionContext | None = None) -> CalendarDocument | None:
    """Load a URL or a local file as a document of its own."""
    if is_url(source):
        ctx = ctx or ExecutionContext()
        return fetch_calendar(source, client=ctx.http_client, timeout_s=ctx.timeout_s)
    return load_calendar_file(source)


def add_multi_source(
    document: CalendarDocument,
    sources: Iterable[str],
    ctx: ExecutionContext | None = None,
) -> int:
    """Add events from a mix of URLs and files, stopping at the first error."""

    def _add(source: str) -> int:
        if is_url(source):
            return add_events_url(document, source, None, ctx)
        return add_events_file(document, source)

    return _add_each(sources, _add)


class AddFileParams(ModuleParams):
    filename: str


def add_file(document: CalendarDocument, params: AddFileParams, ctx: ExecutionContext) -> int:
    return add_events_file(document, params.filename)
