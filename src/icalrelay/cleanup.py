"""Background removal of expired module entries.

A module entry may carry an ``expires`` parameter (RFC 3339). Once that
instant has passed, the entry is dropped from its profile and the updated
configuration is persisted through the :class:`~icalrelay.store.ConfigStore`.

The task runs on its own schedule, unsynchronised with pipeline executions:
a module may still be evaluated once after it expired.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from icalrelay.config import DEFAULT_CLEANUP_INTERVAL_S, MIN_CLEANUP_INTERVAL_S, RelayConfig
from icalrelay.errors import InvalidParameter
from icalrelay.store import ConfigStore
from icalrelay.timewindow import parse_rfc3339

logger = logging.getLogger(__name__)

EXPIRES_KEY = "expires"


def _is_expired(module: dict[str, str], now: datetime) -> bool:
    raw = module.get(EXPIRES_KEY)
    if not raw:
        return False
    return now > parse_rfc3339(raw, name=EXPIRES_KEY)


def find_expired(config: RelayConfig, now: datetime) -> dict[str, list[int]]:
    """Map profile name to the positions of its expired module entries.

    Entries with an unparseable ``expires`` value are logged and kept.
    """
    expired: dict[str, list[int]] = {}
    for name, profile in config.profiles.items():
        for index, module in enumerate(profile.modules):
            try:
                if _is_expired(module, now):
                    expired.setdefault(name, []).append(index)
            except InvalidParameter as exc:
                logger.warning(
                    "Profile %s, module %d (%s): %s",
                    name,
                    index + 1,
                    module.get("name"),
                    exc,
                )
    return expired


def run_cleanup(store: ConfigStore, now: datetime | None = None) -> int:
    """Remove every expired module entry and return how many were removed."""
    now = now or datetime.now(UTC)
    if not find_expired(store.snapshot(), now):
        return 0

    def _remove(config: RelayConfig) -> int:
        # Recomputed under the writer lock: the snapshot may be stale.
        removed = 0
        for name, positions in find_expired(config, now).items():
            profile = config.profiles[name]
            for index in positions:
                logger.info(
                    "Removing expired module at position %d from profile %s", index + 1, name
                )
            drop = set(positions)
            profile.modules = [m for i, m in enumerate(profile.modules) if i not in drop]
            removed += len(drop)
        return removed

    return store.update(_remove)


class ConfigCleanup:
    """Periodic expired-module cleanup task.

    ``interval_s`` is floored to one second.
    """

    def __init__(
        self,
        store: ConfigStore,
        interval_s: float = DEFAULT_CLEANUP_INTERVAL_S,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._interval_s = max(float(MIN_CLEANUP_INTERVAL_S), float(interval_s))
        self._clock = clock or (lambda: datetime.now(UTC))
        self._task: asyncio.Task | None = None

    @property
    def interval_s(self) -> float:
        return self._interval_s

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self, now: datetime | None = None) -> int:
        return run_cleanup(self._store, now or self._clock())

    def start(self) -> None:
        """Start the cleanup background task."""
        if self._task is not None:
            logger.warning("Cleanup task already running")
            return
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info("Started cleanup task, interval %ss", self._interval_s)

    async def stop(self) -> None:
        """Stop the cleanup background task gracefully."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval_s)
                try:
                    removed = self.run_once()
                except Exception:
                    # Log but don't crash the loop
                    logger.exception("Cleanup pass failed")
                    continue
                if removed:
                    logger.info("Cleanup removed %d expired module(s)", removed)
        except asyncio.CancelledError:
            logger.debug("Cleanup loop cancelled")
            raise
