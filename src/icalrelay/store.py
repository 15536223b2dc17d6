"""Shared, lock-guarded holder of the current relay configuration.

Pipeline executions read snapshots; the cleanup task and admin operations
write through :meth:`ConfigStore.update`, one writer at a time. Writing the
configuration back to disk is delegated to the ``persist`` callback.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable
from typing import TypeVar

from icalrelay.config import RelayConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

PersistHook = Callable[[RelayConfig], None]


class ConfigStore:
    def __init__(self, config: RelayConfig, persist: PersistHook | None = None) -> None:
        self._config = config
        self._persist = persist
        self._lock = threading.Lock()

    def snapshot(self) -> RelayConfig:
        """Return a deep copy of the current configuration."""
        with self._lock:
            return copy.deepcopy(self._config)

    def update(self, mutate: Callable[[RelayConfig], T]) -> T:
        """Apply *mutate* to the live configuration under the writer lock.

        The persist hook runs afterwards, still under the lock, so two
        updates can never interleave their writes.
        """
        with self._lock:
            result = mutate(self._config)
            if self._persist is not None:
                self._persist(self._config)
            else:
                logger.debug("No persist hook configured; configuration change kept in memory")
            return result

    def replace(self, config: RelayConfig) -> None:
        """Swap in a freshly loaded configuration (e.g. after a reload)."""
        with self._lock:
            self._config = config
        logger.info("Configuration replaced")
