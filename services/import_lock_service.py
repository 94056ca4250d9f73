"""
In-process lock registry for the import pipeline.

Named locks serialize work on one session (`session:<id>`), on one lane
(`lane:<owner>:<scope>:<type>`) and on one business's catalog writes
(`scope:<scope>`). Every acquisition waits at most the configured
timeout; contention past it is a ConcurrencyError the caller may retry.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from config.settings import get_settings
from exceptions import ConcurrencyError
from models.import_session import EntityType

logger = structlog.get_logger(__name__)


def session_lock_name(session_id: str) -> str:
    return f"session:{session_id}"


def lane_lock_name(owner_id: str, scope_id: str, entity_type: EntityType) -> str:
    return f"lane:{owner_id}:{scope_id}:{EntityType(entity_type).value}"


def scope_lock_name(scope_id: str) -> str:
    return f"scope:{scope_id}"


class ImportLockRegistry:
    """
    Thread-safe registry of named locks.

    Locks are created on first use and dropped once nobody holds or
    waits on them.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else get_settings().import_lock_timeout_seconds
        )
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            self._users[name] = self._users.get(name, 0) + 1
            return lock

    def _checkin(self, name: str) -> None:
        with self._guard:
            self._users[name] -= 1
            if self._users[name] == 0:
                del self._users[name]
                del self._locks[name]

    def is_locked(self, name: str) -> bool:
        with self._guard:
            lock = self._locks.get(name)
            return lock is not None and lock.locked()

    @contextmanager
    def hold(self, *names: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold several named locks for the duration of a block.

        Locks are taken in sorted name order so two callers asking for
        overlapping sets cannot deadlock.

        Raises:
            ConcurrencyError: A lock was not free within the timeout
        """
        wait = self.timeout_seconds if timeout is None else timeout
        ordered = sorted(set(names))
        acquired: list[tuple[str, threading.Lock]] = []

        try:
            for name in ordered:
                lock = self._checkout(name)
                if not lock.acquire(timeout=wait):
                    self._checkin(name)
                    logger.warning("import_lock_timeout", lock=name, timeout_seconds=wait)
                    raise ConcurrencyError(
                        message="Another operation is in progress; try again shortly",
                        code="LOCK_TIMEOUT",
                        details={"lock": name, "timeout_seconds": wait},
                    )
                acquired.append((name, lock))
                logger.debug("import_lock_acquired", lock=name)

            yield

        finally:
            for name, lock in reversed(acquired):
                lock.release()
                self._checkin(name)
                logger.debug("import_lock_released", lock=name)


# Singleton instance
_lock_registry: Optional[ImportLockRegistry] = None


def get_import_lock_registry() -> ImportLockRegistry:
    """Get or create the process-wide lock registry."""
    global _lock_registry
    if _lock_registry is None:
        _lock_registry = ImportLockRegistry()
    return _lock_registry
