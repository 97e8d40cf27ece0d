from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX platforms
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class _KeyedLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


_TABLE_GUARD = threading.Lock()
_THREAD_LOCKS: dict[str, _KeyedLock] = {}


@contextmanager
def _thread_lock(key: str) -> Iterator[None]:
    # Entries live only while some thread holds or waits on the key.
    with _TABLE_GUARD:
        entry = _THREAD_LOCKS.get(key)
        if entry is None:
            entry = _KeyedLock()
            _THREAD_LOCKS[key] = entry
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _TABLE_GUARD:
            entry.holders -= 1
            if entry.holders == 0:
                del _THREAD_LOCKS[key]


@contextmanager
def staging_lock(lock_path: Path) -> Iterator[None]:
    """Hold the writer lock for one content hash.

    Threads of this process serialize on an in-memory lock keyed by the lock
    file path; other processes sharing the cache root serialize on an
    advisory ``flock`` of the same file.
    """
    key = str(lock_path)
    with _thread_lock(key):
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with lock_path.open("a+b") as handle:
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            logger.debug("staging lock acquired path=%s", lock_path)
            try:
                yield
            finally:
                if fcntl is not None:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                logger.debug("staging lock released path=%s", lock_path)
