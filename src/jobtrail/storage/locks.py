from __future__ import annotations

import fcntl
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from jobtrail.errors import StorageError

logger = logging.getLogger(__name__)


class ManifestLock:
    """Exclusive lock for one document path.

    Threads in this process serialize on an RLock; other processes are kept out
    with an advisory flock on ``<document>.lock``. The flock is taken only by the
    outermost acquisition, so batch operations may call single-item helpers that
    lock the same document again.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock_path = path.with_suffix(path.suffix + ".lock")
        self._mutex = threading.RLock()
        self._depth = 0
        self._handle: IO[str] | None = None

    def acquire(self) -> None:
        self._mutex.acquire()
        if self._depth == 0:
            try:
                self._lock_path.parent.mkdir(parents=True, exist_ok=True)
                self._handle = open(self._lock_path, "w", encoding="utf-8")
                fcntl.flock(self._handle.fileno(), fcntl.LOCK_EX)
            except OSError as exc:
                if self._handle is not None:
                    self._handle.close()
                    self._handle = None
                self._mutex.release()
                raise StorageError(f"Could not lock {self.path}: {exc}") from exc
        self._depth += 1

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._handle is not None:
            try:
                fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
            finally:
                self._handle.close()
                self._handle = None
        self._mutex.release()

    @contextmanager
    def hold(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()


_REGISTRY: dict[Path, ManifestLock] = {}
_REGISTRY_GUARD = threading.Lock()


def lock_for(path: Path) -> ManifestLock:
    key = Path(path).resolve()
    with _REGISTRY_GUARD:
        lock = _REGISTRY.get(key)
        if lock is None:
            lock = ManifestLock(key)
            _REGISTRY[key] = lock
            logger.debug("Created manifest lock for %s", key)
        return lock
