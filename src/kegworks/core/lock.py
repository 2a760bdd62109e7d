"""Mutual exclusion for operations that mutate the shared prefix."""

from __future__ import annotations

import fcntl
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from kegworks.core.logging import get_logger

log = get_logger(__name__)


class PrefixLock:
    """Re-entrant lock serializing link-phase file operations.

    Threads of one process are serialized by an RLock; processes sharing the
    prefix by an advisory `flock` on `path`, taken once by the outermost
    holder.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._rlock = threading.RLock()
        self._depth = 0
        self._handle: IO[str] | None = None

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._rlock:
            if self._depth == 0:
                self._acquire_file()
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release_file()

    def _acquire_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # append mode never truncates a lock file held by another process
        handle = open(self.path, "a")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        except OSError:
            handle.close()
            raise
        self._handle = handle
        log.debug("prefix_lock_acquired", path=str(self.path))

    def _release_file(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
        log.debug("prefix_lock_released", path=str(self.path))
