"""
Exclusive access to the package store.

The store directory itself is flock()ed, non-blocking: a second writer
fails immediately instead of queueing behind the first. While the lock is
held, terminal-generated and termination signals are ignored so a manifest
write is never cut short.
"""
from __future__ import annotations

import errno
import fcntl
import logging
import os
import signal
import threading
from typing import Dict, Optional

from .errors import AlreadyLocked, PathError

log = logging.getLogger("pkgtools")

SHIELDED_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGQUIT, signal.SIGTERM)


class DirectoryLock:
    def __init__(self, path: str):
        self.path = path
        self._fd: Optional[int] = None

    def acquire(self) -> "DirectoryLock":
        try:
            fd = os.open(self.path, os.O_RDONLY | os.O_DIRECTORY)
        except OSError as e:
            raise PathError(f"open {self.path}: {e.strerror or e}") from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            if e.errno in (errno.EWOULDBLOCK, errno.EAGAIN):
                raise AlreadyLocked("package db already locked") from e
            raise PathError(f"flock {self.path}: {e.strerror or e}") from e
        self._fd = fd
        return self

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            log.warning("flock %s: %s", self.path, e.strerror or e)
        finally:
            os.close(fd)


class SignalShield:
    """Ignore SHIELDED_SIGNALS until restore()."""

    def __init__(self) -> None:
        self._saved: Dict[int, object] = {}

    def install(self) -> "SignalShield":
        if threading.current_thread() is not threading.main_thread():
            # dispositions can only be changed from the main thread
            log.debug("not in main thread, signals left as they are")
            return self
        for sig in SHIELDED_SIGNALS:
            self._saved[sig] = signal.signal(sig, signal.SIG_IGN)
        return self

    def restore(self) -> None:
        saved, self._saved = self._saved, {}
        for sig, handler in saved.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
