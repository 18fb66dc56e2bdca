"""
Session token storage.
Holds the SID issued by qBittorrent behind a read/write lock so concurrent
requests can read it while a login replaces it.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """
    Read/write lock built on a condition variable.

    Any number of readers may hold the lock together. A writer waits until
    all readers have left and holds it exclusively. Waiting writers block new
    readers so a steady stream of reads cannot starve a login.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    @property
    def readers(self) -> int:
        """Number of readers currently holding the lock."""
        with self._cond:
            return self._readers


class SessionStore:
    """Owns the session token of a single client instance."""

    def __init__(self, token: str = ""):
        self._token = token
        self._lock = ReadWriteLock()

    def get_token(self) -> str:
        with self._lock.read_locked():
            return self._token

    def set_token(self, token: str) -> None:
        with self._lock.write_locked():
            self._token = token

    def __bool__(self) -> bool:
        return bool(self.get_token())

    def __repr__(self) -> str:
        # Never expose the token itself
        state = "set" if self else "empty"
        return f"<SessionStore token={state}>"
