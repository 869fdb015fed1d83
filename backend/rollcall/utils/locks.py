"""Locking primitives shared by the ledger backends."""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class ReadWriteLock:
    """Readers/writer lock with writer preference.

    Many holders may share the lock; an exclusive holder waits for the
    shared holders to drain and blocks new ones while it waits.
    Both sides are re-entrant per thread, and the exclusive owner may also
    take the shared side. Upgrading shared to exclusive is not supported.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._local = threading.local()
        self._readers = 0
        self._writer = None
        self._writer_depth = 0
        self._writers_waiting = 0

    def _reader_depth(self) -> int:
        return getattr(self._local, 'depth', 0)

    @contextmanager
    def shared(self):
        me = threading.get_ident()
        depth = self._reader_depth()
        with self._cond:
            if self._writer != me and depth == 0:
                while self._writer is not None or self._writers_waiting:
                    self._cond.wait()
                self._readers += 1
        self._local.depth = depth + 1
        try:
            yield
        finally:
            self._local.depth = depth
            if self._writer != me and depth == 0:
                with self._cond:
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()

    @contextmanager
    def exclusive(self):
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
            else:
                if self._reader_depth():
                    raise RuntimeError('cannot upgrade a shared hold to exclusive')
                self._writers_waiting += 1
                try:
                    while self._writer is not None or self._readers:
                        self._cond.wait()
                finally:
                    self._writers_waiting -= 1
                self._writer = me
                self._writer_depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._writer_depth -= 1
                if self._writer_depth == 0:
                    self._writer = None
                    self._cond.notify_all()


class KeyedLocks:
    """One re-entrant lock per key, alive only while someone holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]
