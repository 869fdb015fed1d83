"""Abstract ledger store.

Every backend stores sessions, token windows, participants and attendance
records, and shares the concurrency primitives defined here:

    pair_lock(session_id, participant_id)
        shared barrier + per-pair mutex; wraps the read-decide-write of a
        redemption so two redemptions for one participant serialize.
    exclusive()
        exclusive barrier for clears and bulk moderation; no record write
        can interleave with it.

Stores hold no business rules. Each individual method is atomic; the only
invariant they enforce themselves is the one live record per pair, by
raising ``DuplicateRecord`` from ``insert_record``.
"""
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from rollcall.models import AttendanceRecord, Participant, Scope, Session, TokenWindow
from rollcall.utils.locks import KeyedLocks, ReadWriteLock


class LedgerStore(ABC):
    """Storage contract shared by the memory and SQL backends."""

    backend = 'abstract'

    def __init__(self):
        self._barrier = ReadWriteLock()
        self._pairs = KeyedLocks()
        self._counter_lock = threading.Lock()
        self._version = 0
        self._generation = 0
        self._clears: List[Tuple[Scope, datetime]] = []

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------

    @contextmanager
    def pair_lock(self, session_id: str, participant_id: str):
        with self._barrier.shared():
            with self._pairs.hold((session_id, participant_id)):
                yield

    @contextmanager
    def exclusive(self):
        with self._barrier.exclusive():
            yield

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------

    def _touch(self) -> int:
        with self._counter_lock:
            self._version += 1
            return self._version

    def note_clear(self, scope: Scope, at: datetime) -> None:
        """Remember a clear so observers can discard older views."""
        with self._counter_lock:
            self._generation += 1
            self._version += 1
            self._clears.append((scope, at))
            del self._clears[:-32]

    def clears_since(self, since: datetime) -> List[Scope]:
        with self._counter_lock:
            return [scope for scope, at in self._clears if at >= since]

    @property
    def version(self) -> int:
        with self._counter_lock:
            return self._version

    @property
    def generation(self) -> int:
        with self._counter_lock:
            return self._generation

    # ------------------------------------------------------------------
    # Sessions and token windows
    # ------------------------------------------------------------------

    @abstractmethod
    def save_session(self, session: Session) -> Session:
        """Insert or replace session metadata."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]:
        """Get session by id."""

    @abstractmethod
    def list_sessions(self, include_ended: bool = True) -> List[Session]:
        """List sessions ordered by creation time."""

    @abstractmethod
    def save_window(self, window: TokenWindow, retain: int) -> None:
        """Store a window and keep only the latest ``retain`` for its session."""

    @abstractmethod
    def list_windows(self, session_id: str) -> List[TokenWindow]:
        """Retained windows of a session, oldest first."""

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    @abstractmethod
    def save_participant(self, participant: Participant) -> Participant:
        """Insert or replace a participant."""

    @abstractmethod
    def add_participant(self, participant: Participant) -> Participant:
        """Insert a participant unless one with the same id exists; return the stored one."""

    @abstractmethod
    def get_participant(self, participant_id: str) -> Optional[Participant]:
        """Get participant by id."""

    def get_participants(self, participant_ids: Iterable[str]) -> dict:
        found = {}
        for participant_id in set(participant_ids):
            participant = self.get_participant(participant_id)
            if participant is not None:
                found[participant_id] = participant
        return found

    # ------------------------------------------------------------------
    # Attendance records
    # ------------------------------------------------------------------

    @abstractmethod
    def insert_record(self, record: AttendanceRecord) -> AttendanceRecord:
        """Insert a record; ``DuplicateRecord`` if the pair already has a live one."""

    @abstractmethod
    def update_record(self, record: AttendanceRecord) -> AttendanceRecord:
        """Replace a stored record; ``RecordNotFound`` if it is gone."""

    @abstractmethod
    def replace_live_record(self, old: AttendanceRecord, new: AttendanceRecord) -> AttendanceRecord:
        """Store the now-rejected ``old`` and insert ``new`` as one write; neither lands on failure."""

    @abstractmethod
    def get_record(self, record_id: str) -> Optional[AttendanceRecord]:
        """Get record by id."""

    @abstractmethod
    def find_live_record(self, session_id: str, participant_id: str) -> Optional[AttendanceRecord]:
        """The non-rejected record for a pair, if any."""

    @abstractmethod
    def snapshot_records(self, scope: Scope) -> List[AttendanceRecord]:
        """All records in scope from one consistent read, oldest first."""

    @abstractmethod
    def delete_records(self, scope: Scope) -> int:
        """Delete every record in scope and return how many were removed."""

    def close(self) -> None:
        """Release backend resources."""
