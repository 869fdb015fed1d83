"""In-memory reference ledger."""
import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from rollcall.models import AttendanceRecord, Participant, Scope, Session, SessionStatus, TokenWindow
from rollcall.storage.base import LedgerStore
from rollcall.utils.errors import DuplicateRecord, RecordNotFound


class MemoryLedgerStore(LedgerStore):
    """Dictionary backed store guarded by a single re-entrant lock.

    Every method runs entirely under the lock, which makes each one atomic
    and every read a consistent snapshot.
    """

    backend = 'memory'

    def __init__(self):
        super().__init__()
        self._lock = threading.RLock()
        self._sessions: Dict[str, Session] = OrderedDict()
        self._windows: Dict[str, List[TokenWindow]] = {}
        self._participants: Dict[str, Participant] = {}
        self._records: Dict[str, AttendanceRecord] = OrderedDict()
        self._live: Dict[Tuple[str, str], str] = {}

    def save_session(self, session: Session) -> Session:
        with self._lock:
            self._sessions[session.session_id] = session
        self._touch()
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self, include_ended: bool = True) -> List[Session]:
        with self._lock:
            sessions = list(self._sessions.values())
        if not include_ended:
            sessions = [s for s in sessions if s.status != SessionStatus.ENDED]
        return sorted(sessions, key=lambda s: s.created_at)

    def save_window(self, window: TokenWindow, retain: int) -> None:
        with self._lock:
            windows = self._windows.setdefault(window.session_id, [])
            windows = [w for w in windows if w.sequence_number != window.sequence_number]
            windows.append(window)
            windows.sort(key=lambda w: w.sequence_number)
            self._windows[window.session_id] = windows[-retain:] if retain > 0 else windows

    def list_windows(self, session_id: str) -> List[TokenWindow]:
        with self._lock:
            return list(self._windows.get(session_id, []))

    def save_participant(self, participant: Participant) -> Participant:
        with self._lock:
            self._participants[participant.participant_id] = participant
        return participant

    def add_participant(self, participant: Participant) -> Participant:
        with self._lock:
            return self._participants.setdefault(participant.participant_id, participant)

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        with self._lock:
            return self._participants.get(participant_id)

    def insert_record(self, record: AttendanceRecord) -> AttendanceRecord:
        pair = (record.session_id, record.participant_id)
        with self._lock:
            if record.is_live and pair in self._live:
                raise DuplicateRecord(
                    "Participant already has a live record for this session",
                    record_id=self._live[pair]
                )
            self._records[record.record_id] = record
            if record.is_live:
                self._live[pair] = record.record_id
        self._touch()
        return record

    def update_record(self, record: AttendanceRecord) -> AttendanceRecord:
        pair = (record.session_id, record.participant_id)
        with self._lock:
            if record.record_id not in self._records:
                raise RecordNotFound(record_id=record.record_id)
            holder = self._live.get(pair)
            if record.is_live:
                if holder is not None and holder != record.record_id:
                    raise DuplicateRecord(
                        "Participant already has a live record for this session",
                        record_id=holder
                    )
                self._live[pair] = record.record_id
            elif holder == record.record_id:
                del self._live[pair]
            self._records[record.record_id] = record
        self._touch()
        return record

    def replace_live_record(self, old: AttendanceRecord, new: AttendanceRecord) -> AttendanceRecord:
        pair = (new.session_id, new.participant_id)
        with self._lock:
            # every check runs before the first write
            if old.record_id not in self._records:
                raise RecordNotFound(record_id=old.record_id)
            if new.record_id in self._records:
                raise DuplicateRecord("Record id already in use", record_id=new.record_id)
            holder = self._live.get(pair)
            if (old.is_live and new.is_live) or (holder is not None and holder != old.record_id):
                raise DuplicateRecord(
                    "Participant already has a live record for this session",
                    record_id=holder or old.record_id
                )
            self._records[old.record_id] = old
            if holder == old.record_id and not old.is_live:
                del self._live[pair]
            self._records[new.record_id] = new
            if new.is_live:
                self._live[pair] = new.record_id
        self._touch()
        return new

    def get_record(self, record_id: str) -> Optional[AttendanceRecord]:
        with self._lock:
            return self._records.get(record_id)

    def find_live_record(self, session_id: str, participant_id: str) -> Optional[AttendanceRecord]:
        with self._lock:
            record_id = self._live.get((session_id, participant_id))
            return self._records.get(record_id) if record_id else None

    def snapshot_records(self, scope: Scope) -> List[AttendanceRecord]:
        with self._lock:
            records = [r for r in self._records.values() if scope.matches(r)]
        # sort is stable, so equal timestamps keep insertion order
        return sorted(records, key=lambda r: r.submitted_at)

    def delete_records(self, scope: Scope) -> int:
        with self._lock:
            doomed = [r for r in self._records.values() if scope.matches(r)]
            for record in doomed:
                del self._records[record.record_id]
                pair = (record.session_id, record.participant_id)
                if self._live.get(pair) == record.record_id:
                    del self._live[pair]
        if doomed:
            self._touch()
        return len(doomed)
