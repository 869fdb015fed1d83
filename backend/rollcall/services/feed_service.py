"""Read-side projection of the ledger for polling observers."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List

from rollcall.models import AttendanceRecord, ClassificationState, Scope
from rollcall.storage.base import LedgerStore
from rollcall.utils.helpers import utcnow


@dataclass(frozen=True)
class Projection:
    """present/pending/flagged view taken from one ledger snapshot."""
    scope: Scope
    present: List[dict] = field(default_factory=list)
    pending: List[dict] = field(default_factory=list)
    flagged: List[dict] = field(default_factory=list)
    version: int = 0
    generation: int = 0
    suppressed: bool = False

    @property
    def total(self) -> int:
        return len(self.present) + len(self.pending) + len(self.flagged)

    def to_dict(self) -> dict:
        return {
            'scope': self.scope.to_dict(),
            'present': self.present,
            'pending': self.pending,
            'flagged': self.flagged,
            'total': self.total,
            'version': self.version,
            'generation': self.generation,
            'suppressed': self.suppressed
        }


class FeedService:
    """
    Projects ledger snapshots into the dashboard feed.

    Each projection carries the ledger ``version`` and clear
    ``generation`` it was read at. For ``suppress_seconds`` after a clear
    covering the scope the projection is marked ``suppressed`` so pollers
    drop any older view they still hold.
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Callable[[], datetime] = utcnow,
        suppress_seconds: float = 1.5
    ):
        self.store = store
        self.clock = clock
        self.suppress_seconds = suppress_seconds

    def project(self, scope: Scope) -> Projection:
        generation = self.store.generation
        version = self.store.version
        records = self.store.snapshot_records(scope)
        names = self._names(records)

        buckets = {
            ClassificationState.PRESENT: [],
            ClassificationState.PENDING: [],
            ClassificationState.FLAGGED: []
        }
        for record in records:
            bucket = buckets.get(record.state)
            if bucket is not None:
                bucket.append(self._entry(record, names))

        return Projection(
            scope=scope,
            present=buckets[ClassificationState.PRESENT],
            pending=buckets[ClassificationState.PENDING],
            flagged=buckets[ClassificationState.FLAGGED],
            version=version,
            generation=generation,
            suppressed=self._suppressed(scope)
        )

    def records(self, scope: Scope) -> List[dict]:
        """Every record in scope, rejected included, oldest first."""
        records = self.store.snapshot_records(scope)
        names = self._names(records)
        return [self._entry(record, names) for record in records]

    def _names(self, records: List[AttendanceRecord]) -> dict:
        participants = self.store.get_participants(r.participant_id for r in records)
        return {pid: p.display_name for pid, p in participants.items()}

    @staticmethod
    def _entry(record: AttendanceRecord, names: dict) -> dict:
        entry = record.to_dict()
        entry['display_name'] = names.get(record.participant_id, record.participant_id)
        return entry

    def _suppressed(self, scope: Scope) -> bool:
        if self.suppress_seconds <= 0:
            return False
        since = self.clock() - timedelta(seconds=self.suppress_seconds)
        return any(self._covers(cleared, scope) for cleared in self.store.clears_since(since))

    def _class_of(self, session_id: str):
        session = self.store.get_session(session_id)
        return session.class_id if session else None

    def _covers(self, cleared: Scope, scope: Scope) -> bool:
        if cleared.is_everything or scope.is_everything:
            return True
        if cleared.session_id and scope.session_id:
            return cleared.session_id == scope.session_id
        if cleared.class_id and scope.class_id:
            return cleared.class_id == scope.class_id
        if cleared.class_id and scope.session_id:
            return self._class_of(scope.session_id) == cleared.class_id
        if cleared.session_id and scope.class_id:
            return self._class_of(cleared.session_id) == scope.class_id
        return False
