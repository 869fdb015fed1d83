"""Moderation of attendance records."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from rollcall.models import AttendanceRecord, ClassificationState, Scope
from rollcall.services.export_service import Export, ExportResult, ExportService
from rollcall.storage.base import LedgerStore
from rollcall.utils.errors import (
    AlreadyDecided, ExportFailed, RecordNotFound, RollcallError, ValidationError
)
from rollcall.utils.helpers import utcnow

logger = logging.getLogger(__name__)

BULK_SCOPES = {
    'pending': ClassificationState.PENDING,
    'flagged': ClassificationState.FLAGGED
}


@dataclass(frozen=True)
class ModerationResult:
    """A moderated record and whether this call changed it."""
    record: AttendanceRecord
    changed: bool

    def to_dict(self) -> dict:
        return {'changed': self.changed, 'record': self.record.to_dict()}


class ModerationService:
    """
    Approve, reject, clear and export ledger entries.

    Single-record decisions hold the participant's pair lock. Bulk
    decisions, clears and exports that clear hold the store's exclusive
    barrier, so they act on one snapshot and no redemption interleaves.
    """

    def __init__(
        self,
        store: LedgerStore,
        exporter: ExportService = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.exporter = exporter or ExportService()
        self.clock = clock

    # ------------------------------------------------------------------
    # Single records
    # ------------------------------------------------------------------

    def _get_record(self, record_id: str):
        record = self.store.get_record(record_id)
        if record is None:
            raise RecordNotFound(record_id=record_id)
        return record

    def approve(self, record_id: str) -> ModerationResult:
        """pending/flagged -> present. Approving a present record is a no-op."""
        record = self._get_record(record_id)
        with self.store.pair_lock(record.session_id, record.participant_id):
            record = self._get_record(record_id)
            if record.state == ClassificationState.PRESENT:
                return ModerationResult(record, changed=False)
            if record.state == ClassificationState.REJECTED:
                raise AlreadyDecided("Record was already rejected", record_id=record_id)
            record = self.store.update_record(self._approved(record))
        logger.info("Record %s approved", record_id)
        return ModerationResult(record, changed=True)

    def reject(self, record_id: str) -> ModerationResult:
        """Any non-present state -> rejected. Rejecting twice is a no-op."""
        record = self._get_record(record_id)
        with self.store.pair_lock(record.session_id, record.participant_id):
            record = self._get_record(record_id)
            if record.state == ClassificationState.REJECTED:
                return ModerationResult(record, changed=False)
            if record.state == ClassificationState.PRESENT:
                raise AlreadyDecided("Record was already approved", record_id=record_id)
            record = self.store.update_record(self._rejected(record))
        logger.info("Record %s rejected", record_id)
        return ModerationResult(record, changed=True)

    def _approved(self, record: AttendanceRecord) -> AttendanceRecord:
        return record.copy(state=ClassificationState.PRESENT, reason=None, decided_at=self.clock())

    def _rejected(self, record: AttendanceRecord) -> AttendanceRecord:
        return record.copy(state=ClassificationState.REJECTED, decided_at=self.clock())

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def bulk_approve(self, session_id: str, scope: str) -> int:
        return self._bulk(session_id, scope, self._approved, 'approved')

    def bulk_reject(self, session_id: str, scope: str) -> int:
        return self._bulk(session_id, scope, self._rejected, 'rejected')

    def _bulk(self, session_id: str, scope: str, transition, verb: str) -> int:
        state = BULK_SCOPES.get(scope)
        if state is None:
            raise ValidationError(f"scope must be one of {', '.join(BULK_SCOPES)}")
        if not session_id:
            raise ValidationError("session_id is required")

        with self.store.exclusive():
            snapshot = self.store.snapshot_records(Scope(session_id=session_id))
            targets = [r for r in snapshot if r.state == state]
            for record in targets:
                self.store.update_record(transition(record))

        logger.info("Bulk %s %d %s records in session %s", verb, len(targets), scope, session_id)
        return len(targets)

    # ------------------------------------------------------------------
    # Clear and export
    # ------------------------------------------------------------------

    def clear_attendance(self, scope: Scope) -> int:
        """Delete every record in scope as one step visible to readers."""
        with self.store.exclusive():
            deleted = self.store.delete_records(scope)
            self.store.note_clear(scope, self.clock())
        logger.info("Cleared %d records (%s)", deleted, scope.label())
        return deleted

    def export(self, scope: Scope) -> Export:
        """Export every record in scope without clearing."""
        records = self.store.snapshot_records(scope)
        participants = self.store.get_participants(r.participant_id for r in records)
        return self.exporter.build(scope, records, participants, self.clock())

    def export_and_clear(self, scope: Scope) -> ExportResult:
        """
        Export then clear under one barrier.

        A failed export aborts the clear. A failed clear still returns the
        export, flagged with a warning.
        """
        with self.store.exclusive():
            try:
                export = self.export(scope)
            except Exception as e:
                logger.error("Export failed (%s): %s", scope.label(), e)
                raise ExportFailed(f"Export failed: {e}") from e

            try:
                cleared = self.store.delete_records(scope)
                self.store.note_clear(scope, self.clock())
            except RollcallError as e:
                logger.error("Clear after export failed (%s): %s", scope.label(), e.message)
                return ExportResult(
                    export=export,
                    cleared=0,
                    clear_failed=True,
                    warning=f"Records were exported but not cleared: {e.message}"
                )

        logger.info("Exported and cleared %d records (%s)", cleared, scope.label())
        return ExportResult(export=export, cleared=cleared)
