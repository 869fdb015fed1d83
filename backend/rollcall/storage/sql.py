"""Flask-SQLAlchemy ledger backend."""
import logging
from contextlib import contextmanager
from typing import List, Optional

from flask import Flask
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from rollcall import db
from rollcall.models import (
    AttendanceRecord, ClassificationState, Participant, Scope, Session, SessionStatus, TokenWindow
)
from rollcall.storage.base import LedgerStore
from rollcall.storage.tables import AttendanceRecordRow, ParticipantRow, SessionRow, TokenWindowRow
from rollcall.utils.errors import DuplicateRecord, RecordNotFound, StorageUnavailable

logger = logging.getLogger(__name__)


class SQLLedgerStore(LedgerStore):
    """Ledger persisted through the application's SQLAlchemy engine.

    Each call runs in its own application context, so the store is usable
    from rotation timer threads as well as from request handlers.
    The partial unique index on live records backs up the pair locks.
    """

    backend = 'sql'

    def __init__(self, app: Flask):
        super().__init__()
        self._app = app

    @contextmanager
    def _unit(self, commit: bool = False):
        with self._app.app_context():
            try:
                yield db.session
                if commit:
                    db.session.commit()
            except (DuplicateRecord, RecordNotFound):
                db.session.rollback()
                raise
            except IntegrityError as e:
                db.session.rollback()
                raise DuplicateRecord("Participant already has a live record for this session") from e
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error("Ledger backend failure: %s", e)
                raise StorageUnavailable(f"Ledger backend failure: {e.__class__.__name__}") from e

    # Sessions -----------------------------------------------------------

    def _window(self, session_id: str, sequence_number: Optional[int]) -> Optional[TokenWindow]:
        if sequence_number is None:
            return None
        row = TokenWindowRow.query.filter_by(
            session_id=session_id,
            sequence_number=sequence_number
        ).first()
        return row.to_model() if row else None

    def save_session(self, session: Session) -> Session:
        with self._unit(commit=True) as s:
            row = SessionRow.query.filter_by(session_id=session.session_id).first()
            if row is None:
                row = SessionRow()
                s.add(row)
            row.apply(session)
        self._touch()
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._unit():
            row = SessionRow.query.filter_by(session_id=session_id).first()
            if row is None:
                return None
            return row.to_model(self._window(row.session_id, row.current_sequence))

    def list_sessions(self, include_ended: bool = True) -> List[Session]:
        with self._unit():
            query = SessionRow.query
            if not include_ended:
                query = query.filter(SessionRow.status != SessionStatus.ENDED)
            rows = query.order_by(SessionRow.opened_at.asc()).all()
            return [row.to_model(self._window(row.session_id, row.current_sequence)) for row in rows]

    def save_window(self, window: TokenWindow, retain: int) -> None:
        with self._unit(commit=True) as s:
            s.add(TokenWindowRow.from_model(window))
            s.flush()
            if retain > 0:
                stale = TokenWindowRow.query.filter(
                    TokenWindowRow.session_id == window.session_id,
                    TokenWindowRow.sequence_number <= window.sequence_number - retain
                )
                stale.delete(synchronize_session=False)

    def list_windows(self, session_id: str) -> List[TokenWindow]:
        with self._unit():
            rows = TokenWindowRow.query.filter_by(session_id=session_id).order_by(
                TokenWindowRow.sequence_number.asc()
            ).all()
            return [row.to_model() for row in rows]

    # Participants -------------------------------------------------------

    def save_participant(self, participant: Participant) -> Participant:
        with self._unit(commit=True) as s:
            row = ParticipantRow.query.filter_by(participant_id=participant.participant_id).first()
            if row is None:
                row = ParticipantRow()
                s.add(row)
            row.apply(participant)
        return participant

    def add_participant(self, participant: Participant) -> Participant:
        try:
            with self._unit(commit=True) as s:
                row = ParticipantRow.query.filter_by(participant_id=participant.participant_id).first()
                if row is not None:
                    return row.to_model()
                s.add(ParticipantRow().apply(participant))
        except DuplicateRecord:
            # lost an enrollment race; the winner's row stands
            existing = self.get_participant(participant.participant_id)
            if existing is None:
                raise
            return existing
        return participant

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        with self._unit():
            row = ParticipantRow.query.filter_by(participant_id=participant_id).first()
            return row.to_model() if row else None

    def get_participants(self, participant_ids) -> dict:
        ids = list(set(participant_ids))
        if not ids:
            return {}
        with self._unit():
            rows = ParticipantRow.query.filter(ParticipantRow.participant_id.in_(ids)).all()
            return {row.participant_id: row.to_model() for row in rows}

    # Attendance records -------------------------------------------------

    def insert_record(self, record: AttendanceRecord) -> AttendanceRecord:
        with self._unit(commit=True) as s:
            s.add(AttendanceRecordRow().apply(record))
        self._touch()
        return record

    def update_record(self, record: AttendanceRecord) -> AttendanceRecord:
        with self._unit(commit=True):
            row = AttendanceRecordRow.query.filter_by(record_id=record.record_id).first()
            if row is None:
                raise RecordNotFound(record_id=record.record_id)
            row.apply(record)
        self._touch()
        return record

    def replace_live_record(self, old: AttendanceRecord, new: AttendanceRecord) -> AttendanceRecord:
        with self._unit(commit=True) as s:
            row = AttendanceRecordRow.query.filter_by(record_id=old.record_id).first()
            if row is None:
                raise RecordNotFound(record_id=old.record_id)
            row.apply(old)
            # the live-pair index must see the old row leave before the new one arrives
            s.flush()
            s.add(AttendanceRecordRow().apply(new))
        self._touch()
        return new

    def get_record(self, record_id: str) -> Optional[AttendanceRecord]:
        with self._unit():
            row = AttendanceRecordRow.query.filter_by(record_id=record_id).first()
            return row.to_model() if row else None

    def find_live_record(self, session_id: str, participant_id: str) -> Optional[AttendanceRecord]:
        with self._unit():
            row = AttendanceRecordRow.query.filter(
                AttendanceRecordRow.session_id == session_id,
                AttendanceRecordRow.participant_id == participant_id,
                AttendanceRecordRow.state != ClassificationState.REJECTED
            ).first()
            return row.to_model() if row else None

    def _scoped(self, scope: Scope):
        query = AttendanceRecordRow.query
        if scope.session_id is not None:
            query = query.filter(AttendanceRecordRow.session_id == scope.session_id)
        if scope.class_id is not None:
            query = query.filter(AttendanceRecordRow.class_id == scope.class_id)
        return query

    def snapshot_records(self, scope: Scope) -> List[AttendanceRecord]:
        with self._unit():
            rows = self._scoped(scope).order_by(
                AttendanceRecordRow.submitted_at.asc(),
                AttendanceRecordRow.id.asc()
            ).all()
            return [row.to_model() for row in rows]

    def delete_records(self, scope: Scope) -> int:
        with self._unit(commit=True):
            deleted = self._scoped(scope).delete(synchronize_session=False)
        if deleted:
            self._touch()
        return deleted
