"""SQL tables backing the ledger."""
from datetime import datetime, timezone

from sqlalchemy import text

from rollcall import db
from rollcall.models import (
    AttendanceRecord, ClassificationState, Participant, Session, SessionStatus, TokenWindow
)
from rollcall.utils.helpers import as_utc


def _now():
    return datetime.now(timezone.utc)


class BaseTable(db.Model):
    """Base table with common bookkeeping columns."""

    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_now, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.id}>'


class SessionRow(BaseTable):
    """Session metadata keyed by session id."""

    __tablename__ = 'sessions'

    session_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    class_id = db.Column(db.String(128), nullable=False, index=True)
    issuer_id = db.Column(db.String(128), nullable=False)
    status = db.Column(db.Enum(SessionStatus), nullable=False, default=SessionStatus.ACTIVE)
    rotation_interval_seconds = db.Column(db.Integer, nullable=False)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    paused_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    current_sequence = db.Column(db.Integer, nullable=True)

    def apply(self, session: Session) -> 'SessionRow':
        self.session_id = session.session_id
        self.class_id = session.class_id
        self.issuer_id = session.issuer_id
        self.status = session.status
        self.rotation_interval_seconds = session.rotation_interval_seconds
        self.opened_at = session.created_at
        self.paused_at = session.paused_at
        self.ended_at = session.ended_at
        self.current_sequence = session.current_window.sequence_number if session.current_window else None
        return self

    def to_model(self, current_window: TokenWindow = None) -> Session:
        return Session(
            session_id=self.session_id,
            class_id=self.class_id,
            issuer_id=self.issuer_id,
            created_at=as_utc(self.opened_at),
            rotation_interval_seconds=self.rotation_interval_seconds,
            status=self.status,
            current_window=current_window,
            paused_at=as_utc(self.paused_at),
            ended_at=as_utc(self.ended_at)
        )


class TokenWindowRow(BaseTable):
    """Token windows keyed by (session id, sequence number)."""

    __tablename__ = 'token_windows'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'sequence_number', name='uq_token_windows_session_sequence'),
    )

    session_id = db.Column(db.String(64), db.ForeignKey('sessions.session_id'), nullable=False, index=True)
    sequence_number = db.Column(db.Integer, nullable=False)
    token_string = db.Column(db.String(128), unique=True, nullable=False, index=True)
    pin = db.Column(db.String(8), nullable=False)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ttl_seconds = db.Column(db.Integer, nullable=False)

    @classmethod
    def from_model(cls, window: TokenWindow) -> 'TokenWindowRow':
        return cls(
            session_id=window.session_id,
            sequence_number=window.sequence_number,
            token_string=window.token_string,
            pin=window.pin,
            issued_at=window.issued_at,
            ttl_seconds=window.ttl_seconds
        )

    def to_model(self) -> TokenWindow:
        return TokenWindow(
            session_id=self.session_id,
            token_string=self.token_string,
            pin=self.pin,
            issued_at=as_utc(self.issued_at),
            ttl_seconds=self.ttl_seconds,
            sequence_number=self.sequence_number
        )


class ParticipantRow(BaseTable):
    """Enrolled participants."""

    __tablename__ = 'participants'

    participant_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(255), nullable=False)
    device_hash = db.Column(db.String(255), nullable=True)
    enrolled_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def apply(self, participant: Participant) -> 'ParticipantRow':
        self.participant_id = participant.participant_id
        self.display_name = participant.display_name
        self.device_hash = participant.device_hash
        self.enrolled_at = participant.enrolled_at
        return self

    def to_model(self) -> Participant:
        return Participant(
            participant_id=self.participant_id,
            display_name=self.display_name,
            enrolled_at=as_utc(self.enrolled_at),
            device_hash=self.device_hash
        )


class AttendanceRecordRow(BaseTable):
    """Attendance records with one live row per (session, participant)."""

    __tablename__ = 'attendance_records'
    __table_args__ = (
        db.Index(
            'uq_attendance_records_live_pair',
            'session_id', 'participant_id',
            unique=True,
            sqlite_where=text("state != 'REJECTED'"),
            postgresql_where=text("state != 'REJECTED'")
        ),
    )

    record_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    session_id = db.Column(db.String(64), nullable=False, index=True)
    class_id = db.Column(db.String(128), nullable=False, index=True)
    participant_id = db.Column(db.String(128), nullable=False, index=True)
    state = db.Column(db.Enum(ClassificationState), nullable=False)
    reason = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    token_sequence_number = db.Column(db.Integer, nullable=False)
    client_timestamp = db.Column(db.String(64), nullable=True)

    def apply(self, record: AttendanceRecord) -> 'AttendanceRecordRow':
        self.record_id = record.record_id
        self.session_id = record.session_id
        self.class_id = record.class_id
        self.participant_id = record.participant_id
        self.state = record.state
        self.reason = record.reason
        self.submitted_at = record.submitted_at
        self.decided_at = record.decided_at
        self.token_sequence_number = record.token_sequence_number
        self.client_timestamp = record.client_timestamp
        return self

    def to_model(self) -> AttendanceRecord:
        return AttendanceRecord(
            record_id=self.record_id,
            session_id=self.session_id,
            class_id=self.class_id,
            participant_id=self.participant_id,
            state=self.state,
            submitted_at=as_utc(self.submitted_at),
            token_sequence_number=self.token_sequence_number,
            reason=self.reason,
            decided_at=as_utc(self.decided_at),
            client_timestamp=self.client_timestamp
        )
