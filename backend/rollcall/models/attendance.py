"""Attendance record model."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from rollcall.models.base import BaseModel


class ClassificationState(Enum):
    """Classification of an attendance record."""
    PENDING = 'pending'
    PRESENT = 'present'
    FLAGGED = 'flagged'
    REJECTED = 'rejected'


class FlagReason(Enum):
    """Why a redemption was flagged."""
    EXPIRED = 'expired'
    MISSING_SIGNATURE = 'missing_signature'
    INVALID_SIGNATURE = 'invalid_signature'
    FALLBACK_AUTH = 'fallback_auth'
    DEVICE_MISMATCH = 'device_mismatch'
    PIN_MISMATCH = 'pin_mismatch'
    STALE_OR_REPLAYED = 'stale_or_replayed'
    SUPERSEDED = 'superseded'


@dataclass(frozen=True, repr=False)
class AttendanceRecord(BaseModel):
    """The ledger's unit of truth for one participant in one session."""
    record_id: str
    session_id: str
    class_id: str
    participant_id: str
    state: ClassificationState
    submitted_at: datetime
    token_sequence_number: int
    reason: Optional[str] = None
    decided_at: Optional[datetime] = None
    client_timestamp: Optional[str] = None

    @property
    def is_live(self) -> bool:
        """Live records count towards the one-per-participant rule."""
        return self.state != ClassificationState.REJECTED

    def key(self):
        return self.record_id
