"""Models package with all models."""
from .base import BaseModel
from .session import Session, SessionStatus, TokenWindow
from .participant import Participant
from .attendance import AttendanceRecord, ClassificationState, FlagReason
from .scope import Scope

__all__ = [
    'BaseModel', 'Session', 'SessionStatus', 'TokenWindow',
    'Participant', 'AttendanceRecord', 'ClassificationState', 'FlagReason',
    'Scope'
]
