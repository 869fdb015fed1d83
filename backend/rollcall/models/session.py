"""Attendance session with rotating token windows."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from rollcall.models.base import BaseModel


class SessionStatus(Enum):
    """Session status enumeration."""
    ACTIVE = 'active'
    PAUSED = 'paused'
    ENDED = 'ended'


@dataclass(frozen=True, repr=False)
class TokenWindow(BaseModel):
    """The credential currently redeemable for a session.

    Windows are immutable; rotation replaces the whole value.
    """
    session_id: str
    token_string: str
    pin: str
    issued_at: datetime
    ttl_seconds: int
    sequence_number: int

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.ttl_seconds)

    def age(self, at: datetime) -> float:
        """Seconds elapsed between issue and ``at``."""
        return (at - self.issued_at).total_seconds()

    def render_payload(self, paused: bool = False) -> dict:
        """Payload handed to the rendering collaborator."""
        return {
            'tokenString': self.token_string,
            'pin': self.pin,
            'expiresAt': None if paused else self.expires_at.isoformat(),
            'sequenceNumber': self.sequence_number,
            'paused': paused
        }

    def key(self):
        return (self.session_id, self.sequence_number)


@dataclass(frozen=True, repr=False)
class Session(BaseModel):
    """One issuing context.

    Sessions are immutable snapshots; the session manager swaps them on
    every lifecycle change, so a reader always holds a consistent view.
    """
    session_id: str
    class_id: str
    issuer_id: str
    created_at: datetime
    rotation_interval_seconds: int
    status: SessionStatus = SessionStatus.ACTIVE
    current_window: Optional[TokenWindow] = None
    paused_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def is_paused(self) -> bool:
        return self.status == SessionStatus.PAUSED

    @property
    def is_ended(self) -> bool:
        return self.status == SessionStatus.ENDED

    def to_dict(self, exclude: list = None) -> dict:
        data = super().to_dict(exclude=(exclude or []) + ['current_window'])
        if self.current_window is not None:
            window = self.current_window.to_dict(exclude=['token_string', 'pin'])
            window['expires_at'] = None if self.is_paused else self.current_window.expires_at.isoformat()
            data['current_window'] = window
        else:
            data['current_window'] = None
        return data

    def key(self):
        return self.session_id
