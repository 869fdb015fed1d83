"""Participant model."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from rollcall.models.base import BaseModel


@dataclass(frozen=True, repr=False)
class Participant(BaseModel):
    """An enrolled participant and the device fingerprint bound at enrollment."""
    participant_id: str
    display_name: str
    enrolled_at: datetime
    device_hash: Optional[str] = None

    def to_dict(self, exclude: list = None) -> dict:
        data = super().to_dict(exclude=(exclude or []) + ['device_hash'])
        data['device_enrolled'] = bool(self.device_hash)
        return data

    def key(self):
        return self.participant_id
