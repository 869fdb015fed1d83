"""Scope selecting a slice of the ledger."""
from dataclasses import dataclass
from typing import Optional

from rollcall.models.base import BaseModel


@dataclass(frozen=True, repr=False)
class Scope(BaseModel):
    """Either one session, one class, or the whole ledger."""
    session_id: Optional[str] = None
    class_id: Optional[str] = None

    @classmethod
    def everything(cls) -> 'Scope':
        return cls()

    @classmethod
    def parse(cls, session_id: str = None, class_id: str = None, everything: bool = False) -> 'Scope':
        """Build a scope from loosely typed request arguments."""
        if everything:
            return cls()
        return cls(session_id=session_id or None, class_id=class_id or None)

    @property
    def is_everything(self) -> bool:
        return self.session_id is None and self.class_id is None

    def matches(self, record) -> bool:
        """Check whether an attendance record falls inside the scope."""
        if self.session_id is not None and record.session_id != self.session_id:
            return False
        if self.class_id is not None and record.class_id != self.class_id:
            return False
        return True

    def label(self) -> str:
        if self.is_everything:
            return 'all'
        parts = []
        if self.session_id:
            parts.append(f'session={self.session_id}')
        if self.class_id:
            parts.append(f'class={self.class_id}')
        return ','.join(parts)

    def key(self):
        return self.label()
