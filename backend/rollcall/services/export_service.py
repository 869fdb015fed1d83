"""Tabular export of attendance records."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

from rollcall.models import AttendanceRecord, Participant, Scope

EXPORT_COLUMNS = [
    'recordId', 'participantId', 'displayName', 'classificationState',
    'reason', 'submittedAt', 'decidedAt'
]


@dataclass(frozen=True)
class Export:
    """Snapshot of records serialized for the export collaborator."""
    scope: Scope
    generated_at: datetime
    rows: List[Dict] = field(default_factory=list)
    csv: str = ''

    @property
    def count(self) -> int:
        return len(self.rows)

    def filename(self) -> str:
        label = 'all' if self.scope.is_everything else (self.scope.class_id or self.scope.session_id)
        return f"attendance_{label}_{self.generated_at.strftime('%Y-%m-%d_%H-%M-%S')}.csv"


@dataclass(frozen=True)
class ExportResult:
    """Export paired with the outcome of the clear that followed it."""
    export: Export
    cleared: int = 0
    clear_failed: bool = False
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'count': self.export.count,
            'cleared': self.cleared,
            'clear_failed': self.clear_failed,
            'warning': self.warning,
            'filename': self.export.filename(),
            'rows': self.export.rows,
            'csv': self.export.csv
        }


class ExportService:
    """Builds export rows and serializes them as CSV."""

    @staticmethod
    def to_rows(records: List[AttendanceRecord], participants: Dict[str, Participant]) -> List[Dict]:
        rows = []
        for record in records:
            participant = participants.get(record.participant_id)
            rows.append({
                'recordId': record.record_id,
                'participantId': record.participant_id,
                'displayName': participant.display_name if participant else record.participant_id,
                'classificationState': record.state.value,
                'reason': record.reason or '',
                'submittedAt': record.submitted_at.isoformat(),
                'decidedAt': record.decided_at.isoformat() if record.decided_at else ''
            })
        return rows

    @staticmethod
    def to_csv(rows: List[Dict]) -> str:
        df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
        return df.to_csv(index=False)

    def build(
        self,
        scope: Scope,
        records: List[AttendanceRecord],
        participants: Dict[str, Participant],
        generated_at: datetime
    ) -> Export:
        rows = self.to_rows(records, participants)
        return Export(scope=scope, generated_at=generated_at, rows=rows, csv=self.to_csv(rows))
